"""
Automation Engine

The entry point for everything that touches rules:
- Rule lifecycle: add, edit, toggle, remove (persisted before returning)
- Scheduling: one live job per enabled rule, resynced on every mutation
- Execution: scheduled or manual evaluate + apply cycles

The in-memory rule map is authoritative while the process runs; the rule
store mirrors it. Structural mutations, persistence and rescheduling happen
under a single lock. Evaluations run outside it so different rules fire in
parallel.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

import structlog

from adrules.adapters.base import CampaignDataClient
from adrules.config import Settings
from adrules.core.exceptions import ConfigurationError, PersistenceError, UpstreamError
from adrules.core.metrics import RULE_FIRES
from adrules.models.rule import Rule, RuleCreate, RuleUpdate, normalize_account_id
from adrules.notifications.base import AlertSender
from adrules.services.evaluator import RuleEvaluator
from adrules.services.executor import ActionExecutor, ActionResult
from adrules.services.scheduler import RuleScheduler
from adrules.stores.base import RuleStore

logger = structlog.get_logger()


@dataclass
class RuleRunResult:
    """Summary of one evaluate + apply cycle."""
    rule_id: str
    source: str  # scheduled, manual
    started_at: datetime
    finished_at: Optional[datetime] = None
    campaigns_checked: int = 0
    triggered_campaign_ids: list[str] = field(default_factory=list)
    action_results: list[ActionResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class AutomationEngine:
    """Rules engine facade."""

    def __init__(
        self,
        client: CampaignDataClient,
        store: RuleStore,
        alert_sender: Optional[AlertSender] = None,
        timezone: str = "UTC",
        upstream_timeout: float = 20.0,
        misfire_grace_seconds: int = 60,
    ):
        self.client = client
        self.store = store
        self.alert_sender = alert_sender
        self.evaluator = RuleEvaluator(client, timeout=upstream_timeout)
        self.executor = ActionExecutor(client, alert_sender, timeout=upstream_timeout)
        self.scheduler = RuleScheduler(
            self._scheduled_fire,
            timezone=timezone,
            misfire_grace_seconds=misfire_grace_seconds,
        )

        self._rules: dict[str, Rule] = {}
        self._lock = asyncio.Lock()
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: CampaignDataClient,
        store: RuleStore,
        alert_sender: Optional[AlertSender] = None,
    ) -> "AutomationEngine":
        return cls(
            client,
            store,
            alert_sender,
            timezone=settings.scheduler_timezone,
            upstream_timeout=settings.upstream_timeout_seconds,
            misfire_grace_seconds=settings.scheduler_misfire_grace_seconds,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """
        Load persisted rules and schedule the enabled ones.

        A store that cannot be read is logged and the engine starts with the
        rules it already holds. Calling start on a running engine does
        nothing.
        """
        async with self._lock:
            if self._started:
                logger.warning("automation_engine_already_started")
                return

            try:
                loaded = await self.store.load_all()
            except PersistenceError as e:
                logger.error("rules_load_failed", backend=self.store.backend, error=e.message)
                loaded = []

            self._rules = {**{rule.id: rule for rule in loaded}, **self._rules}
            self.scheduler.start()
            failed = self.scheduler.reschedule_all(self._rules.values())
            self._started = True

        logger.info(
            "automation_engine_started",
            rules=len(self._rules),
            scheduled=len(self.scheduler.job_ids()),
            unschedulable=len(failed),
        )

    async def stop(self) -> None:
        """Cancel all jobs. The engine stays queryable."""
        async with self._lock:
            self.scheduler.shutdown()
            self._started = False
        logger.info("automation_engine_stopped")

    def status(self) -> dict:
        """Engine health snapshot."""
        return {
            "running": self._started,
            "rules_count": len(self._rules),
            "enabled_rules": sum(1 for rule in self._rules.values() if rule.enabled),
            "scheduled_jobs": len(self.scheduler.job_ids()),
            "store_backend": self.store.backend,
            "alerts_enabled": self.alert_sender is not None,
        }

    # =========================================================================
    # Rule CRUD Operations
    # =========================================================================

    async def add_rule(self, data: Union[RuleCreate, dict]) -> str:
        """
        Create a rule.

        Returns:
            The new rule id

        Raises:
            PersistenceError: the store write failed; nothing was added
            ConfigurationError: the rule was saved but its trigger cannot be
                scheduled
        """
        if not isinstance(data, RuleCreate):
            data = RuleCreate.model_validate(data)
        rule = Rule.from_create(data)

        async with self._lock:
            self._rules[rule.id] = rule
            try:
                await self._persist()
            except PersistenceError:
                del self._rules[rule.id]
                raise
            self._sync_schedule(rule)

        logger.info("rule_added", rule_id=rule.id, rule_name=rule.name, enabled=rule.enabled)
        return rule.id

    async def remove_rule(self, rule_id: str) -> bool:
        """
        Delete a rule, cancelling its job first.

        Returns:
            False if the rule does not exist

        Raises:
            PersistenceError: the store write failed; the rule is restored
        """
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return False

            self.scheduler.unschedule(rule_id)
            del self._rules[rule_id]
            try:
                await self._persist()
            except PersistenceError:
                self._rules[rule_id] = rule
                self._restore_schedule(rule)
                raise

        logger.info("rule_removed", rule_id=rule_id, rule_name=rule.name)
        return True

    async def toggle_rule(self, rule_id: str) -> Optional[bool]:
        """
        Flip a rule's enabled flag.

        Returns:
            The new enabled state, or None if the rule does not exist

        Raises:
            PersistenceError: the store write failed; nothing changed
            ConfigurationError: the rule was enabled but cannot be scheduled
        """
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None

            updated = rule.model_copy(update={"enabled": not rule.enabled})
            self._rules[rule_id] = updated
            try:
                await self._persist()
            except PersistenceError:
                self._rules[rule_id] = rule
                raise
            self._sync_schedule(updated)

        logger.info("rule_toggled", rule_id=rule_id, enabled=updated.enabled)
        return updated.enabled

    async def edit_rule(
        self,
        rule_id: str,
        changes: Union[RuleUpdate, dict],
    ) -> Optional[Rule]:
        """
        Apply a partial edit and reschedule.

        Returns:
            The updated rule, or None if the rule does not exist

        Raises:
            PersistenceError: the store write failed; nothing changed
            ConfigurationError: the rule was saved but cannot be scheduled
        """
        if not isinstance(changes, RuleUpdate):
            changes = RuleUpdate.model_validate(changes)
        update = {
            name: getattr(changes, name)
            for name in changes.model_fields_set
            if getattr(changes, name) is not None
        }

        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                return None

            updated = rule.model_copy(update=update)
            self._rules[rule_id] = updated
            try:
                await self._persist()
            except PersistenceError:
                self._rules[rule_id] = rule
                raise
            self._sync_schedule(updated)

        logger.info("rule_edited", rule_id=rule_id, fields=sorted(update))
        return updated.model_copy(deep=True)

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    def get_all_rules(self) -> list[Rule]:
        return [rule.model_copy(deep=True) for rule in self._rules.values()]

    def get_rules_for_account(self, account_id: str) -> list[Rule]:
        """Rules for an account, matching with or without the ``act_`` prefix."""
        wanted = normalize_account_id(account_id)
        return [
            rule.model_copy(deep=True)
            for rule in self._rules.values()
            if normalize_account_id(rule.account_id) == wanted
        ]

    # =========================================================================
    # Execution
    # =========================================================================

    async def run_rule(self, rule_id: str) -> Optional[RuleRunResult]:
        """
        Run one evaluate + apply cycle now, bypassing the schedule.

        Waits for a scheduled fire of the same rule to finish first. An
        unknown id does nothing and returns None.

        Raises:
            PersistenceError: recording the run time failed
        """
        if rule_id not in self._rules:
            logger.info("rule_run_skipped", rule_id=rule_id, reason="unknown_rule")
            return None

        async with self.scheduler.exclusive(rule_id):
            return await self._execute(rule_id, source="manual")

    async def _scheduled_fire(self, rule_id: str) -> None:
        """Scheduler callback; runs under the rule's fire lock."""
        await self._execute(rule_id, source="scheduled")

    async def _execute(self, rule_id: str, source: str) -> Optional[RuleRunResult]:
        # Latest definition: edits between ticks take effect on the next fire
        rule = self._rules.get(rule_id)
        if rule is None:
            return None

        log = logger.bind(rule_id=rule.id, rule_name=rule.name, source=source)
        log.info("rule_execution_started")

        result = RuleRunResult(
            rule_id=rule.id,
            source=source,
            started_at=datetime.now(timezone.utc),
        )

        try:
            outcome = await self.evaluator.evaluate(rule)
        except UpstreamError as e:
            result.error = e.message
            log.error("rule_evaluation_failed", error=e.message, error_type=type(e).__name__)
            RULE_FIRES.labels(source=source, outcome="upstream_error").inc()
        else:
            result.campaigns_checked = outcome.campaigns_checked
            for triggered in outcome.triggered:
                result.triggered_campaign_ids.append(triggered.campaign.campaign_id)
                result.action_results.extend(await self.executor.apply(rule, triggered))
            RULE_FIRES.labels(source=source, outcome="completed").inc()
        finally:
            result.finished_at = datetime.now(timezone.utc)
            await self._record_run(rule.id, result.finished_at)

        log.info(
            "rule_execution_finished",
            triggered=len(result.triggered_campaign_ids),
            actions=len(result.action_results),
            failed_actions=sum(1 for r in result.action_results if r.status == "failed"),
            succeeded=result.succeeded,
        )
        return result

    # =========================================================================
    # Internals
    # =========================================================================

    async def _record_run(self, rule_id: str, ran_at: datetime) -> None:
        """Advance last_run_at; never moves it backwards."""
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                # Removed while the fire was running
                return
            if rule.last_run_at is not None and rule.last_run_at >= ran_at:
                return
            self._rules[rule_id] = rule.model_copy(update={"last_run_at": ran_at})
            await self._persist()

    async def _persist(self) -> None:
        """Write the full rule set. Caller holds the lock."""
        await self.store.save_all(list(self._rules.values()))

    def _sync_schedule(self, rule: Rule) -> None:
        """
        Resync the job for ``rule``. Caller holds the lock.

        A stopped engine registers no jobs; the trigger is still validated
        and ``start`` schedules the rule later.
        """
        try:
            if self._started:
                self.scheduler.schedule(rule)
            elif rule.enabled:
                self.scheduler.build_trigger(rule)
        except ConfigurationError as e:
            logger.warning("rule_left_unscheduled", rule_id=rule.id, error=e.message)
            raise

    def _restore_schedule(self, rule: Rule) -> None:
        if not self._started:
            return
        try:
            self.scheduler.schedule(rule)
        except ConfigurationError as e:
            logger.warning("rule_left_unscheduled", rule_id=rule.id, error=e.message)
