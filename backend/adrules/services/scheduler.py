"""
Rule Scheduler

Owns one live job per enabled rule:
- schedule triggers become cron jobs
- threshold triggers become fixed-interval jobs

Jobs are kept in an APScheduler job store keyed by rule id. Each fire runs
under a per-rule lock; a tick that arrives while the previous fire of the same
rule is still running is dropped.
"""

import asyncio
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from adrules.core.exceptions import ConfigurationError
from adrules.core.metrics import RULE_FIRES, SCHEDULED_JOBS
from adrules.models.rule import Rule, ScheduleTrigger, ThresholdTrigger

logger = structlog.get_logger()

# crontab numbers days from Sunday (0 and 7); APScheduler numbers from Monday
CRON_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")

FireCallback = Callable[[str], Awaitable[None]]


class RuleScheduler:
    """Maps rules to scheduled jobs and supervises their fires."""

    def __init__(
        self,
        fire: FireCallback,
        timezone: str = "UTC",
        misfire_grace_seconds: int = 60,
    ):
        self._fire_callback = fire
        self.timezone = timezone
        self.misfire_grace_seconds = misfire_grace_seconds
        self._scheduler = AsyncIOScheduler(timezone=timezone)
        self._fire_locks: dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start firing jobs. Must be called from a running event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("scheduler_started", timezone=self.timezone)

    def shutdown(self) -> None:
        """Cancel every job. In-flight fires are left to finish."""
        self._scheduler.remove_all_jobs()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        SCHEDULED_JOBS.set(0)
        logger.info("scheduler_stopped")

    # =========================================================================
    # Jobs
    # =========================================================================

    def schedule(self, rule: Rule) -> None:
        """
        Replace the job for ``rule``.

        Any existing job is removed first; a new one is added only when the
        rule is enabled.

        Raises:
            ConfigurationError: invalid cron expression or interval. No job
                is left registered for the rule.
        """
        self.unschedule(rule.id)

        if not rule.enabled:
            return

        trigger = self.build_trigger(rule)
        self._scheduler.add_job(
            self.fire,
            trigger=trigger,
            args=[rule.id],
            id=rule.id,
            name=rule.name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.misfire_grace_seconds,
            replace_existing=True,
        )
        SCHEDULED_JOBS.set(len(self.job_ids()))

        logger.info(
            "rule_scheduled",
            rule_id=rule.id,
            rule_name=rule.name,
            trigger_type=rule.trigger.type,
            trigger=str(trigger),
        )

    def unschedule(self, rule_id: str) -> bool:
        """Remove the job for ``rule_id``. Returns False if there was none."""
        try:
            self._scheduler.remove_job(rule_id)
        except JobLookupError:
            return False

        lock = self._fire_locks.get(rule_id)
        if lock is not None and not lock.locked():
            del self._fire_locks[rule_id]

        SCHEDULED_JOBS.set(len(self.job_ids()))
        logger.info("rule_unscheduled", rule_id=rule_id)
        return True

    def reschedule_all(self, rules: Iterable[Rule]) -> list[str]:
        """
        Schedule every rule.

        Returns:
            Ids of rules whose trigger could not be scheduled
        """
        failed = []
        for rule in rules:
            try:
                self.schedule(rule)
            except ConfigurationError as e:
                logger.error("rule_schedule_failed", rule_id=rule.id, error=e.message)
                failed.append(rule.id)
        return failed

    def has_job(self, rule_id: str) -> bool:
        return self._scheduler.get_job(rule_id) is not None

    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def next_fire_time(self, rule_id: str) -> Optional[datetime]:
        """Next fire time, or None if unscheduled or not started yet."""
        job = self._scheduler.get_job(rule_id)
        if job is None:
            return None
        return getattr(job, "next_run_time", None)

    def build_trigger(self, rule: Rule) -> BaseTrigger:
        """
        Build the APScheduler trigger for a rule.

        Raises:
            ConfigurationError: invalid cron expression or interval
        """
        trigger = rule.trigger

        if isinstance(trigger, ScheduleTrigger):
            try:
                return build_cron_trigger(trigger.cron_expression, self.timezone)
            except ConfigurationError as e:
                e.rule_id = rule.id
                raise

        if isinstance(trigger, ThresholdTrigger):
            if trigger.check_interval_minutes < 1:
                raise ConfigurationError(
                    f"Check interval must be at least 1 minute, got {trigger.check_interval_minutes}",
                    rule_id=rule.id,
                )
            return IntervalTrigger(minutes=trigger.check_interval_minutes, timezone=self.timezone)

        raise ConfigurationError(f"Unsupported trigger type: {trigger.type}", rule_id=rule.id)

    # =========================================================================
    # Fires
    # =========================================================================

    async def fire(self, rule_id: str) -> None:
        """
        Run one scheduled fire of ``rule_id``.

        This is the job boundary: errors are logged and never propagate, so
        the job keeps its schedule.
        """
        lock = self._fire_locks.setdefault(rule_id, asyncio.Lock())
        if lock.locked():
            logger.warning("rule_fire_skipped", rule_id=rule_id, reason="previous_fire_running")
            RULE_FIRES.labels(source="scheduled", outcome="skipped").inc()
            return

        async with lock:
            try:
                await self._fire_callback(rule_id)
            except Exception:
                logger.exception("rule_fire_crashed", rule_id=rule_id)
                RULE_FIRES.labels(source="scheduled", outcome="crashed").inc()

    @asynccontextmanager
    async def exclusive(self, rule_id: str) -> AsyncIterator[None]:
        """Hold the fire lock of ``rule_id``, waiting for a running fire."""
        lock = self._fire_locks.setdefault(rule_id, asyncio.Lock())
        async with lock:
            yield


# =============================================================================
# Cron parsing
# =============================================================================

def build_cron_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a CronTrigger from a crontab expression.

    Accepts the standard five fields, or six with a leading seconds field.
    Numeric days of week follow crontab (0 or 7 is Sunday).

    Raises:
        ConfigurationError: malformed expression
    """
    fields = expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise ConfigurationError(
            f"Cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}"
        )

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_crontab_day_of_week(day_of_week),
            timezone=timezone,
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid cron expression {expression!r}: {e}")


def _crontab_day_of_week(field: str) -> str:
    """Translate numeric crontab days of week to day names."""
    if field in ("*", "?"):
        return "*"

    days = []
    for part in field.split(","):
        base, _, step = part.partition("/")
        if base == "*":
            base = "0-6"

        match = re.fullmatch(r"(\d+)(?:-(\d+))?", base)
        if not match:
            # Named days (mon-fri) mean the same thing in both notations
            days.append(part)
            continue

        start = int(match.group(1))
        if match.group(2) is not None:
            end = int(match.group(2))
        else:
            end = 6 if step else start

        if step and not step.isdigit():
            raise ConfigurationError(f"Invalid day-of-week step: {part!r}")
        stride = int(step) if step else 1
        if start > 7 or end > 7 or start > end or stride < 1:
            raise ConfigurationError(f"Invalid day-of-week value: {part!r}")

        days.extend(CRON_DAY_NAMES[day] for day in range(start, end + 1, stride))

    return ",".join(dict.fromkeys(days))
