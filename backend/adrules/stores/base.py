"""
Rule Store interface and the versioned rules document.

Stores persist the whole rule set as one document:

    {"version": 1, "rules": [<rule record>, ...]}

Unversioned documents (a bare list of rules using the older field names) are
upgraded on load.
"""

from abc import ABC, abstractmethod
from typing import Any, Sequence

import structlog
from pydantic import ValidationError

from adrules.core.exceptions import PersistenceError
from adrules.models.rule import Rule

logger = structlog.get_logger()

STORE_SCHEMA_VERSION = 1


class RuleStore(ABC):
    """Durable storage for the full rule set."""

    backend: str = "unknown"

    @abstractmethod
    async def load_all(self) -> list[Rule]:
        """
        Load every persisted rule.

        Raises:
            PersistenceError: store unreachable or document corrupt
        """
        pass

    @abstractmethod
    async def save_all(self, rules: Sequence[Rule]) -> None:
        """
        Replace the persisted rule set.

        Raises:
            PersistenceError: write failed
        """
        pass

    async def aclose(self) -> None:
        """Release any held connections."""
        return None


# =============================================================================
# Document encoding
# =============================================================================

def encode_rules(rules: Sequence[Rule]) -> dict:
    """Build the versioned rules document."""
    return {
        "version": STORE_SCHEMA_VERSION,
        "rules": [rule.to_record() for rule in rules],
    }


def decode_rules(document: Any) -> list[Rule]:
    """
    Parse a rules document of any supported version.

    A record that does not validate is logged and left out, so one bad
    record never hides the rest. It is dropped from the store on the next
    save.

    Raises:
        PersistenceError: unknown version or malformed document
    """
    if isinstance(document, list):
        records = [upgrade_legacy_rule(raw) for raw in document]
        logger.info("rules_document_upgraded", from_version=0, rules=len(records))
    elif isinstance(document, dict):
        version = document.get("version")
        if version != STORE_SCHEMA_VERSION:
            raise PersistenceError(
                f"Unsupported rules document version: {version}",
                details={"version": version},
            )
        records = document.get("rules")
        if records is None:
            records = []
        if not isinstance(records, list):
            raise PersistenceError(
                "Rules document field 'rules' is not a list",
                details={"type": type(records).__name__},
            )
    else:
        raise PersistenceError("Rules document is neither a list nor an object")

    rules = []
    for index, record in enumerate(records):
        try:
            rules.append(Rule.model_validate(record))
        except ValidationError as e:
            logger.error(
                "rule_record_skipped",
                index=index,
                rule_id=record.get("id") if isinstance(record, dict) else None,
                error=str(e),
            )
    return rules


def upgrade_legacy_rule(raw: Any) -> Any:
    """
    Convert an unversioned rule record to the current layout.

    Older records used ``trigger.cron``, ``trigger.checkInterval``,
    ``notifyMessage``, ``budgetChange`` and upper-case campaign statuses.
    Values of the wrong shape are passed through for validation to reject.
    """
    if not isinstance(raw, dict):
        return raw

    rule = dict(raw)

    trigger = rule.get("trigger")
    if isinstance(trigger, dict):
        if trigger.get("type") == "schedule" and "cronExpression" not in trigger:
            # An empty expression loads and is refused by the scheduler
            trigger = {"type": "schedule", "cronExpression": trigger.get("cron") or ""}
        elif trigger.get("type") == "threshold" and "checkIntervalMinutes" not in trigger:
            trigger = {
                "type": "threshold",
                "metric": trigger.get("metric"),
                "operator": trigger.get("operator"),
                "value": trigger.get("value"),
                # Older rules without an interval were never scheduled
                "checkIntervalMinutes": trigger.get("checkInterval") or 0,
            }
        rule["trigger"] = trigger

    conditions = rule.get("conditions") or {}
    if isinstance(conditions, dict):
        conditions = dict(conditions)
        status = conditions.get("campaignStatus")
        if isinstance(status, str):
            conditions["campaignStatus"] = status.lower()
        rule["conditions"] = conditions

    actions = rule.get("actions") or []
    if isinstance(actions, list):
        upgraded = []
        for action in actions:
            if isinstance(action, dict):
                action = dict(action)
                if "notifyMessage" in action:
                    action["message"] = action.pop("notifyMessage")
                if "budgetChange" in action:
                    action["percentChange"] = action.pop("budgetChange")
                if action.get("type") == "adjustBudget":
                    action.setdefault("percentChange", 0)
            upgraded.append(action)
        rule["actions"] = upgraded

    return rule
