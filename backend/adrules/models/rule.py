"""
Automation Rule Models

Provides the persisted rule definition:
- Rule: trigger, static campaign conditions and an ordered action list
- Trigger variants: calendar schedule (cron) or metric threshold polling
- Action variants: pause, resume, notify, adjustBudget

Models serialize with camelCase keys; triggers and actions are tagged on
``type``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RuleModel(BaseModel):
    """Base for rule models: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Triggers
# =============================================================================

class ThresholdOperator(str, Enum):
    """Comparison applied between a metric value and the threshold."""
    GREATER = "gt"
    LESS = "lt"
    EQUAL = "eq"


OPERATOR_LABELS = {
    ThresholdOperator.GREATER: "greater than",
    ThresholdOperator.LESS: "less than",
    ThresholdOperator.EQUAL: "equal to",
}


class ScheduleTrigger(RuleModel):
    """Fires at the instants described by a cron expression."""
    type: Literal["schedule"] = "schedule"
    # Validated when scheduling so an invalid expression still persists
    cron_expression: str


class ThresholdTrigger(RuleModel):
    """Polls a metric every ``check_interval_minutes``."""
    type: Literal["threshold"] = "threshold"
    metric: str = Field(..., min_length=1)
    operator: ThresholdOperator
    value: float
    # Validated when scheduling so an invalid interval still persists
    check_interval_minutes: int


Trigger = Annotated[
    Union[ScheduleTrigger, ThresholdTrigger],
    Field(discriminator="type"),
]


# =============================================================================
# Conditions
# =============================================================================

class CampaignStatusFilter(str, Enum):
    """Campaign status a rule is restricted to."""
    ACTIVE = "active"
    PAUSED = "paused"
    ANY = "any"


class RuleConditions(RuleModel):
    """Static campaign filter. Unset fields impose no constraint."""
    campaign_status: Optional[CampaignStatusFilter] = None
    campaign_name_contains: Optional[str] = None
    min_spend: Optional[float] = None
    max_spend: Optional[float] = None


# =============================================================================
# Actions
# =============================================================================

class PauseAction(RuleModel):
    type: Literal["pause"] = "pause"


class ResumeAction(RuleModel):
    type: Literal["resume"] = "resume"


class NotifyAction(RuleModel):
    """Send an alert; ``{campaign_name}`` in the message is substituted."""
    type: Literal["notify"] = "notify"
    message: Optional[str] = None


class AdjustBudgetAction(RuleModel):
    """Accepted and stored, never executed."""
    type: Literal["adjustBudget"] = "adjustBudget"
    percent_change: float


Action = Annotated[
    Union[PauseAction, ResumeAction, NotifyAction, AdjustBudgetAction],
    Field(discriminator="type"),
]


# =============================================================================
# Rule
# =============================================================================

class RuleCreate(RuleModel):
    """Rule fields supplied by the caller."""
    name: str = Field(..., min_length=1, max_length=100)
    account_id: str = Field(..., min_length=1)
    enabled: bool = True
    trigger: Trigger
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    actions: list[Action] = Field(default_factory=list)


class RuleUpdate(RuleModel):
    """Partial edit. Only fields that are set are applied."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    account_id: Optional[str] = Field(None, min_length=1)
    enabled: Optional[bool] = None
    trigger: Optional[Trigger] = None
    conditions: Optional[RuleConditions] = None
    actions: Optional[list[Action]] = None


class Rule(RuleCreate):
    """A persisted automation rule."""
    id: str
    created_at: datetime
    last_run_at: Optional[datetime] = None

    @classmethod
    def from_create(cls, data: RuleCreate) -> "Rule":
        """Assign an id and creation timestamp to caller-supplied fields."""
        return cls(
            **data.model_dump(),
            id=new_rule_id(),
            created_at=datetime.now(timezone.utc),
        )

    def to_record(self) -> dict:
        """Flat JSON-compatible representation used by every store."""
        return self.model_dump(mode="json", by_alias=True)


def new_rule_id() -> str:
    """Opaque unique rule identifier."""
    return f"rule_{uuid4().hex}"


def normalize_account_id(account_id: str) -> str:
    """Strip the ``act_`` prefix Meta puts on ad account ids."""
    return account_id[4:] if account_id.startswith("act_") else account_id
