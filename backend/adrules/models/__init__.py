"""
Data models.

Rule models are pydantic; campaign data records are dataclasses; the sql
store's table is a SQLAlchemy model.
"""

from adrules.models.campaign import (
    CampaignInfo,
    CampaignStatus,
    MetricLevel,
    MetricRecord,
)
from adrules.models.rule import (
    Action,
    AdjustBudgetAction,
    CampaignStatusFilter,
    NotifyAction,
    OPERATOR_LABELS,
    PauseAction,
    ResumeAction,
    Rule,
    RuleConditions,
    RuleCreate,
    RuleUpdate,
    ScheduleTrigger,
    ThresholdOperator,
    ThresholdTrigger,
    Trigger,
    new_rule_id,
    normalize_account_id,
)
from adrules.models.rule_record import AutomationRuleRecord

__all__ = [
    # Campaign data
    "CampaignInfo",
    "CampaignStatus",
    "MetricLevel",
    "MetricRecord",
    # Rules
    "Action",
    "AdjustBudgetAction",
    "CampaignStatusFilter",
    "NotifyAction",
    "OPERATOR_LABELS",
    "PauseAction",
    "ResumeAction",
    "Rule",
    "RuleConditions",
    "RuleCreate",
    "RuleUpdate",
    "ScheduleTrigger",
    "ThresholdOperator",
    "ThresholdTrigger",
    "Trigger",
    "new_rule_id",
    "normalize_account_id",
    # Tables
    "AutomationRuleRecord",
]
