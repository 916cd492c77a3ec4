from adrules.services.automation_engine import AutomationEngine, RuleRunResult
from adrules.services.evaluator import (
    EvaluationOutcome,
    RuleEvaluator,
    TriggeredCampaign,
    evaluate_condition,
    matches_conditions,
)
from adrules.services.executor import ActionExecutor, ActionResult, render_message
from adrules.services.scheduler import RuleScheduler, build_cron_trigger

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "AutomationEngine",
    "EvaluationOutcome",
    "RuleEvaluator",
    "RuleRunResult",
    "RuleScheduler",
    "TriggeredCampaign",
    "build_cron_trigger",
    "evaluate_condition",
    "matches_conditions",
    "render_message",
]
