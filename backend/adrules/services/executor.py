"""
Action Executor

Applies a rule's actions, in declared order, to one triggered campaign.
A failing action is recorded and the remaining actions still run.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from adrules.adapters.base import CampaignDataClient, call_upstream
from adrules.core.metrics import ACTIONS_EXECUTED
from adrules.models.campaign import CampaignStatus
from adrules.models.rule import (
    OPERATOR_LABELS,
    Action,
    AdjustBudgetAction,
    NotifyAction,
    PauseAction,
    ResumeAction,
    Rule,
    ThresholdTrigger,
)
from adrules.notifications.base import AlertKind, AlertSender
from adrules.services.evaluator import TriggeredCampaign

logger = structlog.get_logger()


@dataclass
class ActionResult:
    """Result of executing an action."""
    action_type: str
    campaign_id: str
    status: str  # success, failed, skipped
    details: str
    error: Optional[str] = None


def render_message(template: Optional[str], rule: Rule, triggered: TriggeredCampaign) -> str:
    """Substitute ``{campaign_name}``, ``{rule_name}`` and ``{metric_value}``."""
    campaign = triggered.campaign
    if not template:
        return f'Alert triggered for campaign "{campaign.name}"'

    text = template.replace("{campaign_name}", campaign.name).replace("{rule_name}", rule.name)
    if triggered.metric_value is not None:
        text = text.replace("{metric_value}", f"{triggered.metric_value:g}")
    return text


def trigger_reason(rule: Rule, triggered: TriggeredCampaign) -> Optional[str]:
    """Human readable reason for threshold fires."""
    trigger = rule.trigger
    if not isinstance(trigger, ThresholdTrigger) or triggered.metric_value is None:
        return None
    op_label = OPERATOR_LABELS.get(trigger.operator, trigger.operator.value)
    return f"{trigger.metric.upper()} ({triggered.metric_value:.2f}) is {op_label} {trigger.value:.2f}"


class ActionExecutor:
    """Executes rule actions against the campaign data client."""

    def __init__(
        self,
        client: CampaignDataClient,
        alert_sender: Optional[AlertSender] = None,
        timeout: float = 20.0,
    ):
        self.client = client
        self.alert_sender = alert_sender
        self.timeout = timeout

    async def apply(self, rule: Rule, triggered: TriggeredCampaign) -> list[ActionResult]:
        """Run every action of ``rule`` for one campaign, in order."""
        results = []
        for action in rule.actions:
            result = await self.execute_action(rule, action, triggered)
            ACTIONS_EXECUTED.labels(action_type=result.action_type, status=result.status).inc()
            results.append(result)
        return results

    async def execute_action(
        self,
        rule: Rule,
        action: Action,
        triggered: TriggeredCampaign,
    ) -> ActionResult:
        """
        Execute a single action.

        Args:
            rule: The rule triggering this action
            action: Action configuration
            triggered: Campaign to act on

        Returns:
            ActionResult with status and details
        """
        campaign = triggered.campaign
        action_type = action.type

        logger.info(
            "action_executing",
            rule_id=rule.id,
            action_type=action_type,
            campaign_id=campaign.campaign_id,
            campaign_name=campaign.name,
        )

        try:
            if isinstance(action, PauseAction):
                await call_upstream(
                    self.client.set_campaign_status(campaign.campaign_id, CampaignStatus.PAUSED),
                    self.timeout,
                    "set_campaign_status",
                )
                await self._send_alert(
                    AlertKind.ACTION,
                    "Campaign Auto-Paused",
                    f'Rule "{rule.name}" paused campaign "{campaign.name}"',
                    self._alert_fields(rule, triggered),
                )
                return ActionResult(
                    action_type=action_type,
                    campaign_id=campaign.campaign_id,
                    status="success",
                    details=f"Campaign '{campaign.name}' paused",
                )

            elif isinstance(action, ResumeAction):
                await call_upstream(
                    self.client.set_campaign_status(campaign.campaign_id, CampaignStatus.ACTIVE),
                    self.timeout,
                    "set_campaign_status",
                )
                await self._send_alert(
                    AlertKind.ACTION,
                    "Campaign Auto-Resumed",
                    f'Rule "{rule.name}" resumed campaign "{campaign.name}"',
                    self._alert_fields(rule, triggered),
                )
                return ActionResult(
                    action_type=action_type,
                    campaign_id=campaign.campaign_id,
                    status="success",
                    details=f"Campaign '{campaign.name}' resumed",
                )

            elif isinstance(action, NotifyAction):
                if self.alert_sender is None:
                    return ActionResult(
                        action_type=action_type,
                        campaign_id=campaign.campaign_id,
                        status="skipped",
                        details="No alert sender configured",
                    )
                await self._send_alert(
                    AlertKind.ALERT,
                    rule.name,
                    render_message(action.message, rule, triggered),
                    self._alert_fields(rule, triggered),
                )
                return ActionResult(
                    action_type=action_type,
                    campaign_id=campaign.campaign_id,
                    status="success",
                    details="Notification sent",
                )

            elif isinstance(action, AdjustBudgetAction):
                logger.warning(
                    "adjust_budget_not_implemented",
                    rule_id=rule.id,
                    campaign_id=campaign.campaign_id,
                    percent_change=action.percent_change,
                )
                return ActionResult(
                    action_type=action_type,
                    campaign_id=campaign.campaign_id,
                    status="skipped",
                    details="Budget adjustment is not supported",
                )

            else:
                return ActionResult(
                    action_type=action_type,
                    campaign_id=campaign.campaign_id,
                    status="failed",
                    details=f"Unknown action type: {action_type}",
                    error="Unsupported action type",
                )

        except Exception as e:
            logger.error(
                "action_execution_failed",
                rule_id=rule.id,
                action_type=action_type,
                campaign_id=campaign.campaign_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ActionResult(
                action_type=action_type,
                campaign_id=campaign.campaign_id,
                status="failed",
                details="Action execution failed",
                error=str(e),
            )

    async def _send_alert(
        self,
        kind: AlertKind,
        title: str,
        message: str,
        fields: Optional[list[dict]] = None,
    ) -> None:
        """Best-effort send; never raises."""
        if self.alert_sender is None:
            return
        try:
            await self.alert_sender.send(kind, title, message, fields)
        except Exception as e:
            logger.error("alert_send_failed", title=title, error=str(e))

    def _alert_fields(self, rule: Rule, triggered: TriggeredCampaign) -> list[dict]:
        fields = [
            {"name": "Campaign", "value": triggered.campaign.name},
            {"name": "Account", "value": rule.account_id},
        ]
        reason = trigger_reason(rule, triggered)
        if reason:
            fields.append({"name": "Trigger", "value": reason})
        return fields
