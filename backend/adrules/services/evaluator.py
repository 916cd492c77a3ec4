"""
Rule Evaluator

Decides which campaigns a rule fires for:
1. List the account's campaigns
2. Keep those passing the rule's static conditions
3. For threshold rules, keep those whose metric for today satisfies the
   comparison; schedule rules keep every passing campaign
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from adrules.adapters.base import CampaignDataClient, call_upstream
from adrules.core.exceptions import UpstreamError
from adrules.models.campaign import CampaignInfo, MetricLevel
from adrules.models.rule import (
    CampaignStatusFilter,
    Rule,
    RuleConditions,
    ThresholdOperator,
    ThresholdTrigger,
)

logger = structlog.get_logger()


@dataclass
class TriggeredCampaign:
    """A campaign a rule fired for."""
    campaign: CampaignInfo
    metric_value: Optional[float] = None  # set for threshold rules


@dataclass
class EvaluationOutcome:
    """Result of evaluating a rule."""
    rule_id: str
    campaigns_checked: int = 0
    campaigns_matched: int = 0
    triggered: list[TriggeredCampaign] = field(default_factory=list)
    metric_errors: dict[str, str] = field(default_factory=dict)  # campaign_id -> error


def evaluate_condition(
    current_value: float,
    operator: ThresholdOperator,
    threshold: float,
) -> bool:
    """Compare a metric value with a threshold. Equality is exact."""
    if operator == ThresholdOperator.GREATER:
        return current_value > threshold
    elif operator == ThresholdOperator.LESS:
        return current_value < threshold
    elif operator == ThresholdOperator.EQUAL:
        return current_value == threshold
    else:
        return False


def matches_conditions(campaign: CampaignInfo, conditions: RuleConditions) -> bool:
    """Whether a campaign passes every configured static condition."""
    status = conditions.campaign_status
    if status is not None and status != CampaignStatusFilter.ANY:
        if campaign.status.value != status.value:
            return False

    needle = conditions.campaign_name_contains
    if needle:
        if needle.lower() not in (campaign.name or "").lower():
            return False

    if conditions.min_spend is not None or conditions.max_spend is not None:
        # Unknown spend cannot satisfy a bound
        if campaign.spend is None:
            return False
        if conditions.min_spend is not None and campaign.spend < conditions.min_spend:
            return False
        if conditions.max_spend is not None and campaign.spend > conditions.max_spend:
            return False

    return True


class RuleEvaluator:
    """Evaluates rules against live campaign data."""

    def __init__(
        self,
        client: CampaignDataClient,
        timeout: float = 20.0,
        metric_window: str = "today",
    ):
        self.client = client
        self.timeout = timeout
        self.metric_window = metric_window

    async def evaluate(self, rule: Rule) -> EvaluationOutcome:
        """
        Evaluate a rule.

        Args:
            rule: The rule to evaluate

        Returns:
            EvaluationOutcome with the triggered campaigns

        Raises:
            UpstreamError: the campaign list could not be fetched
        """
        log = logger.bind(rule_id=rule.id, account_id=rule.account_id)

        campaigns = await call_upstream(
            self.client.list_campaigns(rule.account_id),
            self.timeout,
            "list_campaigns",
        )

        outcome = EvaluationOutcome(rule_id=rule.id, campaigns_checked=len(campaigns))
        matching = [c for c in campaigns if matches_conditions(c, rule.conditions)]
        outcome.campaigns_matched = len(matching)

        trigger = rule.trigger
        if not isinstance(trigger, ThresholdTrigger):
            outcome.triggered = [TriggeredCampaign(campaign=c) for c in matching]
        else:
            for campaign in matching:
                try:
                    value = await self._metric_value(campaign.campaign_id, trigger.metric)
                except UpstreamError as e:
                    log.warning(
                        "campaign_metric_fetch_failed",
                        campaign_id=campaign.campaign_id,
                        metric=trigger.metric,
                        error=e.message,
                    )
                    outcome.metric_errors[campaign.campaign_id] = e.message
                    continue

                if value is None:
                    continue

                if evaluate_condition(value, trigger.operator, trigger.value):
                    outcome.triggered.append(
                        TriggeredCampaign(campaign=campaign, metric_value=value)
                    )

        log.info(
            "rule_evaluated",
            campaigns_checked=outcome.campaigns_checked,
            campaigns_matched=outcome.campaigns_matched,
            triggered=len(outcome.triggered),
            metric_errors=len(outcome.metric_errors),
        )
        return outcome

    async def _metric_value(self, campaign_id: str, metric: str) -> Optional[float]:
        """
        Today's value of ``metric`` for a campaign.

        Returns None when the provider has no rows (no delivery today).

        Raises:
            UpstreamError: fetch failed, or the row lacks a numeric value
        """
        records = await call_upstream(
            self.client.get_metric(campaign_id, MetricLevel.CAMPAIGN, self.metric_window, [metric]),
            self.timeout,
            "get_metric",
        )
        if not records:
            return None

        raw = records[0].get(metric)
        if raw is None:
            raise UpstreamError(
                message=f"Metric {metric!r} missing for campaign {campaign_id}",
                details={"campaign_id": campaign_id, "metric": metric},
            )
        try:
            return float(raw)
        except (TypeError, ValueError):
            raise UpstreamError(
                message=f"Metric {metric!r} is not numeric for campaign {campaign_id}",
                details={"campaign_id": campaign_id, "metric": metric, "value": raw},
            )
