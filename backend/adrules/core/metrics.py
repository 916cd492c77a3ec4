"""Prometheus metrics for rule fires and actions."""

from prometheus_client import Counter, Gauge

RULE_FIRES = Counter(
    "adrules_rule_fires_total",
    "Rule evaluation cycles by trigger source and outcome",
    ["source", "outcome"],  # source: scheduled, manual; outcome: completed, upstream_error, skipped, crashed
)

ACTIONS_EXECUTED = Counter(
    "adrules_actions_total",
    "Actions applied to triggered campaigns",
    ["action_type", "status"],
)

SCHEDULED_JOBS = Gauge(
    "adrules_scheduled_jobs",
    "Live scheduled jobs",
)
