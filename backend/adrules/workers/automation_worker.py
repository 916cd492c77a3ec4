"""
Automation Worker

Hosts the rules engine inside the arq worker process:
- on startup: build the Meta client, Slack sender and rule store, start the engine
- run_automation_rule: manual run enqueued by the dashboard
- report_engine_status: periodic health log
- send_account_report: account performance report posted to Slack
- on shutdown: stop the engine and release connections
"""

from datetime import datetime, timezone

import sentry_sdk
import structlog
from prometheus_client import start_http_server

from adrules.adapters.base import call_upstream
from adrules.adapters.meta_ads import MetaAdsClient
from adrules.config import settings
from adrules.core.exceptions import UpstreamError
from adrules.core.logging import configure_logging
from adrules.models.campaign import MetricLevel
from adrules.notifications.slack import SlackAlertSender
from adrules.services.automation_engine import AutomationEngine
from adrules.stores import SqlRuleStore, create_rule_store

logger = structlog.get_logger()


async def startup(ctx: dict) -> None:
    """Build and start the automation engine."""
    configure_logging(settings)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1 if settings.is_production else 1.0,
        )
        logger.info("sentry_initialized", environment=settings.environment)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info("metrics_exporter_started", port=settings.metrics_port)

    client = MetaAdsClient.from_settings(settings)
    alert_sender = SlackAlertSender.from_settings(settings)
    store = create_rule_store(settings)

    # Use migrations in production
    if isinstance(store, SqlRuleStore) and not settings.is_production:
        await store.create_schema()

    engine = AutomationEngine.from_settings(settings, client, store, alert_sender)
    await engine.start()

    ctx["automation_engine"] = engine
    logger.info("automation_worker_started", **engine.status())


async def shutdown(ctx: dict) -> None:
    """Stop the engine and close its connections."""
    engine: AutomationEngine = ctx.get("automation_engine")
    if engine is None:
        return

    await engine.stop()
    await engine.client.aclose()
    await engine.store.aclose()
    logger.info("automation_worker_stopped")


async def run_automation_rule(ctx: dict, rule_id: str) -> dict:
    """
    Run a rule now.

    Args:
        ctx: Worker context
        rule_id: Rule to run

    Returns:
        dict with status and counts
    """
    engine: AutomationEngine = ctx["automation_engine"]
    result = await engine.run_rule(rule_id)

    if result is None:
        return {"status": "skipped", "rule_id": rule_id, "reason": "unknown_rule"}

    return {
        "status": "success" if result.succeeded else "failed",
        "rule_id": rule_id,
        "campaigns_checked": result.campaigns_checked,
        "campaigns_triggered": len(result.triggered_campaign_ids),
        "actions_executed": len(result.action_results),
        "actions_failed": sum(1 for r in result.action_results if r.status == "failed"),
        "error": result.error,
    }


async def report_engine_status(ctx: dict) -> dict:
    """Log engine health."""
    engine: AutomationEngine = ctx["automation_engine"]
    status = engine.status()
    logger.info(
        "automation_engine_status",
        checked_at=datetime.now(timezone.utc).isoformat(),
        **status,
    )
    return {"status": "success", **status}


REPORT_FIELDS = ["spend", "impressions", "clicks", "ctr"]


def _format_metric(value, template: str) -> str:
    try:
        return template.format(float(value))
    except (TypeError, ValueError):
        return "-"


async def send_account_report(ctx: dict, account_id: str, window: str = "yesterday") -> dict:
    """
    Post an account performance report to Slack.

    Args:
        ctx: Worker context
        account_id: Ad account to report on
        window: Insights date preset

    Returns:
        dict with status
    """
    engine: AutomationEngine = ctx["automation_engine"]
    sender = engine.alert_sender
    if not isinstance(sender, SlackAlertSender):
        return {"status": "skipped", "account_id": account_id, "reason": "slack_not_configured"}

    try:
        records = await call_upstream(
            engine.client.get_metric(account_id, MetricLevel.ACCOUNT, window, REPORT_FIELDS),
            engine.evaluator.timeout,
            "get_metric",
        )
    except UpstreamError as e:
        logger.error("account_report_failed", account_id=account_id, error=e.message)
        return {"status": "failed", "account_id": account_id, "error": e.message}

    row = records[0].values if records else {}
    metrics = {
        "spend": _format_metric(row.get("spend"), "{:,.2f}"),
        "impressions": _format_metric(row.get("impressions"), "{:,.0f}"),
        "clicks": _format_metric(row.get("clicks"), "{:,.0f}"),
        "ctr": _format_metric(row.get("ctr"), "{:.2f}%"),
    }

    await sender.send_performance_report(
        account_name=account_id,
        period=window.replace("_", " ").title(),
        metrics=metrics,
    )
    logger.info("account_report_sent", account_id=account_id, window=window)
    return {"status": "success", "account_id": account_id, "window": window}
