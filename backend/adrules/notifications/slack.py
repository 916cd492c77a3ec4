"""
Slack alert sender.

Posts alerts to an incoming webhook as a coloured attachment with a header,
message section, optional fields and a footer. Performance reports use the
same layout with a metrics field grid and an optional top-campaigns list.
"""

from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog

from adrules.config import Settings
from adrules.notifications.base import AlertKind, AlertSender

logger = structlog.get_logger()

ALERT_COLORS = {
    AlertKind.ALERT: "#FFA500",
    AlertKind.ACTION: "#36A64F",
    AlertKind.REPORT: "#0066CC",
}

ALERT_EMOJI = {
    AlertKind.ALERT: "⚠️",
    AlertKind.ACTION: "✅",
    AlertKind.REPORT: "📊",
}


class SlackAlertSender(AlertSender):
    """Slack incoming-webhook alert sender."""

    def __init__(
        self,
        webhook_url: str,
        app_name: str = "Ad Rules Engine",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.app_name = app_name
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SlackAlertSender"]:
        """Build a sender, or None when no webhook is configured."""
        if not settings.slack_webhook_url:
            return None
        return cls(webhook_url=settings.slack_webhook_url, app_name=settings.app_name)

    def build_payload(
        self,
        kind: AlertKind,
        title: str,
        message: str,
        fields: Optional[list[dict]] = None,
        color: Optional[str] = None,
        extra_blocks: Optional[list[dict]] = None,
    ) -> dict:
        """Build the webhook payload for an alert."""
        kind = AlertKind(kind)
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"{ALERT_EMOJI.get(kind, '📋')} {title}",
                    "emoji": True,
                },
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": message},
            },
        ]

        if fields:
            blocks.append({
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{f['name']}:*\n{f['value']}"}
                    for f in fields
                ],
            })

        if extra_blocks:
            blocks.extend(extra_blocks)

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        blocks.append({
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": f"{self.app_name} • {timestamp}"},
            ],
        })

        return {
            "attachments": [
                {
                    "color": color or ALERT_COLORS.get(kind, "#808080"),
                    "blocks": blocks,
                }
            ]
        }

    def build_performance_report(
        self,
        account_name: str,
        period: str,
        metrics: dict,
        top_campaigns: Optional[list[dict]] = None,
    ) -> dict:
        """
        Build a performance report payload.

        Args:
            account_name: Account shown in the header
            period: Reporting period label, e.g. "Yesterday"
            metrics: Formatted values keyed by spend, impressions, clicks,
                ctr and optionally conversions
            top_campaigns: Optional ``{"name", "spend", "ctr"}`` rows
        """
        fields = [
            {"name": "Spend", "value": metrics.get("spend", "-")},
            {"name": "Impressions", "value": metrics.get("impressions", "-")},
            {"name": "Clicks", "value": metrics.get("clicks", "-")},
            {"name": "CTR", "value": metrics.get("ctr", "-")},
        ]
        if metrics.get("conversions") is not None:
            fields.append({"name": "Conversions", "value": metrics["conversions"]})

        extra_blocks = []
        if top_campaigns:
            lines = "\n".join(
                f"• *{c['name']}* - {c['spend']} ({c['ctr']} CTR)" for c in top_campaigns
            )
            extra_blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Top Campaigns:*\n{lines}"},
            })

        return self.build_payload(
            AlertKind.REPORT,
            f"Performance Report: {account_name}",
            f"*Period:* {period}",
            fields,
            extra_blocks=extra_blocks,
        )

    async def send(
        self,
        kind: AlertKind,
        title: str,
        message: str,
        fields: Optional[list[dict]] = None,
    ) -> None:
        """Send an alert. Failures are logged, never raised."""
        try:
            kind = AlertKind(kind)
            payload = self.build_payload(kind, title, message, fields)
        except Exception as e:
            logger.error("slack_notification_failed", error=str(e), title=title)
            return
        await self._post(payload, title, kind)

    async def send_performance_report(
        self,
        account_name: str,
        period: str,
        metrics: dict,
        top_campaigns: Optional[list[dict]] = None,
    ) -> None:
        """Send a performance report. Failures are logged, never raised."""
        title = f"Performance Report: {account_name}"
        try:
            payload = self.build_performance_report(account_name, period, metrics, top_campaigns)
        except Exception as e:
            logger.error("slack_notification_failed", error=str(e), title=title)
            return
        await self._post(payload, title, AlertKind.REPORT)

    async def _post(self, payload: dict, title: str, kind: AlertKind) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()

            logger.info("slack_notification_sent", title=title, kind=kind.value)

        except Exception as e:
            logger.error("slack_notification_failed", error=str(e), title=title)
