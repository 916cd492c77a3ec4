from adrules.notifications.base import AlertKind, AlertSender
from adrules.notifications.slack import SlackAlertSender

__all__ = ["AlertKind", "AlertSender", "SlackAlertSender"]
