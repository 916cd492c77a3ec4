"""Alert sender interface."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional


class AlertKind(str, Enum):
    """Kind of alert; drives colour and emoji."""
    ALERT = "alert"
    ACTION = "action"
    REPORT = "report"


class AlertSender(ABC):
    """
    One-way, best-effort notification channel.

    ``send`` must never raise: implementations log transport failures and
    return.
    """

    @abstractmethod
    async def send(
        self,
        kind: AlertKind,
        title: str,
        message: str,
        fields: Optional[list[dict]] = None,
    ) -> None:
        """
        Send an alert.

        Args:
            kind: Alert kind
            title: Short title
            message: Body text (mrkdwn)
            fields: Optional ``{"name": ..., "value": ...}`` pairs
        """
        pass
