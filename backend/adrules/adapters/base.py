"""
Base Campaign Data Client

Abstract interface the rules engine uses to read campaign state and metrics
and to change campaign status. Each ad platform implements this interface.

Design principles:
- Async-first for non-blocking operations
- Provider payloads parsed into CampaignInfo / MetricRecord at this boundary
- Every failure surfaces as UpstreamError (or a subclass)
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Sequence, TypeVar

import structlog

from adrules.core.exceptions import UpstreamError
from adrules.models.campaign import (
    CampaignInfo,
    CampaignStatus,
    MetricLevel,
    MetricRecord,
)

logger = structlog.get_logger()

T = TypeVar("T")


async def call_upstream(call: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await a client call with a time limit.

    Any other exception from the client is wrapped, so callers only ever
    handle UpstreamError.

    Raises:
        UpstreamError: the call timed out or failed
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        raise UpstreamError(
            message=f"{operation} timed out after {timeout:g}s",
            details={"operation": operation, "timeout": timeout},
        )
    except UpstreamError:
        raise
    except Exception as e:
        logger.error(
            "client_unexpected_error",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise UpstreamError(
            message=f"{operation} failed: {e}",
            details={"operation": operation, "error_type": type(e).__name__},
        ) from e


class CampaignDataClient(ABC):
    """
    Abstract base class for campaign data clients.

    Implementations must raise UpstreamError for transport failures,
    provider errors and payloads missing required fields.
    """

    def __init__(self, platform: str):
        self.platform = platform
        self.logger = logger.bind(platform=platform)

    @abstractmethod
    async def list_campaigns(self, account_id: str) -> list[CampaignInfo]:
        """
        List campaigns in an ad account.

        Args:
            account_id: Platform account ID, with or without prefix

        Returns:
            All campaigns in the account
        """
        pass

    @abstractmethod
    async def get_metric(
        self,
        object_id: str,
        level: MetricLevel,
        window: str,
        fields: Sequence[str],
    ) -> list[MetricRecord]:
        """
        Get metrics for a campaign or account.

        Args:
            object_id: Campaign ID (campaign level) or account ID (account level)
            level: Aggregation level
            window: Date preset such as "today" or "yesterday"
            fields: Metric field names to return

        Returns:
            Metric rows keyed by field name
        """
        pass

    @abstractmethod
    async def set_campaign_status(
        self,
        campaign_id: str,
        status: CampaignStatus,
    ) -> None:
        """
        Set a campaign's delivery status.

        Args:
            campaign_id: Platform campaign ID
            status: CampaignStatus.ACTIVE or CampaignStatus.PAUSED
        """
        pass

    async def aclose(self) -> None:
        """Release any held connections."""
        return None

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def _log_operation(self, operation: str, **kwargs):
        """Log a client operation."""
        self.logger.info(f"client_{operation}", **kwargs)

    def _log_error(self, operation: str, error: Exception, **kwargs):
        """Log a client error."""
        self.logger.error(
            f"client_{operation}_error",
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        )
