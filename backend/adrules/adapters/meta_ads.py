"""
Meta (Facebook) Ads API Client

Implements the CampaignDataClient interface for Meta Ads using the Facebook
Marketing API.

API Documentation: https://developers.facebook.com/docs/marketing-apis
"""

from typing import Any, Optional, Sequence

import httpx
import structlog

from adrules.adapters.base import CampaignDataClient
from adrules.config import Settings
from adrules.core.exceptions import (
    AuthenticationError,
    RateLimitError,
    UpstreamError,
)
from adrules.models.campaign import (
    CampaignInfo,
    CampaignStatus,
    MetricLevel,
    MetricRecord,
)
from adrules.models.rule import normalize_account_id

logger = structlog.get_logger()

META_GRAPH_URL = "https://graph.facebook.com"

# Status mapping from Meta to unified status
META_STATUS_MAP = {
    "ACTIVE": CampaignStatus.ACTIVE,
    "PAUSED": CampaignStatus.PAUSED,
    "ARCHIVED": CampaignStatus.ARCHIVED,
    "DELETED": CampaignStatus.DELETED,
}

# Reverse status mapping
UNIFIED_TO_META_STATUS = {
    CampaignStatus.ACTIVE: "ACTIVE",
    CampaignStatus.PAUSED: "PAUSED",
}

CAMPAIGN_FIELDS = "id,name,status,daily_budget,lifetime_budget,insights.date_preset(maximum){spend}"

AUTH_ERROR_CODES = {190, 102, 104}
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613}


class MetaAdsClient(CampaignDataClient):
    """
    Meta (Facebook) Ads API client.

    Reads campaigns and insights and updates campaign status using a single
    system-user access token.
    """

    def __init__(
        self,
        access_token: str,
        api_version: str = "v19.0",
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(platform="meta")
        self.access_token = access_token
        self.base_url = f"{META_GRAPH_URL}/{api_version}"
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetaAdsClient":
        if not settings.meta_access_token:
            raise ValueError("META_ACCESS_TOKEN is not configured")
        return cls(
            access_token=settings.meta_access_token,
            api_version=settings.meta_api_version,
            timeout=settings.upstream_timeout_seconds,
        )

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        data: dict = None,
    ) -> dict:
        """
        Make a request to the Meta API.

        Args:
            method: HTTP method
            endpoint: API endpoint (without base URL)
            params: Query parameters
            data: Form body for POST

        Returns:
            JSON response

        Raises:
            UpstreamError (or subclass) on any failure
        """
        params = dict(params or {})
        params["access_token"] = self.access_token

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, f"/{endpoint}", params=params, data=data)
        except httpx.TimeoutException as e:
            raise UpstreamError(
                message=f"Meta API timed out: {endpoint}",
                details={"error": str(e)},
            )
        except httpx.RequestError as e:
            raise UpstreamError(message=f"Network error: {str(e)}")

        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError:
                raise UpstreamError(message=f"Meta API returned invalid JSON for {endpoint}")
            if not isinstance(payload, dict):
                raise UpstreamError(message=f"Unexpected Meta API payload for {endpoint}")
            return payload

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        self._handle_meta_error(response.status_code, error_data)

    def _handle_meta_error(self, status_code: int, error_data: Any):
        """
        Convert Meta API errors to upstream errors.

        Raises:
            AuthenticationError, RateLimitError or UpstreamError
        """
        error = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = error.get("code", 0)
        error_message = error.get("message", "Unknown error")
        error_type = error.get("type", "OAuthException")

        self._log_error(
            "meta_api",
            Exception(error_message),
            status_code=status_code,
            error_code=error_code,
            error_type=error_type,
        )

        if error_code in AUTH_ERROR_CODES:
            raise AuthenticationError(
                message=f"Meta authentication failed: {error_message}",
                details={"error_code": error_code},
            )

        if error_code in RATE_LIMIT_ERROR_CODES:
            raise RateLimitError(message="Meta API rate limit exceeded", retry_after=60)

        raise UpstreamError(
            message=f"Meta API error ({status_code}): {error_message}",
            details={"error_code": error_code, "error_type": error_type},
        )

    # =========================================================================
    # Campaign Operations
    # =========================================================================

    async def list_campaigns(self, account_id: str) -> list[CampaignInfo]:
        """List all campaigns in an account, following cursor pagination."""
        self._log_operation("list_campaigns", account_id=account_id)

        endpoint = f"{self._account_node(account_id)}/campaigns"
        params = {"fields": CAMPAIGN_FIELDS, "limit": 100}

        campaigns = []
        while True:
            data = await self._make_request("GET", endpoint, params=params)
            rows = data.get("data", [])
            if not isinstance(rows, list):
                raise UpstreamError(message="Campaign list payload is not a list")

            for row in rows:
                campaigns.append(self._parse_campaign(row, account_id))

            paging = data.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not after or not paging.get("next"):
                break
            params = {**params, "after": after}

        return campaigns

    async def set_campaign_status(
        self,
        campaign_id: str,
        status: CampaignStatus,
    ) -> None:
        """Pause or activate a campaign."""
        meta_status = UNIFIED_TO_META_STATUS.get(status)
        if meta_status is None:
            raise ValueError(f"Unsupported campaign status: {status}")

        self._log_operation("set_campaign_status", campaign_id=campaign_id, status=meta_status)

        data = await self._make_request("POST", campaign_id, data={"status": meta_status})
        if not data.get("success", False):
            raise UpstreamError(
                message=f"Meta did not confirm status change for campaign {campaign_id}",
                details={"response": data},
            )

    # =========================================================================
    # Metrics Operations
    # =========================================================================

    async def get_metric(
        self,
        object_id: str,
        level: MetricLevel,
        window: str,
        fields: Sequence[str],
    ) -> list[MetricRecord]:
        """Get insights rows for a campaign or account."""
        level = MetricLevel(level)
        node = self._account_node(object_id) if level == MetricLevel.ACCOUNT else object_id

        self._log_operation(
            "get_metric",
            object_id=object_id,
            level=level.value,
            window=window,
            fields=list(fields),
        )

        data = await self._make_request(
            "GET",
            f"{node}/insights",
            params={
                "fields": ",".join(fields),
                "level": level.value,
                "date_preset": window,
            },
        )

        records = []
        for row in data.get("data", []):
            if not isinstance(row, dict):
                raise UpstreamError(message="Insights row is not an object")
            records.append(
                MetricRecord(
                    values={k: v for k, v in row.items() if k not in ("date_start", "date_stop")},
                    date_start=row.get("date_start"),
                    date_stop=row.get("date_stop"),
                )
            )
        return records

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _account_node(self, account_id: str) -> str:
        """Meta addresses ad accounts as ``act_<id>``."""
        return f"act_{normalize_account_id(account_id)}"

    def _parse_campaign(self, row: Any, account_id: str) -> CampaignInfo:
        """Parse a campaign row; id and name are required."""
        if not isinstance(row, dict) or not row.get("id") or row.get("name") is None:
            raise UpstreamError(
                message="Campaign row missing id or name",
                details={"row": row},
            )

        spend = None
        insights = (row.get("insights") or {}).get("data") or []
        if insights:
            raw_spend = insights[0].get("spend")
            if raw_spend is not None:
                try:
                    spend = float(raw_spend)
                except (TypeError, ValueError):
                    raise UpstreamError(
                        message=f"Campaign {row['id']} has non-numeric spend",
                        details={"spend": raw_spend},
                    )

        return CampaignInfo(
            campaign_id=str(row["id"]),
            name=str(row["name"]),
            status=META_STATUS_MAP.get(row.get("status", ""), CampaignStatus.UNKNOWN),
            account_id=normalize_account_id(account_id),
            spend=spend,
            platform_data={
                "daily_budget": row.get("daily_budget"),
                "lifetime_budget": row.get("lifetime_budget"),
                "raw_status": row.get("status"),
            },
        )
