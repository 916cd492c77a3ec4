"""
Campaign data types returned by the campaign data client.

Provider responses are parsed into these records at the adapter boundary so
the evaluator never handles raw API payloads.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class CampaignStatus(str, Enum):
    """Campaign delivery status."""
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"
    DELETED = "deleted"
    UNKNOWN = "unknown"


class MetricLevel(str, Enum):
    """Aggregation level for metric queries."""
    CAMPAIGN = "campaign"
    ACCOUNT = "account"


@dataclass
class CampaignInfo:
    """Campaign state relevant to rule conditions."""
    campaign_id: str
    name: str
    status: CampaignStatus
    account_id: Optional[str] = None
    spend: Optional[float] = None  # lifetime spend as reported by the platform
    platform_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricRecord:
    """One row of metrics keyed by field name."""
    values: dict[str, Any]
    date_start: Optional[str] = None
    date_stop: Optional[str] = None

    def get(self, name: str) -> Any:
        return self.values.get(name)
