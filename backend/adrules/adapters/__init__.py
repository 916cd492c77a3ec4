"""
Campaign data clients.

Provides the CampaignDataClient interface and the Meta implementation.
"""

from adrules.adapters.base import CampaignDataClient
from adrules.adapters.meta_ads import MetaAdsClient

__all__ = [
    "CampaignDataClient",
    "MetaAdsClient",
]
