"""Tests for the Meta Ads campaign data client (adrules.adapters.meta_ads)."""

import httpx
import pytest

from adrules.adapters.meta_ads import MetaAdsClient
from adrules.config import Settings
from adrules.core.exceptions import AuthenticationError, RateLimitError, UpstreamError
from adrules.models.campaign import CampaignStatus, MetricLevel


def make_client(handler) -> tuple[MetaAdsClient, list[httpx.Request]]:
    requests = []

    def recording_handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = MetaAdsClient("token-123", transport=httpx.MockTransport(recording_handler))
    return client, requests


def campaign_row(campaign_id, name, status="ACTIVE", spend=None):
    row = {"id": campaign_id, "name": name, "status": status}
    if spend is not None:
        row["insights"] = {"data": [{"spend": spend}]}
    return row


class TestListCampaigns:
    @pytest.mark.asyncio
    async def test_parses_campaigns(self):
        client, requests = make_client(lambda request: httpx.Response(200, json={"data": [
            campaign_row("1", "Summer Promo", spend="42.50"),
            campaign_row("2", "Brand", status="PAUSED"),
            campaign_row("3", "Old", status="IN_PROCESS"),
        ]}))

        campaigns = await client.list_campaigns("123")

        assert [(c.campaign_id, c.status) for c in campaigns] == [
            ("1", CampaignStatus.ACTIVE),
            ("2", CampaignStatus.PAUSED),
            ("3", CampaignStatus.UNKNOWN),
        ]
        assert campaigns[0].spend == 42.5
        assert campaigns[1].spend is None
        assert campaigns[0].account_id == "123"

        request = requests[0]
        assert request.method == "GET"
        assert request.url.path == "/v19.0/act_123/campaigns"
        assert request.url.params["access_token"] == "token-123"

    @pytest.mark.asyncio
    async def test_prefixed_account_id_is_not_doubled(self):
        client, requests = make_client(lambda request: httpx.Response(200, json={"data": []}))
        await client.list_campaigns("act_123")
        assert requests[0].url.path == "/v19.0/act_123/campaigns"

    @pytest.mark.asyncio
    async def test_follows_pagination(self):
        def handler(request):
            if "after" not in request.url.params:
                return httpx.Response(200, json={
                    "data": [campaign_row("1", "First")],
                    "paging": {"cursors": {"after": "abc"}, "next": "https://graph.facebook.com/next"},
                })
            assert request.url.params["after"] == "abc"
            return httpx.Response(200, json={
                "data": [campaign_row("2", "Second")],
                "paging": {"cursors": {"after": "def"}},
            })

        client, requests = make_client(handler)

        campaigns = await client.list_campaigns("123")

        assert [c.campaign_id for c in campaigns] == ["1", "2"]
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_row_without_name_is_rejected(self):
        client, _ = make_client(lambda request: httpx.Response(200, json={"data": [{"id": "1"}]}))
        with pytest.raises(UpstreamError):
            await client.list_campaigns("123")


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code, error_class",
        [(190, AuthenticationError), (17, RateLimitError), (100, UpstreamError)],
    )
    async def test_meta_error_codes(self, code, error_class):
        client, _ = make_client(lambda request: httpx.Response(
            400, json={"error": {"code": code, "message": "nope", "type": "OAuthException"}},
        ))
        with pytest.raises(error_class):
            await client.list_campaigns("123")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(handler)
        with pytest.raises(UpstreamError):
            await client.list_campaigns("123")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client, _ = make_client(handler)
        with pytest.raises(UpstreamError) as exc_info:
            await client.list_campaigns("123")
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client, _ = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(UpstreamError):
            await client.list_campaigns("123")


class TestSetCampaignStatus:
    @pytest.mark.asyncio
    async def test_pause_posts_status(self):
        client, requests = make_client(lambda request: httpx.Response(200, json={"success": True}))

        await client.set_campaign_status("987", CampaignStatus.PAUSED)

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v19.0/987"
        assert request.content == b"status=PAUSED"

    @pytest.mark.asyncio
    async def test_unconfirmed_change_raises(self):
        client, _ = make_client(lambda request: httpx.Response(200, json={"success": False}))
        with pytest.raises(UpstreamError):
            await client.set_campaign_status("987", CampaignStatus.ACTIVE)


class TestGetMetric:
    @pytest.mark.asyncio
    async def test_campaign_insights(self):
        client, requests = make_client(lambda request: httpx.Response(200, json={"data": [
            {"cpc": "1.25", "date_start": "2026-10-18", "date_stop": "2026-10-18"},
        ]}))

        records = await client.get_metric("987", MetricLevel.CAMPAIGN, "today", ["cpc"])

        assert records[0].get("cpc") == "1.25"
        assert records[0].date_start == "2026-10-18"
        assert "date_start" not in records[0].values
        params = requests[0].url.params
        assert requests[0].url.path == "/v19.0/987/insights"
        assert (params["fields"], params["level"], params["date_preset"]) == ("cpc", "campaign", "today")

    @pytest.mark.asyncio
    async def test_account_insights_use_account_node(self):
        client, requests = make_client(lambda request: httpx.Response(200, json={"data": []}))

        assert await client.get_metric("123", MetricLevel.ACCOUNT, "today", ["spend"]) == []
        assert requests[0].url.path == "/v19.0/act_123/insights"


def test_from_settings_requires_token():
    with pytest.raises(ValueError):
        MetaAdsClient.from_settings(Settings(meta_access_token=None))

    client = MetaAdsClient.from_settings(Settings(meta_access_token="abc", meta_api_version="v20.0"))
    assert client.base_url == "https://graph.facebook.com/v20.0"
