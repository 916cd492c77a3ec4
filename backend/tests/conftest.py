"""Shared fixtures: in-memory campaign client, alert sender and rule store."""

import asyncio
from typing import Any, Optional, Sequence

import pytest

from adrules.adapters.base import CampaignDataClient
from adrules.core.exceptions import PersistenceError, UpstreamError
from adrules.models.campaign import CampaignInfo, CampaignStatus, MetricLevel, MetricRecord
from adrules.models.rule import Rule, RuleCreate
from adrules.notifications.base import AlertKind, AlertSender
from adrules.services.automation_engine import AutomationEngine
from adrules.stores.base import RuleStore, decode_rules, encode_rules


class FakeCampaignClient(CampaignDataClient):
    """Campaign data held in memory; failures injected per campaign."""

    def __init__(self):
        super().__init__(platform="fake")
        self.campaigns: dict[str, list[CampaignInfo]] = {}
        self.metrics: dict[str, Any] = {}  # campaign_id -> value, list of records or exception
        self.list_error: Optional[Exception] = None
        self.status_errors: dict[str, Exception] = {}
        self.list_delay: float = 0.0
        self.list_gate: Optional[asyncio.Event] = None
        self.list_calls: list[str] = []
        self.metric_calls: list[tuple] = []
        self.status_calls: list[tuple[str, CampaignStatus]] = []

    def add_campaign(
        self,
        account_id: str,
        campaign_id: str,
        name: str,
        status: CampaignStatus = CampaignStatus.ACTIVE,
        spend: Optional[float] = None,
    ) -> CampaignInfo:
        campaign = CampaignInfo(
            campaign_id=campaign_id,
            name=name,
            status=status,
            account_id=account_id,
            spend=spend,
        )
        self.campaigns.setdefault(account_id, []).append(campaign)
        return campaign

    async def list_campaigns(self, account_id: str) -> list[CampaignInfo]:
        self.list_calls.append(account_id)
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error is not None:
            raise self.list_error
        return list(self.campaigns.get(account_id, []))

    async def get_metric(
        self,
        object_id: str,
        level: MetricLevel,
        window: str,
        fields: Sequence[str],
    ) -> list[MetricRecord]:
        self.metric_calls.append((object_id, level, window, tuple(fields)))
        value = self.metrics.get(object_id)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [MetricRecord(values={name: str(value) for name in fields})]

    async def set_campaign_status(self, campaign_id: str, status: CampaignStatus) -> None:
        self.status_calls.append((campaign_id, status))
        error = self.status_errors.get(campaign_id)
        if error is not None:
            raise error


class RecordingAlertSender(AlertSender):
    """Keeps every alert it is asked to send."""

    def __init__(self, error: Optional[Exception] = None):
        self.sent: list[dict] = []
        self.error = error

    async def send(
        self,
        kind: AlertKind,
        title: str,
        message: str,
        fields: Optional[list[dict]] = None,
    ) -> None:
        self.sent.append({"kind": kind, "title": title, "message": message, "fields": fields})
        if self.error is not None:
            raise self.error


class InMemoryRuleStore(RuleStore):
    """Keeps the encoded rules document so saves go through serialization."""

    backend = "memory"

    def __init__(self, rules: Sequence[Rule] = ()):
        self.document = encode_rules(rules) if rules else None
        self.fail_load = False
        self.fail_save = False
        self.save_count = 0

    async def load_all(self) -> list[Rule]:
        if self.fail_load:
            raise PersistenceError("store unavailable")
        if self.document is None:
            return []
        return decode_rules(self.document)

    async def save_all(self, rules: Sequence[Rule]) -> None:
        if self.fail_save:
            raise PersistenceError("store unavailable")
        self.document = encode_rules(rules)
        self.save_count += 1

    def stored_ids(self) -> list[str]:
        if self.document is None:
            return []
        return [record["id"] for record in self.document["rules"]]


def threshold_rule_data(**overrides) -> dict:
    data = {
        "name": "High CPC",
        "accountId": "act_123",
        "enabled": True,
        "trigger": {
            "type": "threshold",
            "metric": "cpc",
            "operator": "gt",
            "value": 100,
            "checkIntervalMinutes": 15,
        },
        "conditions": {},
        "actions": [{"type": "pause"}],
    }
    data.update(overrides)
    return data


def schedule_rule_data(**overrides) -> dict:
    data = {
        "name": "Morning check",
        "accountId": "act_123",
        "enabled": True,
        "trigger": {"type": "schedule", "cronExpression": "0 9 * * *"},
        "conditions": {},
        "actions": [{"type": "notify", "message": "Check {campaign_name}"}],
    }
    data.update(overrides)
    return data


def make_rule(**overrides) -> Rule:
    """A persisted threshold rule."""
    return Rule.from_create(RuleCreate.model_validate(threshold_rule_data(**overrides)))


@pytest.fixture
def client() -> FakeCampaignClient:
    return FakeCampaignClient()


@pytest.fixture
def sender() -> RecordingAlertSender:
    return RecordingAlertSender()


@pytest.fixture
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
async def engine(client, store, sender):
    engine = AutomationEngine(client, store, sender, upstream_timeout=1.0)
    await engine.start()
    yield engine
    await engine.stop()
