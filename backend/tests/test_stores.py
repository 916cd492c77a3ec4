"""Tests for rule store backends (adrules.stores)."""

import json

import pytest
import redis.asyncio as redis

from adrules.config import Settings
from adrules.core.database import create_engine
from adrules.core.exceptions import PersistenceError
from adrules.models.rule import AdjustBudgetAction, NotifyAction, ScheduleTrigger, ThresholdTrigger
from adrules.stores import (
    JsonFileRuleStore,
    RedisRuleStore,
    SqlRuleStore,
    create_rule_store,
    decode_rules,
)

from conftest import make_rule, schedule_rule_data


def sample_rules():
    threshold = make_rule(
        conditions={"campaignStatus": "active", "campaignNameContains": "Promo", "maxSpend": 500},
        actions=[
            {"type": "pause"},
            {"type": "notify", "message": "Paused {campaign_name}"},
            {"type": "adjustBudget", "percentChange": -10},
        ],
    )
    scheduled = make_rule(**schedule_rule_data(enabled=False))
    return [threshold, scheduled]


def by_id(rules):
    return {rule.id: rule for rule in rules}


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.fail = False

    async def get(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.data.get(key)

    async def set(self, key, value):
        if self.fail:
            raise redis.ConnectionError("down")
        self.data[key] = value

    async def aclose(self):
        pass


class TestJsonFileRuleStore:
    @pytest.mark.asyncio
    async def test_round_trip_is_field_for_field(self, tmp_path):
        store = JsonFileRuleStore(tmp_path / "rules.json")
        rules = sample_rules()

        await store.save_all(rules)
        loaded = await store.load_all()

        assert loaded == rules
        assert isinstance(loaded[0].trigger, ThresholdTrigger)
        assert isinstance(loaded[1].trigger, ScheduleTrigger)
        assert isinstance(loaded[0].actions[1], NotifyAction)
        assert isinstance(loaded[0].actions[2], AdjustBudgetAction)

    @pytest.mark.asyncio
    async def test_document_is_versioned(self, tmp_path):
        path = tmp_path / "data" / "rules.json"
        store = JsonFileRuleStore(path)
        await store.save_all(sample_rules())

        document = json.loads(path.read_text())
        assert document["version"] == 1
        assert document["rules"][0]["trigger"]["type"] == "threshold"
        assert list(tmp_path.joinpath("data").iterdir()) == [path]

    @pytest.mark.asyncio
    async def test_missing_file_loads_empty(self, tmp_path):
        store = JsonFileRuleStore(tmp_path / "absent.json")
        assert await store.load_all() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            await JsonFileRuleStore(path).load_all()

    @pytest.mark.asyncio
    async def test_unknown_version_raises(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"version": 99, "rules": []}))
        with pytest.raises(PersistenceError):
            await JsonFileRuleStore(path).load_all()

    @pytest.mark.asyncio
    async def test_unwritable_path_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = JsonFileRuleStore(blocker / "rules.json")
        with pytest.raises(PersistenceError):
            await store.save_all(sample_rules())

    @pytest.mark.asyncio
    async def test_legacy_list_is_upgraded(self, tmp_path):
        path = tmp_path / "automations.json"
        path.write_text(json.dumps([
            {
                "id": "rule_1700000000000_abc",
                "name": "Legacy CPC",
                "accountId": "act_42",
                "enabled": True,
                "trigger": {"type": "threshold", "metric": "cpc", "operator": "gt",
                            "value": 2.5, "checkInterval": 30},
                "conditions": {"campaignStatus": "ACTIVE"},
                "actions": [{"type": "notify", "notifyMessage": "High CPC on {campaign_name}"},
                            {"type": "adjustBudget", "budgetChange": 10}],
                "createdAt": "2024-05-01T10:00:00.000Z",
            },
            {
                "id": "rule_1700000000001_def",
                "name": "Legacy cron",
                "accountId": "42",
                "enabled": False,
                "trigger": {"type": "schedule", "cron": "0 8 * * 1"},
                "conditions": {},
                "actions": [{"type": "pause"}],
                "createdAt": "2024-05-01T10:00:00.000Z",
                "lastRunAt": "2024-05-02T08:00:00.000Z",
            },
        ]))

        legacy, cron_rule = await JsonFileRuleStore(path).load_all()

        assert legacy.trigger.check_interval_minutes == 30
        assert legacy.conditions.campaign_status.value == "active"
        assert legacy.actions[0].message == "High CPC on {campaign_name}"
        assert legacy.actions[1].percent_change == 10
        assert cron_rule.trigger.cron_expression == "0 8 * * 1"
        assert cron_rule.last_run_at is not None


    @pytest.mark.asyncio
    async def test_invalid_utf8_raises(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_bytes(b'{"version": 1, "rules": [\xff\xfe]}')
        with pytest.raises(PersistenceError):
            await JsonFileRuleStore(path).load_all()

    @pytest.mark.asyncio
    async def test_legacy_schedule_without_cron_loads(self, tmp_path):
        path = tmp_path / "automations.json"
        path.write_text(json.dumps([{
            "id": "rule_1700000000002_ghi",
            "name": "Legacy schedule",
            "accountId": "act_42",
            "trigger": {"type": "schedule"},
            "actions": [{"type": "pause"}],
            "createdAt": "2024-05-01T10:00:00.000Z",
        }]))

        (rule,) = await JsonFileRuleStore(path).load_all()

        assert rule.trigger.cron_expression == ""
        assert rule.conditions.campaign_status is None


class TestDecodeRules:
    def test_invalid_record_is_skipped(self):
        kept = make_rule().to_record()

        rules = decode_rules({"version": 1, "rules": [{"id": "x"}, kept]})

        assert [rule.id for rule in rules] == [kept["id"]]

    @pytest.mark.parametrize("records", [5, "abc", {"id": "x"}])
    def test_rules_field_must_be_a_list(self, records):
        with pytest.raises(PersistenceError):
            decode_rules({"version": 1, "rules": records})

    def test_missing_rules_field_is_empty(self):
        assert decode_rules({"version": 1}) == []

    @pytest.mark.parametrize("document", ["rules", 7, None])
    def test_document_must_be_list_or_object(self, document):
        with pytest.raises(PersistenceError):
            decode_rules(document)

    def test_legacy_entries_of_the_wrong_shape_are_skipped(self):
        kept = make_rule().to_record()
        document = [
            5,
            "rule",
            None,
            {"id": "a", "name": "Bad trigger", "accountId": "1", "trigger": "cron"},
            {"id": "b", "name": "Bad conditions", "accountId": "1", "conditions": ["x"],
             "trigger": {"type": "schedule", "cron": "0 9 * * *"}},
            {"id": "c", "name": "Bad actions", "accountId": "1", "actions": [3, "pause"],
             "trigger": {"type": "schedule", "cron": "0 9 * * *"},
             "createdAt": "2024-05-01T10:00:00.000Z"},
            kept,
        ]

        rules = decode_rules(document)

        assert [rule.id for rule in rules] == [kept["id"]]


class TestRedisRuleStore:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        client = FakeRedis()
        store = RedisRuleStore(client, key="rules")
        rules = sample_rules()

        await store.save_all(rules)
        assert json.loads(client.data["rules"])["version"] == 1
        assert await store.load_all() == rules

    @pytest.mark.asyncio
    async def test_missing_key_loads_empty(self):
        assert await RedisRuleStore(FakeRedis()).load_all() == []

    @pytest.mark.asyncio
    async def test_redis_errors_become_persistence_errors(self):
        client = FakeRedis()
        client.fail = True
        store = RedisRuleStore(client)
        with pytest.raises(PersistenceError):
            await store.load_all()
        with pytest.raises(PersistenceError):
            await store.save_all(sample_rules())


class TestSqlRuleStore:
    @pytest.fixture
    async def sql_store(self, tmp_path):
        store = SqlRuleStore(create_engine(f"sqlite+aiosqlite:///{tmp_path / 'rules.db'}"))
        await store.create_schema()
        yield store
        await store.aclose()

    @pytest.mark.asyncio
    async def test_round_trip(self, sql_store):
        rules = sample_rules()
        await sql_store.save_all(rules)
        assert by_id(await sql_store.load_all()) == by_id(rules)

    @pytest.mark.asyncio
    async def test_save_replaces_the_set(self, sql_store):
        first, second = sample_rules()
        await sql_store.save_all([first, second])

        renamed = first.model_copy(update={"name": "Renamed"})
        await sql_store.save_all([renamed])

        loaded = await sql_store.load_all()
        assert [rule.id for rule in loaded] == [first.id]
        assert loaded[0].name == "Renamed"

    @pytest.mark.asyncio
    async def test_empty_table_loads_empty(self, sql_store):
        assert await sql_store.load_all() == []


class TestCreateRuleStore:
    def test_json_backend(self, tmp_path):
        store = create_rule_store(Settings(rule_store_backend="json", rules_file_path=str(tmp_path / "r.json")))
        assert isinstance(store, JsonFileRuleStore)
        assert store.path == tmp_path / "r.json"

    @pytest.mark.asyncio
    async def test_sql_backend(self, tmp_path):
        store = create_rule_store(Settings(
            rule_store_backend="sql",
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'r.db'}",
        ))
        assert isinstance(store, SqlRuleStore)
        await store.aclose()

    @pytest.mark.asyncio
    async def test_redis_backend(self):
        store = create_rule_store(Settings(rule_store_backend="redis", rules_redis_key="k"))
        assert isinstance(store, RedisRuleStore)
        assert store.key == "k"
        await store.aclose()
