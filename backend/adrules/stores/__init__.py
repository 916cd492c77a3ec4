"""
Rule Store backends.

The engine only sees RuleStore; ``create_rule_store`` picks the backend from
settings.
"""

from adrules.config import Settings
from adrules.stores.base import (
    STORE_SCHEMA_VERSION,
    RuleStore,
    decode_rules,
    encode_rules,
    upgrade_legacy_rule,
)
from adrules.stores.json_file import JsonFileRuleStore
from adrules.stores.redis_store import RedisRuleStore
from adrules.stores.sql_store import SqlRuleStore


def create_rule_store(settings: Settings) -> RuleStore:
    """Build the rule store configured by ``rule_store_backend``."""
    if settings.rule_store_backend == "redis":
        return RedisRuleStore.from_url(settings.redis_url, settings.rules_redis_key)
    if settings.rule_store_backend == "sql":
        return SqlRuleStore.from_settings(settings)
    return JsonFileRuleStore(settings.rules_file_path)


__all__ = [
    "STORE_SCHEMA_VERSION",
    "JsonFileRuleStore",
    "RedisRuleStore",
    "RuleStore",
    "SqlRuleStore",
    "create_rule_store",
    "decode_rules",
    "encode_rules",
    "upgrade_legacy_rule",
]
