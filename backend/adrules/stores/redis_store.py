"""Redis rule store."""

import json
from typing import Sequence

import redis.asyncio as redis
import structlog

from adrules.core.exceptions import PersistenceError
from adrules.models.rule import Rule
from adrules.stores.base import RuleStore, decode_rules, encode_rules

logger = structlog.get_logger()


class RedisRuleStore(RuleStore):
    """Stores the rules document as a JSON string under one key."""

    backend = "redis"

    def __init__(self, client: redis.Redis, key: str = "automation:rules"):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "automation:rules") -> "RedisRuleStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=10,
        )
        return cls(client, key)

    async def load_all(self) -> list[Rule]:
        try:
            raw = await self.client.get(self.key)
        except redis.RedisError as e:
            raise PersistenceError("Could not read rules from Redis", details={"error": str(e)})

        if raw is None:
            return []

        try:
            document = json.loads(raw)
        except ValueError as e:
            raise PersistenceError("Rules document in Redis is not valid JSON", details={"error": str(e)})
        return decode_rules(document)

    async def save_all(self, rules: Sequence[Rule]) -> None:
        payload = json.dumps(encode_rules(rules))
        try:
            await self.client.set(self.key, payload)
        except redis.RedisError as e:
            raise PersistenceError("Could not write rules to Redis", details={"error": str(e)})
        logger.debug("rules_saved", backend=self.backend, key=self.key, rules=len(rules))

    async def aclose(self) -> None:
        await self.client.aclose()
