"""SQL rule store (one row per rule)."""

from typing import Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from adrules.config import Settings
from adrules.core.database import (
    create_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from adrules.core.exceptions import PersistenceError
from adrules.models.rule import Rule, normalize_account_id
from adrules.models.rule_record import AutomationRuleRecord
from adrules.stores.base import STORE_SCHEMA_VERSION, RuleStore, decode_rules

logger = structlog.get_logger()


class SqlRuleStore(RuleStore):
    """
    Stores each rule as a row in ``automation_rules``.

    ``save_all`` replaces the set in a single transaction: rows for removed
    rules are deleted and the rest are upserted.
    """

    backend = "sql"

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = create_session_factory(engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlRuleStore":
        return cls(create_engine(settings.database_url, settings))

    async def create_schema(self) -> None:
        """Create the rules table if missing. Use migrations in production."""
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not create rules table", details={"error": str(e)})

    async def load_all(self) -> list[Rule]:
        try:
            async with session_scope(self._session_factory) as db:
                result = await db.execute(
                    select(AutomationRuleRecord.payload).order_by(AutomationRuleRecord.id)
                )
                payloads = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError("Could not read rules from database", details={"error": str(e)})

        return decode_rules({"version": STORE_SCHEMA_VERSION, "rules": payloads})

    async def save_all(self, rules: Sequence[Rule]) -> None:
        ids = [rule.id for rule in rules]
        try:
            async with session_scope(self._session_factory) as db:
                await db.execute(
                    delete(AutomationRuleRecord).where(AutomationRuleRecord.id.not_in(ids))
                )
                for rule in rules:
                    await db.merge(
                        AutomationRuleRecord(
                            id=rule.id,
                            account_id=normalize_account_id(rule.account_id),
                            payload=rule.to_record(),
                        )
                    )
        except SQLAlchemyError as e:
            raise PersistenceError("Could not write rules to database", details={"error": str(e)})
        logger.debug("rules_saved", backend=self.backend, rules=len(rules))

    async def aclose(self) -> None:
        await self.engine.dispose()
