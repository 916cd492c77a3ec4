"""
Automation Rule table for the sql rule store.

Each row mirrors one rule; the full rule document lives in ``payload`` so the
schema does not change when rule fields do.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from adrules.core.database import Base


class AutomationRuleRecord(Base):
    """Persisted automation rule."""

    __tablename__ = "automation_rules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Rule document (camelCase, tagged trigger/actions)
    payload: Mapped[dict] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_automation_rules_account_id", "account_id"),
    )

    def __repr__(self) -> str:
        return f"<AutomationRuleRecord {self.id}>"
