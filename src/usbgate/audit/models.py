"""
Audit database models.

SQLAlchemy ORM model for the append-only decision log.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DecisionRecord(Base):
    """
    One authorization decision.

    Append-only: no updates or deletes allowed.
    """

    __tablename__ = "decisions"

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, default=_utc_now, nullable=False, index=True)
    vendor_id = Column(String(4), nullable=False, index=True)
    product_id = Column(String(4), nullable=False)
    serial = Column(String(256), nullable=True)
    decision = Column(String(8), nullable=False, index=True)
    reason = Column(String(32), nullable=True)
    source = Column(String(16), nullable=False, default="attach")
    identified = Column(Boolean, nullable=False, default=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "vendor_id": self.vendor_id,
            "product_id": self.product_id,
            "serial": self.serial,
            "decision": self.decision,
            "reason": self.reason,
            "source": self.source,
            "identified": self.identified,
        }


# Append-only triggers, one complete statement each
APPEND_ONLY_TRIGGERS = (
    """
    CREATE TRIGGER IF NOT EXISTS no_delete_decisions
    BEFORE DELETE ON decisions
    BEGIN
        SELECT RAISE(ABORT, 'Deletion not permitted on audit log');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS no_update_decisions
    BEFORE UPDATE ON decisions
    BEGIN
        SELECT RAISE(ABORT, 'Updates not permitted on audit log');
    END
    """,
)
