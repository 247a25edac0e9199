"""
Audit Database Operations.

Persists every authorization decision in an append-only SQLite log.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Generator

from sqlalchemy import create_engine, func, text
from sqlalchemy.orm import Session, sessionmaker

from usbgate.audit.models import APPEND_ONLY_TRIGGERS, Base, DecisionRecord
from usbgate.policy.models import AuditRecord, DenyReason, Verdict, format_id


logger = logging.getLogger(__name__)


class AuditDatabase:
    """
    High-level interface to the decision log.

    Records are only ever inserted; the schema rejects updates and deletes.
    """

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
    ) -> None:
        """
        Initialize the audit database.

        Args:
            db_path: Path to SQLite database file
            wal_mode: Enable WAL mode for better concurrency
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )
        self.Session = sessionmaker(bind=self.engine)
        self._init_schema()

        if wal_mode:
            with self.engine.connect() as conn:
                conn.execute(text("PRAGMA journal_mode=WAL"))
                conn.commit()

    def _init_schema(self) -> None:
        """Create tables and append-only triggers."""
        Base.metadata.create_all(self.engine)
        with self.engine.connect() as conn:
            for statement in APPEND_ONLY_TRIGGERS:
                conn.execute(text(statement))
            conn.commit()
        logger.info("Audit database ready: %s", self.db_path)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Get a database session context manager.

        Yields:
            SQLAlchemy Session object
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def log_decision(self, record: AuditRecord, source: str = "attach") -> DecisionRecord:
        """
        Append one decision to the log.

        Args:
            record: Audit record emitted by the engine
            source: Where the decision came from (attach, test, ...)

        Returns:
            Created DecisionRecord
        """
        with self.session() as session:
            row = DecisionRecord(
                timestamp=record.timestamp,
                vendor_id=format_id(record.vendor_id),
                product_id=format_id(record.product_id),
                serial=record.serial,
                decision=record.decision.value,
                reason=record.reason.value if record.reason else None,
                source=source,
                identified=record.identified,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            session.expunge(row)

        logger.debug(
            "Logged decision %s:%s -> %s",
            row.vendor_id, row.product_id, row.decision,
        )
        return row

    def sink(self, source: str = "attach") -> Callable[[AuditRecord], None]:
        """Return a callable suitable for AuthorizationEngine.add_audit_sink."""

        def _sink(record: AuditRecord) -> None:
            self.log_decision(record, source=source)

        return _sink

    def list_decisions(
        self,
        filters: dict[str, Any] | None = None,
        offset: int = 0,
        limit: int | None = 50,
    ) -> tuple[list[DecisionRecord], int]:
        """
        List decisions with filters and pagination, newest first.

        Args:
            filters: decision, reason, vendor_id, product_id, serial, since
            offset: Number of results to skip
            limit: Maximum number of results

        Returns:
            Tuple of (list of records, total count)
        """
        filters = filters or {}

        with self.session() as session:
            query = session.query(DecisionRecord)

            if "decision" in filters:
                query = query.filter(DecisionRecord.decision == str(filters["decision"]))
            if "reason" in filters:
                query = query.filter(DecisionRecord.reason == str(filters["reason"]))
            if "vendor_id" in filters:
                query = query.filter(DecisionRecord.vendor_id == filters["vendor_id"].lower())
            if "product_id" in filters:
                query = query.filter(DecisionRecord.product_id == filters["product_id"].lower())
            if "serial" in filters:
                query = query.filter(DecisionRecord.serial == filters["serial"])
            if "since" in filters:
                query = query.filter(DecisionRecord.timestamp >= filters["since"])

            total = query.count()

            query = query.order_by(DecisionRecord.timestamp.desc(), DecisionRecord.id.desc())
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)

            rows = query.all()
            for row in rows:
                session.expunge(row)

            return rows, total

    def count_decisions(self, decision: Verdict | str | None = None) -> int:
        """Count logged decisions, optionally by verdict."""
        with self.session() as session:
            query = session.query(func.count(DecisionRecord.id))
            if decision is not None:
                query = query.filter(DecisionRecord.decision == str(decision))
            return query.scalar()

    def get_statistics(self) -> dict[str, Any]:
        """
        Get decision log statistics.

        Returns:
            Dictionary with totals, per-reason counts and recent denials
        """
        with self.session() as session:
            total = session.query(func.count(DecisionRecord.id)).scalar()
            allowed = session.query(func.count(DecisionRecord.id)).filter(
                DecisionRecord.decision == Verdict.ALLOW.value
            ).scalar()

            reasons = {}
            for reason in DenyReason:
                reasons[reason.value] = session.query(func.count(DecisionRecord.id)).filter(
                    DecisionRecord.reason == reason.value
                ).scalar()

            last_24h = datetime.now(timezone.utc) - timedelta(hours=24)
            denied_24h = session.query(func.count(DecisionRecord.id)).filter(
                DecisionRecord.timestamp >= last_24h,
                DecisionRecord.decision == Verdict.DENY.value,
            ).scalar()

        return {
            "total_decisions": total,
            "allowed": allowed,
            "denied": total - allowed,
            "deny_reasons": reasons,
            "denied_last_24h": denied_24h,
        }

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()
