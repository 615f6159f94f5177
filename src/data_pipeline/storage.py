"""
Database Storage for GhostRegime.

Persists the daily snapshot history and a small key/value table of run
metadata. Supports SQLite for local development and PostgreSQL for
production.

Rows are keyed by calendar date. Saving a row for a date that already
exists replaces it in place, so the table can never hold two rows for
the same day.

Classes:
    SnapshotRecord: One persisted daily snapshot
    MetaRecord: Key/value run metadata
    DatabaseStorage: Storage manager

Example:
    >>> storage = DatabaseStorage("data/ghostregime.db")
    >>> storage.save_row({"date": "2024-06-28", "regime": "GOLDILOCKS", ...})
    >>> rows = storage.load_rows(start_date="2024-06-01")
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import json
import logging

from sqlalchemy import (
    create_engine,
    Boolean,
    Column,
    DateTime,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SnapshotRecord(Base):
    """SQLAlchemy model for the daily regime snapshot."""

    __tablename__ = "ghostregime_rows"

    date = Column(String(10), primary_key=True)
    regime = Column(String(20), nullable=False)
    risk_regime = Column(String(10), nullable=False)
    source = Column(String(20), nullable=False, default="engine")
    stale = Column(Boolean, nullable=False, default=False)
    engine_version = Column(String(50))
    payload_json = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)


class MetaRecord(Base):
    """SQLAlchemy model for run metadata (e.g. ``last_run_date``)."""

    __tablename__ = "ghostregime_meta"

    key = Column(String(50), primary_key=True)
    value = Column(Text)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)


class DatabaseStorage:
    """Storage manager for GhostRegime persistence.

    Attributes:
        engine: SQLAlchemy database engine
        Session: Session factory for database operations
    """

    def __init__(
        self,
        db_path: str = "data/ghostregime.db",
        echo: bool = False,
    ):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database or PostgreSQL connection string
            echo: If True, log all SQL statements
        """
        if not db_path.startswith("postgresql"):
            db_dir = Path(db_path).parent
            db_dir.mkdir(parents=True, exist_ok=True)
            connection_string = f"sqlite:///{db_path}"
        else:
            connection_string = db_path

        self.engine = create_engine(connection_string, echo=echo)
        self.Session = sessionmaker(bind=self.engine)

        Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized: {db_path}")

    def save_row(self, row: Dict[str, Any]) -> None:
        """Insert or replace the row for ``row["date"]``.

        Args:
            row: Serialized snapshot row; must contain ``date``,
                ``regime`` and ``risk_regime``

        Raises:
            SQLAlchemyError: If the write fails
        """
        self.save_rows([row])

    def save_rows(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Insert or replace several rows in one transaction.

        Returns:
            Number of rows written
        """
        session = self.Session()
        count = 0
        now = _utcnow()

        try:
            for row in rows:
                existing = session.get(SnapshotRecord, row["date"])
                record = SnapshotRecord(
                    date=row["date"],
                    regime=row["regime"],
                    risk_regime=row["risk_regime"],
                    source=row.get("source", "engine"),
                    stale=bool(row.get("stale", False)),
                    engine_version=row.get("engine_version"),
                    payload_json=json.dumps(row, sort_keys=True),
                    created_at=existing.created_at if existing else now,
                    updated_at=now,
                )
                session.merge(record)
                count += 1
            session.commit()
            logger.debug(f"Saved {count} snapshot rows")
            return count

        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error saving snapshot rows: {e}")
            raise
        finally:
            session.close()

    def load_rows(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Load rows in ascending date order.

        Args:
            start_date: Inclusive ISO lower bound
            end_date: Inclusive ISO upper bound

        Returns:
            List of serialized rows
        """
        session = self.Session()

        try:
            query = select(SnapshotRecord)
            if start_date:
                query = query.where(SnapshotRecord.date >= start_date)
            if end_date:
                query = query.where(SnapshotRecord.date <= end_date)
            query = query.order_by(SnapshotRecord.date)

            records = session.execute(query).scalars().all()
            return [json.loads(r.payload_json) for r in records]

        finally:
            session.close()

    def count_rows(self) -> int:
        session = self.Session()
        try:
            return session.execute(
                select(func.count()).select_from(SnapshotRecord)
            ).scalar_one()
        finally:
            session.close()

    def get_meta(self, key: str) -> Optional[str]:
        session = self.Session()
        try:
            record = session.get(MetaRecord, key)
            return record.value if record else None
        finally:
            session.close()

    def set_meta(self, key: str, value: str) -> None:
        session = self.Session()
        try:
            session.merge(MetaRecord(key=key, value=value, updated_at=_utcnow()))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error saving meta {key}: {e}")
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections (needed before deleting a SQLite file)."""
        self.engine.dispose()
