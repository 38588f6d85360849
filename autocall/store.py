"""SQLite-backed number store.

Each public method runs in its own transaction. Failures from the database
layer surface as :class:`~autocall.errors.StorageError` and leave the table
as it was before the call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from sqlalchemy import case, func, update
from sqlalchemy import select as sa_select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .errors import StorageError
from .logging_utils import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NumberRecord(SQLModel, table=True):
    """One dialable number and whether it was called this rotation."""

    __tablename__ = "phone_number"

    id: int | None = Field(default=None, primary_key=True)
    number: str = Field(unique=True, index=True)
    called: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=_utcnow)


@dataclass(frozen=True)
class QueueStats:
    total: int
    called: int

    @property
    def remaining(self) -> int:
        return self.total - self.called

    def as_dict(self) -> dict[str, int]:
        return {"total": self.total, "called": self.called, "remaining": self.remaining}


def create_sqlite_engine(url: str) -> Engine:
    """Return an engine for *url*, creating the parent directory of file databases."""

    prefix = "sqlite:///"
    if url.startswith(prefix) and url != f"{prefix}:memory:":
        Path(url[len(prefix):]).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, echo=False, connect_args={"check_same_thread": False})


class NumberStore:
    """Durable CRUD over :class:`NumberRecord`."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def open(cls, url: str) -> "NumberStore":
        """Open (and create if needed) the store at *url*."""

        try:
            store = cls(create_sqlite_engine(url))
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"Cannot open number store at {url}: {exc}") from exc
        store.create_schema()
        return store

    def create_schema(self) -> None:
        try:
            SQLModel.metadata.create_all(self.engine, tables=[NumberRecord.__table__])
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot create number store schema: {exc}") from exc

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def insert(self, number: str) -> bool:
        """Insert *number* unless present; return whether a row was created."""

        return self.insert_many([number]) == 1

    def insert_many(self, numbers: Iterable[str]) -> int:
        """Insert every new number in one transaction; return how many were created."""

        rows = [{"number": n, "called": False, "created_at": _utcnow()} for n in numbers]
        if not rows:
            return 0

        inserted = 0
        try:
            with self.engine.begin() as conn:
                for row in rows:
                    stmt = (
                        sqlite_insert(NumberRecord.__table__)
                        .values(**row)
                        .on_conflict_do_nothing(index_elements=["number"])
                    )
                    inserted += conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StorageError(f"Insert failed: {exc}") from exc

        logger.debug("Inserted %d of %d numbers", inserted, len(rows))
        return inserted

    def mark_called(self, record_id: int) -> bool:
        """Flag *record_id* as called; return False when the id is unknown."""

        stmt = update(NumberRecord.__table__).where(NumberRecord.__table__.c.id == record_id).values(called=True)
        try:
            with self.engine.begin() as conn:
                matched = conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StorageError(f"mark_called({record_id}) failed: {exc}") from exc

        if not matched:
            logger.warning("NotFound: mark_called referenced unknown record id=%s", record_id)
            return False
        return True

    def reset_all(self) -> int:
        """Clear the called flag on every record (rotation restart)."""

        stmt = update(NumberRecord.__table__).where(NumberRecord.__table__.c.called == True).values(called=False)  # noqa: E712
        try:
            with self.engine.begin() as conn:
                changed = conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StorageError(f"reset_all failed: {exc}") from exc

        logger.info("Rotation reset cleared %d called flags", changed)
        return changed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_all(self) -> Sequence[NumberRecord]:
        try:
            with Session(self.engine) as sess:
                return list(sess.exec(select(NumberRecord).order_by(NumberRecord.id)).all())
        except SQLAlchemyError as exc:
            raise StorageError(f"list_all failed: {exc}") from exc

    def get(self, record_id: int) -> NumberRecord | None:
        try:
            with Session(self.engine) as sess:
                return sess.get(NumberRecord, record_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"get({record_id}) failed: {exc}") from exc

    def next_uncalled(self) -> NumberRecord | None:
        """Return the earliest-created record not yet called, if any."""

        query = select(NumberRecord).where(NumberRecord.called == False).order_by(NumberRecord.id).limit(1)  # noqa: E712
        try:
            with Session(self.engine) as sess:
                return sess.exec(query).first()
        except SQLAlchemyError as exc:
            raise StorageError(f"next_uncalled failed: {exc}") from exc

    def stats(self) -> QueueStats:
        """Return total/called counts read by a single statement."""

        table = NumberRecord.__table__
        query = sa_select(
            func.count(table.c.id),
            func.coalesce(func.sum(case((table.c.called == True, 1), else_=0)), 0),  # noqa: E712
        )
        try:
            with self.engine.connect() as conn:
                total, called = conn.execute(query).one()
        except SQLAlchemyError as exc:
            raise StorageError(f"stats failed: {exc}") from exc
        return QueueStats(total=int(total), called=int(called))
