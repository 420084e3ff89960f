#!/usr/bin/env python3
"""Persisted request store for the Reasoning Oracle node.

The store is the only channel between the event indexer and the fulfillment
worker. It holds one row per reasoning request plus a single-row sync cursor,
and every write is idempotent at the single-record level so a tick that dies
halfway can simply be replayed.

SQLite is used through SQLAlchemy in WAL mode with a busy timeout, which gives
concurrent readers and serialized writers that wait for the lock instead of
failing with ``database is locked``.
"""

import json
import logging
import time
from collections.abc import Iterable

from sqlalchemy import BigInteger, CheckConstraint, Integer, String, Text, create_engine, event, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .models import ReasoningRequest, RequestStatus, StoredRequest

# Get logger for this module
logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class Base(DeclarativeBase):
    pass


class RequestRow(Base):
    __tablename__ = "requests"
    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'PROCESSED', 'FULFILLED')", name="ck_requests_status"),
    )

    # uint256 ids do not fit a SQLite INTEGER, so they are stored as decimal text
    request_id: Mapped[str] = mapped_column(String(78), primary_key=True)
    requester: Mapped[str] = mapped_column(String(42), nullable=False)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    state_string: Mapped[str] = mapped_column(Text, nullable=False)
    action_set: Mapped[str] = mapped_column(Text, nullable=False)  # JSON array
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class SyncStateRow(Base):
    __tablename__ = "sync_state"
    __table_args__ = (CheckConstraint("id = 1", name="ck_sync_state_singleton"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_processed_block: Mapped[int] = mapped_column(BigInteger, nullable=False)


def make_engine(database_url: str, busy_timeout: int = 15) -> Engine:
    """Create an engine; SQLite connections get WAL mode and a busy timeout."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False, "timeout": busy_timeout},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout * 1000}")
        cursor.close()

    return engine


class RequestStore:
    """Durable request table and sync cursor.

    Ownership of writes:
    - the indexer inserts requests, advances the cursor and marks FULFILLED
    - the worker moves PENDING to PROCESSED (and to FULFILLED when the chain
      reports the request as already fulfilled)
    """

    def __init__(self, engine: Engine) -> None:
        """
        Initialize the store.

        Args:
            engine: SQLAlchemy engine bound to the oracle database
        """
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, busy_timeout: int = 15) -> "RequestStore":
        return cls(make_engine(database_url, busy_timeout))

    def create_schema(self) -> None:
        """Create tables if they don't exist."""
        Base.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return self._session_factory()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def insert_if_absent(self, request: ReasoningRequest) -> bool:
        """
        Insert a request as PENDING unless its id is already stored.

        Attempts the insert and treats a primary key violation as "already
        present", so concurrent ingestion of the same event cannot create a
        duplicate or raise.

        Args:
            request: Decoded ReasoningRequested event

        Returns:
            True if a new row was written, False if the id already existed
        """
        now = _now_ms()
        row = RequestRow(
            request_id=str(request.request_id),
            requester=request.requester,
            model=request.model,
            system_prompt=request.system_prompt,
            state_string=request.state_string,
            action_set=json.dumps(list(request.action_set)),
            status=RequestStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self._session() as session:
            if session.get(RequestRow, row.request_id) is not None:
                return False
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Lost the race against another writer for the same id
                session.rollback()
                return False
        return True

    def set_status(self, request_id: int, status: RequestStatus) -> bool:
        """
        Overwrite the status of a request (last write wins).

        Updating an id that is not stored is a no-op.

        Returns:
            True if a row was updated
        """
        with self._session() as session:
            result = session.execute(
                update(RequestRow)
                .where(RequestRow.request_id == str(request_id))
                .values(status=status.value, updated_at=_now_ms())
            )
            session.commit()
            return result.rowcount > 0

    def transition(self, request_id: int, from_status: RequestStatus, to_status: RequestStatus) -> bool:
        """
        Compare-and-set a status change.

        The worker uses this for PENDING -> PROCESSED so that a FULFILLED
        written by the indexer in the meantime is never overwritten.

        Returns:
            True if the row was in ``from_status`` and has been updated
        """
        with self._session() as session:
            result = session.execute(
                update(RequestRow)
                .where(
                    RequestRow.request_id == str(request_id),
                    RequestRow.status == from_status.value,
                )
                .values(status=to_status.value, updated_at=_now_ms())
            )
            session.commit()
            return result.rowcount > 0

    def get(self, request_id: int) -> StoredRequest | None:
        with self._session() as session:
            row = session.get(RequestRow, str(request_id))
            return self._row_to_model(row) if row else None

    def list_by_status(self, status: RequestStatus) -> list[StoredRequest]:
        """
        Return all requests in ``status``, oldest first.

        Rows created in the same millisecond are ordered by request id.
        """
        with self._session() as session:
            rows = session.scalars(
                select(RequestRow)
                .where(RequestRow.status == status.value)
                .order_by(RequestRow.created_at.asc())
            ).all()
        records = [self._row_to_model(row) for row in rows]
        records.sort(key=lambda r: (r.created_at, r.request_id))
        return records

    def count_by_status(self) -> dict[str, int]:
        """Return the number of requests per status."""
        counts = {status.value: 0 for status in RequestStatus}
        with self._session() as session:
            for status, count in session.execute(
                select(RequestRow.status, func.count()).group_by(RequestRow.status)
            ):
                counts[status] = count
        return counts

    # ------------------------------------------------------------------
    # Cursor
    # ------------------------------------------------------------------

    def get_cursor(self) -> int | None:
        """Return the last fully ingested block, or None before first boot."""
        with self._session() as session:
            row = session.get(SyncStateRow, 1)
            return row.last_processed_block if row else None

    def initialize_cursor(self, block_number: int) -> int:
        """
        Seed the cursor at first boot.

        An existing cursor is never reset; its value is returned instead.
        """
        with self._session() as session:
            existing = session.get(SyncStateRow, 1)
            if existing is not None:
                return existing.last_processed_block
            session.add(SyncStateRow(id=1, last_processed_block=block_number))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return session.get(SyncStateRow, 1).last_processed_block
        logger.info(f"Sync cursor initialized at block {block_number}")
        return block_number

    def advance_cursor(self, new_block: int) -> bool:
        """
        Move the cursor forward to ``new_block``.

        The update is conditional on the stored value being lower, so the
        cursor can never regress even with several writers.

        Returns:
            True if the cursor moved
        """
        with self._session() as session:
            result = session.execute(
                update(SyncStateRow)
                .where(SyncStateRow.id == 1, SyncStateRow.last_processed_block < new_block)
                .values(last_processed_block=new_block)
            )
            moved = result.rowcount > 0
            if not moved and session.get(SyncStateRow, 1) is None:
                session.add(SyncStateRow(id=1, last_processed_block=new_block))
                moved = True
            session.commit()
        return moved

    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_model(row: RequestRow) -> StoredRequest:
        action_set: Iterable[str] = json.loads(row.action_set or "[]")
        return StoredRequest(
            request_id=int(row.request_id),
            requester=row.requester,
            model=row.model,
            system_prompt=row.system_prompt,
            state_string=row.state_string,
            action_set=tuple(action_set),
            status=RequestStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
