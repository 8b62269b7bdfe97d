"""Durable, transactional storage of run snapshots.

``PersistentStore`` is the registry's only way to reach the database. Work
happens inside a ``Transaction`` obtained from ``store.transaction()``: the
transaction commits when the ``with`` block exits normally and rolls back
when it exits with an exception, so no code path can leave a session
half-open.

Architecture:

    .. code-block:: text

        with store.transaction() as tx:
            tx.get(run_id)             → RunTable | None
            tx.persist(record)         → insert or update
            tx.delete(record)
            tx.run_names()             → list[str]          ("names" query)
            tx.count()                 → int                ("count" query)
            tx.expired_run_names(now)  → list[str]          ("timedout" query)
        # commit on success, rollback on exception

Every SQLAlchemy failure is re-raised as :class:`StorageError`, so callers
decide on propagation without knowing the persistence technology.

Example:
    >>> store = PersistentStore(create_registry_engine("sqlite:///runs.db"))
    >>> store.create_schema()
    >>> with store.transaction() as tx:
    ...     tx.count()
    0
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.attributes import set_committed_value

from runregistry.core.errors import ConflictError, StorageError
from runregistry.core.logging import get_logger
from runregistry.core.orm import RegistryBase, RegistrySession, RunTable, registry_session_factory
from runregistry.models import RunSnapshot, as_utc, utcnow

logger = get_logger(__name__)


def to_db_time(value: datetime) -> datetime:
    """Convert to the naive-UTC form stored in the database."""
    return as_utc(value).replace(tzinfo=None)


def from_db_time(value: datetime) -> datetime:
    """Convert a stored naive-UTC value back to an aware datetime."""
    return value.replace(tzinfo=UTC)


def record_from_snapshot(snapshot: RunSnapshot) -> RunTable:
    """Build a new table row from a snapshot (the snapshot must have an id)."""
    if snapshot.id is None:
        raise ValueError("snapshot has no id")
    record = RunTable(id=snapshot.id)
    apply_snapshot(record, snapshot)
    return record


def apply_snapshot(record: RunTable, snapshot: RunSnapshot) -> None:
    """Overwrite a row's columns with the snapshot's state.

    The notification flag only ever moves from false to true.
    """
    record.owner = snapshot.owner
    record.status = snapshot.status.value
    record.finished_notified = bool(record.finished_notified) or snapshot.finished_notified
    record.expiry = to_db_time(snapshot.expiry)
    record.created_at = to_db_time(snapshot.created_at)
    data = snapshot.to_dict()
    data["finished_notified"] = record.finished_notified
    record.snapshot = data


def snapshot_from_record(record: RunTable) -> RunSnapshot:
    """Decode a row; the row's flag column is authoritative for notification."""
    snapshot = RunSnapshot.from_dict(record.snapshot)
    snapshot.id = record.id
    snapshot.finished_notified = snapshot.finished_notified or bool(record.finished_notified)
    return snapshot


class Transaction:
    """One unit of work against the store.

    Created by :meth:`PersistentStore.transaction`; use ``commit()`` /
    ``rollback()`` directly only when a block needs to finish early.
    """

    def __init__(self, session: RegistrySession):
        self._session = session
        self._done = False

    @property
    def session(self) -> RegistrySession:
        """Underlying SQLAlchemy session (for rows other than runs)."""
        return self._session

    @property
    def active(self) -> bool:
        return not self._done

    def commit(self) -> None:
        if self._done:
            return
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._rollback_quietly()
            raise ConflictError("conflicting run record", cause=exc) from exc
        except SQLAlchemyError as exc:
            self._rollback_quietly()
            raise StorageError("transaction commit failed", cause=exc) from exc
        self._done = True

    def rollback(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            self._session.rollback()
        except SQLAlchemyError as exc:
            raise StorageError("transaction rollback failed", cause=exc) from exc

    def _rollback_quietly(self) -> None:
        self._done = True
        try:
            self._session.rollback()
        except SQLAlchemyError:
            logger.warning("rollback_failed", exc_info=True)

    # ── Records ──────────────────────────────────────────────────

    def get(self, run_id: str) -> RunTable | None:
        logger.debug("fetching_run", run_id=run_id)
        try:
            record = self._session.get(RunTable, run_id)
        except SQLAlchemyError as exc:
            raise StorageError("problem fetching run", cause=exc).with_context(run_id=run_id) from exc
        if record is None:
            logger.debug("no_result", run_id=run_id)
        return record

    def persist(self, record: RunTable) -> RunTable:
        """Add a new row, or merge the state of an existing one."""
        try:
            if record in self._session:
                self._session.flush()
                return record
            self._session.add(record)
            self._session.flush()
            return record
        except IntegrityError as exc:
            raise ConflictError("conflicting run record", cause=exc).with_context(
                run_id=record.id
            ) from exc
        except SQLAlchemyError as exc:
            raise StorageError("problem persisting run", cause=exc).with_context(
                run_id=record.id
            ) from exc

    def delete(self, record: RunTable) -> None:
        try:
            self._session.delete(record)
            self._session.flush()
        except SQLAlchemyError as exc:
            raise StorageError("problem deleting run", cause=exc).with_context(
                run_id=record.id
            ) from exc

    def get_row(self, model: type[RegistryBase], key: Any) -> Any:
        """Fetch a row of another registry table by primary key."""
        try:
            return self._session.get(model, key)
        except SQLAlchemyError as exc:
            raise StorageError(f"problem fetching {model.__tablename__} row", cause=exc) from exc

    def add_row(self, row: RegistryBase) -> None:
        try:
            self._session.add(row)
            self._session.flush()
        except SQLAlchemyError as exc:
            raise StorageError("problem adding row", cause=exc) from exc

    def claim_notification(self, record: RunTable) -> bool:
        """Flip the row's notification flag if nobody has yet.

        The update is conditional on the flag still being false in the
        database, so of several concurrent passes exactly one wins.
        """
        data = dict(record.snapshot)
        data["finished_notified"] = True
        statement = (
            update(RunTable)
            .where(RunTable.id == record.id, RunTable.finished_notified.is_(False))
            .values(finished_notified=True, snapshot=data)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._session.execute(statement)
        except SQLAlchemyError as exc:
            raise StorageError("problem marking run notified", cause=exc).with_context(
                run_id=record.id
            ) from exc
        if result.rowcount != 1:
            return False
        set_committed_value(record, "finished_notified", True)
        set_committed_value(record, "snapshot", data)
        return True

    # ── Named queries ────────────────────────────────────────────

    def run_names(self) -> list[str]:
        logger.debug("fetching_all_run_names")
        return self._scalars(select(RunTable.id).order_by(RunTable.created_at, RunTable.id))

    def count(self) -> int:
        logger.debug("counting_runs")
        try:
            return int(self._session.scalar(select(func.count()).select_from(RunTable)) or 0)
        except SQLAlchemyError as exc:
            raise StorageError("problem counting runs", cause=exc) from exc

    def expired_run_names(self, now: datetime | None = None) -> list[str]:
        cutoff = to_db_time(now or utcnow())
        return self._scalars(select(RunTable.id).where(RunTable.expiry < cutoff))

    def _scalars(self, statement: Any) -> list[str]:
        try:
            return list(self._session.scalars(statement))
        except SQLAlchemyError as exc:
            raise StorageError("problem running query", cause=exc) from exc


class PersistentStore:
    """Transactional key-value storage of run snapshots, keyed by run id."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._session_factory = registry_session_factory(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        """Create the registry tables if they do not exist."""
        try:
            RegistryBase.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageError("could not create registry schema", cause=exc) from exc

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Open a transaction; commit on normal exit, roll back on error."""
        session = self._session_factory()
        tx = Transaction(session)
        try:
            yield tx
            tx.commit()
        except BaseException:
            if tx.active:
                tx._rollback_quietly()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()


__all__ = [
    "PersistentStore",
    "Transaction",
    "record_from_snapshot",
    "apply_snapshot",
    "snapshot_from_record",
    "to_db_time",
    "from_db_time",
]
