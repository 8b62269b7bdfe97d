"""
Shared pytest fixtures for run-registry tests.

This module provides:
- A file-backed SQLite engine per test (SQLite ``:memory:`` databases are
  per-connection, which breaks tests that use threads)
- A store with the registry schema created
- A recording dispatcher that captures completion messages
- A registry wired to all of the above
- Helpers for driving a run to completion

Usage:
    Fixtures are auto-discovered by pytest.

    def test_something(registry, factory):
        run_id = registry.register(factory.create("alice", "<workflow/>"))
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import text

# Ensure runregistry is importable from a plain checkout
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from runregistry.core.errors import NotificationError
from runregistry.core.orm import RunTable, create_registry_engine
from runregistry.models import (
    EXIT_CODE_PROPERTY,
    IO_LISTENER,
    NOTIFICATION_ADDRESS_PROPERTY,
    RunStatus,
    utcnow,
)
from runregistry.registry import RunRegistry
from runregistry.runs import LocalRun, LocalRunFactory, RunHandle
from runregistry.store import PersistentStore, to_db_time

WORKFLOW = "<workflow><dataflow name='hello'/></workflow>"


# =============================================================================
# Test doubles
# =============================================================================


@dataclass
class SentMessage:
    run_id: str | None
    destination: str | None
    subject: str
    body: str


class RecordingDispatcher:
    """Collects every dispatched message; fails for run ids in ``fail_for``."""

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.fail_for: set[str] = set()

    def dispatch(self, run: RunHandle, destination: str | None, subject: str, body: str) -> None:
        if run.id in self.fail_for:
            raise NotificationError("delivery refused")
        self.sent.append(SentMessage(run.id, destination, subject, body))

    def sent_to(self, run_id: str) -> list[SentMessage]:
        return [message for message in self.sent if message.run_id == run_id]


# =============================================================================
# Storage fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'runs.db'}"


@pytest.fixture
def engine(database_url: str) -> Iterator:
    eng = create_registry_engine(database_url)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> PersistentStore:
    s = PersistentStore(engine)
    s.create_schema()
    return s


# =============================================================================
# Registry fixtures
# =============================================================================


@pytest.fixture
def factory() -> LocalRunFactory:
    return LocalRunFactory()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def registry(store, factory, dispatcher) -> RunRegistry:
    return RunRegistry(store, factory, dispatcher=dispatcher)


@pytest.fixture
def make_run(registry, factory):
    """Create and register a run for a principal."""

    def _make(owner: str = "alice", workflow: str = WORKFLOW) -> LocalRun:
        run = factory.create(owner, workflow)
        registry.register(run)
        return run

    return _make


def finish(run: LocalRun, *, exitcode: str = "0", address: str | None = "mailto:alice@example.org") -> None:
    """Record an exit code (and address) on the io listener, then finish the run."""
    if address is not None:
        run.set_listener_property(IO_LISTENER, NOTIFICATION_ADDRESS_PROPERTY, address)
    run.set_listener_property(IO_LISTENER, EXIT_CODE_PROPERTY, exitcode)
    run.set_status(RunStatus.FINISHED)


@pytest.fixture
def finish_run():
    return finish


@pytest.fixture
def insert_corrupt_record(store):
    """Store a run row whose snapshot cannot be decoded."""

    def _insert(run_id: str = "broken", snapshot: Any = None) -> str:
        if snapshot is None:
            snapshot = {"status": RunStatus.FINISHED.value}
        now = utcnow()
        with store.transaction() as tx:
            tx.persist(
                RunTable(
                    id=run_id,
                    owner="alice",
                    status=RunStatus.FINISHED.value,
                    finished_notified=False,
                    expiry=to_db_time(now + timedelta(hours=1)),
                    created_at=to_db_time(now - timedelta(hours=1)),
                    snapshot=snapshot,
                )
            )
        return run_id

    return _insert


@pytest.fixture
def drop_runs_table(engine):
    """Make every later run query fail."""

    def _drop() -> None:
        with engine.begin() as conn:
            conn.execute(text("DROP TABLE rr_runs"))

    return _drop
