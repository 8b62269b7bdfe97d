"""Tests for the SQLAlchemy ORM layer (base, tables, session)."""

from __future__ import annotations

import datetime

from sqlalchemy import inspect, text

from runregistry.core.orm import (
    ManagementStateTable,
    RegistryBase,
    RegistrySession,
    RunTable,
    create_registry_engine,
    registry_session_factory,
)


class TestSchema:
    def test_tables_created(self, engine):
        RegistryBase.metadata.create_all(engine)
        names = set(inspect(engine).get_table_names())
        assert {"rr_runs", "rr_management_state"} <= names

    def test_expiry_is_indexed(self, engine):
        RegistryBase.metadata.create_all(engine)
        indexes = {ix["name"] for ix in inspect(engine).get_indexes("rr_runs")}
        assert "ix_rr_runs_expiry" in indexes

    def test_run_columns(self, engine):
        RegistryBase.metadata.create_all(engine)
        columns = {c["name"] for c in inspect(engine).get_columns("rr_runs")}
        assert columns == {
            "id",
            "owner",
            "status",
            "finished_notified",
            "expiry",
            "created_at",
            "snapshot",
        }


class TestEngine:
    def test_sqlite_uses_wal(self, engine):
        with engine.connect() as conn:
            mode = conn.execute(text("PRAGMA journal_mode")).scalar()
        assert mode.lower() == "wal"

    def test_non_sqlite_kwargs_ignored_for_sqlite(self, tmp_path):
        eng = create_registry_engine(f"sqlite:///{tmp_path / 'x.db'}", pool_size=5)
        try:
            with eng.connect() as conn:
                assert conn.execute(text("SELECT 1")).scalar() == 1
        finally:
            eng.dispose()


class TestSession:
    def test_expire_on_commit_disabled(self, engine):
        RegistryBase.metadata.create_all(engine)
        now = datetime.datetime(2026, 1, 1, 12, 0)
        with registry_session_factory(engine)() as session:
            assert isinstance(session, RegistrySession)
            row = RunTable(
                id="r1",
                owner="alice",
                status="Initializing",
                expiry=now,
                created_at=now,
                snapshot={"id": "r1"},
            )
            session.add(row)
            session.commit()
            # Attributes stay loaded after commit.
            assert row.owner == "alice"
            assert row.finished_notified is False

    def test_management_row_defaults(self, engine):
        RegistryBase.metadata.create_all(engine)
        with RegistrySession(bind=engine) as session:
            session.add(ManagementStateTable(id=42))
            session.commit()
            state = session.get(ManagementStateTable, 42)
            assert state.allow_new_workflow_runs is True
            assert state.log_incoming_workflows is False
            assert state.log_outgoing_exceptions is False
            assert state.usage_record_log_file is None
