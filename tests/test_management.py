"""Tests for ManagementState (cached, write-through settings)."""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from runregistry.core.errors import StorageError
from runregistry.core.orm import ManagementStateTable
from runregistry.management import MANAGEMENT_STATE_KEY, ManagementState


class TestDefaults:
    def test_defaults_without_store(self):
        state = ManagementState()
        assert state.is_persistent is False
        assert state.log_incoming_workflows is False
        assert state.allow_new_workflow_runs is True
        assert state.usage_record_log_file is None

    def test_empty_store_keeps_defaults(self, store):
        state = ManagementState(store)
        assert state.allow_new_workflow_runs is True
        assert state.loaded is False

    def test_setters_work_without_store(self):
        state = ManagementState()
        state.allow_new_workflow_runs = False
        assert state.allow_new_workflow_runs is False


class TestPersistence:
    def test_round_trip(self, store):
        state = ManagementState(store)
        state.log_incoming_workflows = True
        state.allow_new_workflow_runs = False
        state.usage_record_log_file = "/var/log/usage.log"

        fresh = ManagementState(store)
        assert fresh.log_incoming_workflows is True
        assert fresh.allow_new_workflow_runs is False
        assert fresh.usage_record_log_file == "/var/log/usage.log"

    def test_row_uses_fixed_key(self, store):
        ManagementState(store).persist()
        with store.transaction() as tx:
            assert tx.get_row(ManagementStateTable, MANAGEMENT_STATE_KEY) is not None

    def test_persist_on_fresh_instance_keeps_stored_values(self, store):
        ManagementState(store).allow_new_workflow_runs = False

        ManagementState(store).persist()

        assert ManagementState(store).allow_new_workflow_runs is False

    def test_setter_does_not_clobber_other_stored_values(self, store):
        ManagementState(store).allow_new_workflow_runs = False

        other = ManagementState(store)
        other.log_incoming_workflows = True

        fresh = ManagementState(store)
        assert fresh.allow_new_workflow_runs is False
        assert fresh.log_incoming_workflows is True

    def test_empty_path_clears_usage_log(self, store):
        state = ManagementState(store)
        state.usage_record_log_file = "/tmp/usage.log"
        state.usage_record_log_file = ""
        assert ManagementState(store).usage_record_log_file is None

    def test_row_created_later_is_picked_up(self, store):
        reader = ManagementState(store)
        assert reader.allow_new_workflow_runs is True

        ManagementState(store).allow_new_workflow_runs = False

        assert reader.allow_new_workflow_runs is False

    def test_loaded_state_is_cached(self, store):
        state = ManagementState(store)
        state.allow_new_workflow_runs = False
        ManagementState(store).allow_new_workflow_runs = True

        assert state.allow_new_workflow_runs is False
        state.load(force=True)
        assert state.allow_new_workflow_runs is True

    def test_write_failure_leaves_cache_unchanged(self, store):
        state = ManagementState(store)
        state.load()
        with patch.object(state, "_write", side_effect=StorageError("down")):
            with pytest.raises(StorageError):
                state.allow_new_workflow_runs = False
        assert state.allow_new_workflow_runs is True


class TestLoadConcurrency:
    def test_concurrent_first_reads_load_once(self, store):
        ManagementState(store).allow_new_workflow_runs = False
        state = ManagementState(store)
        calls = []
        original = store.transaction

        def counting_transaction():
            calls.append(1)
            return original()

        barrier = threading.Barrier(8)
        results = []

        def read():
            barrier.wait()
            results.append(state.allow_new_workflow_runs)

        with patch.object(store, "transaction", side_effect=counting_transaction):
            threads = [threading.Thread(target=read) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert results == [False] * 8
        assert len(calls) == 1


class TestLogOutgoingExceptions:
    """The stored value is always written; the getter may be forced on."""

    def test_forced_on_by_default(self, store):
        state = ManagementState(store)
        state.log_outgoing_exceptions = False
        assert state.log_outgoing_exceptions is True

    def test_stored_value_visible_without_override(self, store):
        ManagementState(store).log_outgoing_exceptions = False
        state = ManagementState(store, force_log_outgoing_exceptions=False)
        assert state.log_outgoing_exceptions is False

        state.log_outgoing_exceptions = True
        assert ManagementState(store, force_log_outgoing_exceptions=False).log_outgoing_exceptions is True

    def test_as_dict_reports_effective_values(self, store):
        values = ManagementState(store).as_dict()
        assert values == {
            "log_incoming_workflows": False,
            "allow_new_workflow_runs": True,
            "log_outgoing_exceptions": True,
            "usage_record_log_file": None,
        }
