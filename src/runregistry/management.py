"""The persistent, manageable state of the registry process.

``ManagementState`` holds four operator-controlled settings, caches them in
memory and writes every change straight through to the store:

* ``log_incoming_workflows``   -- log every workflow submitted (default False)
* ``allow_new_workflow_runs``  -- accept new runs at all (default True)
* ``log_outgoing_exceptions``  -- log errors before they reach callers (default False)
* ``usage_record_log_file``    -- where usage records go (default None)

The values live in a single row keyed by :data:`MANAGEMENT_STATE_KEY`.

Loading is explicit and thread-safe: :meth:`load` runs at most once per
instance (guarded by a lock), getters call it so the first read after start
sees stored values, and an empty store leaves the defaults in place.

Open question:
    The service this replaces reported ``log_outgoing_exceptions`` as true
    no matter what was stored. That override is kept, but only while
    ``force_log_outgoing_exceptions`` is set (the default). The stored value
    is always written faithfully and is what the getter returns once the
    override is switched off.
"""

from __future__ import annotations

import threading

from runregistry.core.logging import get_logger
from runregistry.core.orm import ManagementStateTable
from runregistry.store import PersistentStore

logger = get_logger(__name__)

MANAGEMENT_STATE_KEY = 42


class ManagementState:
    """Cached, write-through management settings.

    Args:
        store: Where the settings row lives; None means defaults only
        force_log_outgoing_exceptions: Report ``log_outgoing_exceptions`` as
            true regardless of the stored value
    """

    def __init__(
        self,
        store: PersistentStore | None = None,
        *,
        force_log_outgoing_exceptions: bool = True,
    ):
        self._store = store
        self.force_log_outgoing_exceptions = force_log_outgoing_exceptions
        self._lock = threading.Lock()
        self._loaded = False

        self._log_incoming_workflows = False
        self._allow_new_workflow_runs = True
        self._log_outgoing_exceptions = False
        self._usage_record_log_file: str | None = None

    @property
    def is_persistent(self) -> bool:
        return self._store is not None

    @property
    def loaded(self) -> bool:
        return self._loaded

    # ── Properties ───────────────────────────────────────────────

    @property
    def log_incoming_workflows(self) -> bool:
        self.load()
        return self._log_incoming_workflows

    @log_incoming_workflows.setter
    def log_incoming_workflows(self, value: bool) -> None:
        self._update(log_incoming_workflows=bool(value))

    @property
    def allow_new_workflow_runs(self) -> bool:
        self.load()
        return self._allow_new_workflow_runs

    @allow_new_workflow_runs.setter
    def allow_new_workflow_runs(self, value: bool) -> None:
        self._update(allow_new_workflow_runs=bool(value))

    @property
    def log_outgoing_exceptions(self) -> bool:
        self.load()
        return self._log_outgoing_exceptions or self.force_log_outgoing_exceptions

    @log_outgoing_exceptions.setter
    def log_outgoing_exceptions(self, value: bool) -> None:
        self._update(log_outgoing_exceptions=bool(value))

    @property
    def usage_record_log_file(self) -> str | None:
        self.load()
        return self._usage_record_log_file

    @usage_record_log_file.setter
    def usage_record_log_file(self, value: str | None) -> None:
        self._update(usage_record_log_file=value or None)

    def as_dict(self) -> dict[str, bool | str | None]:
        """Current effective values, for display."""
        return {
            "log_incoming_workflows": self.log_incoming_workflows,
            "allow_new_workflow_runs": self.allow_new_workflow_runs,
            "log_outgoing_exceptions": self.log_outgoing_exceptions,
            "usage_record_log_file": self.usage_record_log_file,
        }

    # ── Load / persist ───────────────────────────────────────────

    def load(self, *, force: bool = False) -> None:
        """Read the stored row into the cache (once, unless *force*)."""
        if self._loaded and not force:
            return
        if self._store is None:
            return
        with self._lock:
            if self._loaded and not force:
                return
            with self._store.transaction() as tx:
                state = tx.get_row(ManagementStateTable, MANAGEMENT_STATE_KEY)
                if state is None:
                    return
                self._allow_new_workflow_runs = state.allow_new_workflow_runs
                self._log_incoming_workflows = state.log_incoming_workflows
                self._log_outgoing_exceptions = state.log_outgoing_exceptions
                self._usage_record_log_file = state.usage_record_log_file
            self._loaded = True
            logger.debug("management_state_loaded")

    def persist(self) -> None:
        """Write the whole cached state to the store."""
        self.load()
        with self._lock:
            self._write(self._snapshot())

    def _snapshot(self) -> dict[str, bool | str | None]:
        return {
            "log_incoming_workflows": self._log_incoming_workflows,
            "allow_new_workflow_runs": self._allow_new_workflow_runs,
            "log_outgoing_exceptions": self._log_outgoing_exceptions,
            "usage_record_log_file": self._usage_record_log_file,
        }

    def _update(self, **changes: bool | str | None) -> None:
        # Pull in stored values first so a write never clobbers them with defaults.
        self.load()
        with self._lock:
            values = self._snapshot()
            values.update(changes)
            self._write(values)
            for name, value in changes.items():
                setattr(self, f"_{name}", value)
        logger.info("management_state_changed", **changes)

    def _write(self, values: dict[str, bool | str | None]) -> None:
        if self._store is None:
            return
        with self._store.transaction() as tx:
            state = tx.get_row(ManagementStateTable, MANAGEMENT_STATE_KEY)
            if state is None:
                state = ManagementStateTable(id=MANAGEMENT_STATE_KEY)
                tx.add_row(state)
            for name, value in values.items():
                setattr(state, name, value)
        self._loaded = True


__all__ = ["ManagementState", "MANAGEMENT_STATE_KEY"]
