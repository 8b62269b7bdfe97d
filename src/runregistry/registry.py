"""Run registry - the authoritative, persisted record of every run.

The RunRegistry owns the mapping from run id to stored snapshot. Every
operation runs in its own store transaction; the registry consults the
access policy for checked reads, and two maintenance passes (driven by
:mod:`runregistry.scheduling`) detect finished runs and delete expired ones.

Architecture:

    .. code-block:: text

        RunRegistry
        ┌───────────────────────────────────────────────────────────┐
        │  CRUD (one transaction each)     MAINTENANCE               │
        │  ─────────────────────────       ───────────               │
        │  register()        ─ raises      reconcile()               │
        │  flush()           ─ raises        1. tx: claim FINISHED    │
        │  get_run()         ─ checked          runs, commit once     │
        │  get_run_unchecked()               2. no tx: dispatch       │
        │  list_runs()       ─ per-record       completion messages   │
        │                      isolation    clean_expired()          │
        │  unregister()      ─ best effort    tx: delete all expired  │
        │  destroy()         ─ checked          (all or nothing)      │
        │  count()                                                   │
        └───────────────────────────────────────────────────────────┘
                 │                          │
                 ▼                          ▼
          PersistentStore            NotificationDispatcher

Failure policy:
    ``register`` and ``flush`` propagate :class:`StorageError`: losing those
    writes would break durability. ``unregister``, ``reconcile`` and
    ``clean_expired`` log, roll back and report instead of raising.

Known limitation:
    ``reconcile`` marks a run notified and commits *before* dispatching.
    A crash between the two loses that run's notification; it is never
    sent twice.

Example:
    >>> registry = RunRegistry(store, LocalRunFactory(), dispatcher=engine)
    >>> run_id = registry.register(factory.create("alice", workflow))
    >>> registry.get_run("alice", run_id).status
    <RunStatus.INITIALIZING: 'Initializing'>
    >>> registry.reconcile().dispatched
    []
"""

from __future__ import annotations

import json
import re
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from runregistry.core.errors import (
    ConflictError,
    PermissionDeniedError,
    StorageError,
    UnknownRunError,
)
from runregistry.core.logging import get_logger
from runregistry.models import (
    EXIT_CODE_PROPERTY,
    IO_LISTENER,
    NOTIFICATION_ADDRESS_PROPERTY,
    RunStatus,
)
from runregistry.notification.messages import TemplateCompletionNotifier
from runregistry.notification.protocol import CompletionNotifier, NotificationDispatcher
from runregistry.policy import AccessPolicy, OwnerPermissionPolicy
from runregistry.runs import RunFactory, RunHandle
from runregistry.store import (
    PersistentStore,
    Transaction,
    apply_snapshot,
    record_from_snapshot,
    snapshot_from_record,
)

logger = get_logger(__name__)

# Raised by snapshot decoding when a stored record is malformed.
_DECODE_ERRORS = (KeyError, ValueError, TypeError)

# Optional sign and ASCII digits only.
_EXIT_CODE = re.compile(r"[+-]?[0-9]+")


@dataclass
class SkippedRecord:
    """A run left out of a bulk operation, and why."""

    run_id: str
    error: str


class RunListing(dict[str, RunHandle]):
    """Runs visible to a principal, keyed by id.

    ``skipped`` lists the records that could not be read.
    """

    def __init__(self) -> None:
        super().__init__()
        self.skipped: list[SkippedRecord] = []


@dataclass
class ReconcileReport:
    """Outcome of one completion reconciliation pass."""

    examined: int = 0
    marked: list[str] = field(default_factory=list)
    dispatched: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    dispatch_failures: list[SkippedRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and not self.skipped and not self.dispatch_failures


@dataclass
class SweepReport:
    """Outcome of one expiry sweep."""

    deleted: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class RunRegistry:
    """Stores runs, checks access to them, and tracks their completion.

    Args:
        store: Persistent store holding run snapshots
        factory: Turns stored snapshots back into live handles
        policy: Default access policy (owner plus grants)
        dispatcher: Where completion messages go (None: mark only)
        notifiers: Completion message builders; one message per notifier
    """

    def __init__(
        self,
        store: PersistentStore,
        factory: RunFactory,
        *,
        policy: AccessPolicy | None = None,
        dispatcher: NotificationDispatcher | None = None,
        notifiers: Sequence[CompletionNotifier] | None = None,
    ):
        self._store = store
        self._factory = factory
        self._policy = policy or OwnerPermissionPolicy(run_counter=self.count)
        self._dispatcher = dispatcher
        self._notifiers = (
            list(notifiers) if notifiers is not None else [TemplateCompletionNotifier()]
        )
        self._reconcile_lock = threading.Lock()

    @property
    def policy(self) -> AccessPolicy:
        return self._policy

    @property
    def store(self) -> PersistentStore:
        return self._store

    # =========================================================================
    # CRUD
    # =========================================================================

    def register(self, run: RunHandle) -> str:
        """Persist a new run, assigning its id if it has none.

        Raises:
            ConflictError: The id belongs to a run with another owner
            StorageError: The write could not be committed
        """
        if run.id is None:
            run.id = str(uuid.uuid4())
        snapshot = run.to_snapshot()
        logger.debug(
            "registering_run",
            run_id=run.id,
            owner=snapshot.owner,
            snapshot_size=len(json.dumps(snapshot.to_dict())),
        )
        with self._store.transaction() as tx:
            existing = tx.get(run.id)
            if existing is None:
                tx.persist(record_from_snapshot(snapshot))
            elif existing.owner != snapshot.owner:
                logger.error("run_id_conflict", run_id=run.id, owner=snapshot.owner)
                raise ConflictError("run id already registered to another owner").with_context(
                    run_id=run.id, principal=snapshot.owner
                )
            else:
                apply_snapshot(existing, snapshot)
        run.attach(self)
        logger.info("run_registered", run_id=run.id, owner=snapshot.owner)
        return run.id

    def flush(self, run: RunHandle) -> None:
        """Overwrite the stored snapshot of a registered run.

        Raises:
            UnknownRunError: The run is not registered
            StorageError: The write could not be committed
        """
        if run.id is None:
            raise UnknownRunError()
        snapshot = run.to_snapshot()
        with self._store.transaction() as tx:
            record = tx.get(run.id)
            if record is None:
                raise UnknownRunError(run.id)
            apply_snapshot(record, snapshot)
        logger.debug("run_flushed", run_id=run.id, status=snapshot.status.value)

    def get_run(
        self,
        principal: str | None,
        run_id: str,
        *,
        policy: AccessPolicy | None = None,
    ) -> RunHandle:
        """Fetch a run the principal may see.

        ``principal=None`` skips the access check (internal callers only).

        Raises:
            UnknownRunError: No such run, or the principal may not see it
        """
        run = self._fetch(run_id)
        checker = policy or self._policy
        if run is not None and (principal is None or checker.permit_access(principal, run)):
            return run
        raise UnknownRunError(run_id)

    def get_run_unchecked(self, run_id: str) -> RunHandle:
        """Fetch a run without any access check."""
        run = self._fetch(run_id)
        if run is None:
            raise UnknownRunError(run_id)
        return run

    def _fetch(self, run_id: str) -> RunHandle | None:
        with self._store.transaction() as tx:
            record = tx.get(run_id)
            if record is None:
                return None
            try:
                return self._factory.restore(snapshot_from_record(record), self)
            except _DECODE_ERRORS:
                logger.warning("run_decode_failed", run_id=run_id, exc_info=True)
                return None

    def list_runs(
        self,
        principal: str | None,
        *,
        policy: AccessPolicy | None = None,
    ) -> RunListing:
        """All runs the principal may see; unreadable records are skipped."""
        checker = policy or self._policy
        listing = RunListing()
        with self._store.transaction() as tx:
            for run_id in tx.run_names():
                try:
                    run = self._restore(tx, run_id)
                except (*_DECODE_ERRORS, StorageError) as exc:
                    logger.warning("run_list_skipped", run_id=run_id, exc_info=True)
                    listing.skipped.append(SkippedRecord(run_id, str(exc)))
                    continue
                if run is None:
                    continue
                if principal is None or checker.permit_access(principal, run):
                    listing[run_id] = run
        return listing

    def list_run_names(self) -> list[str]:
        """Ids of every stored run (privileged)."""
        with self._store.transaction() as tx:
            return tx.run_names()

    def pick_arbitrary_run(self) -> RunHandle | None:
        """Any one decodable run, or None when there is none (privileged)."""
        with self._store.transaction() as tx:
            for run_id in tx.run_names():
                try:
                    run = self._restore(tx, run_id)
                except (*_DECODE_ERRORS, StorageError):
                    logger.debug("run_pick_skipped", run_id=run_id, exc_info=True)
                    continue
                if run is not None:
                    return run
        return None

    def unregister(self, run_id: str) -> bool:
        """Delete a run's record. Missing records and storage failures are not errors.

        Returns:
            True if a record was deleted
        """
        deleted = False
        try:
            with self._store.transaction() as tx:
                record = tx.get(run_id)
                if record is not None:
                    tx.delete(record)
                    deleted = True
        except StorageError:
            logger.warning("run_delete_failed", run_id=run_id, exc_info=True)
            return False
        if deleted:
            logger.info("run_unregistered", run_id=run_id)
        return deleted

    def destroy(
        self,
        principal: str | None,
        run_id: str,
        *,
        policy: AccessPolicy | None = None,
    ) -> bool:
        """Checked delete: the principal must be allowed to destroy the run.

        Raises:
            UnknownRunError: No such run, or the principal may not see it
            PermissionDeniedError: The principal may see but not destroy it
        """
        checker = policy or self._policy
        run = self.get_run(principal, run_id, policy=checker)
        if principal is not None and not checker.permit_destroy(principal, run):
            raise PermissionDeniedError("may not destroy this run").with_context(
                run_id=run_id, principal=principal
            )
        return self.unregister(run_id)

    def count(self) -> int:
        """Total number of stored runs."""
        with self._store.transaction() as tx:
            return tx.count()

    def _restore(self, tx: Transaction, run_id: str) -> RunHandle | None:
        record = tx.get(run_id)
        if record is None:
            return None
        return self._factory.restore(snapshot_from_record(record), self)

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def reconcile(self) -> ReconcileReport:
        """Detect newly finished runs and send their completion messages.

        Each finished run is marked notified inside one transaction; the
        messages are sent afterwards, outside it. Problems with individual
        runs are logged and reported, never raised.
        """
        report = ReconcileReport()
        with self._reconcile_lock:
            to_notify = self._mark_finished(report)
            for run in to_notify:
                self._notify_finished(run, report)
        if report.marked:
            logger.info(
                "reconcile_complete",
                marked=len(report.marked),
                dispatched=len(report.dispatched),
                abandoned=len(report.abandoned),
                failures=len(report.dispatch_failures),
            )
        return report

    def _mark_finished(self, report: ReconcileReport) -> list[RunHandle]:
        to_notify: list[RunHandle] = []
        try:
            with self._store.transaction() as tx:
                if tx.count() == 0:
                    return []
                for run_id in tx.run_names():
                    report.examined += 1
                    try:
                        record = tx.get(run_id)
                        if record is None:
                            continue
                        run = self._factory.restore(snapshot_from_record(record), self)
                        if run.finished_notified or run.status != RunStatus.FINISHED:
                            continue
                        if not tx.claim_notification(record):
                            continue
                        run.finished_notified = True
                        to_notify.append(run)
                    except Exception as exc:
                        logger.warning("completion_check_failed", run_id=run_id, exc_info=True)
                        report.skipped.append(SkippedRecord(run_id, str(exc)))
        except StorageError as exc:
            logger.warning("completion_marking_failed", exc_info=True)
            report.error = str(exc)
            return []
        report.marked.extend(run.id for run in to_notify if run.id is not None)
        return to_notify

    def _notify_finished(self, run: RunHandle, report: ReconcileReport) -> None:
        run_id = run.id or ""
        io = next((listener for listener in run.listeners if listener.name == IO_LISTENER), None)
        if io is None:
            logger.debug("no_io_listener", run_id=run_id)
            report.abandoned.append(run_id)
            return
        if self._dispatcher is None:
            return
        destination = io.properties.get(NOTIFICATION_ADDRESS_PROPERTY)
        raw_code = io.properties.get(EXIT_CODE_PROPERTY, "")
        if not _EXIT_CODE.fullmatch(raw_code):
            # Nothing meaningful to report.
            report.abandoned.append(run_id)
            return
        code = int(raw_code)

        try:
            for notifier in self._notifiers:
                self._dispatcher.dispatch(
                    run,
                    destination,
                    notifier.make_subject(run_id, run, code),
                    notifier.make_body(run_id, run, code),
                )
        except Exception as exc:
            logger.warning("completion_notification_failed", run_id=run_id, exc_info=True)
            report.dispatch_failures.append(SkippedRecord(run_id, str(exc)))
            return
        report.dispatched.append(run_id)

    def clean_expired(self, now: datetime | None = None) -> SweepReport:
        """Delete every run whose expiry has passed, all or nothing."""
        report = SweepReport()
        deleted: list[str] = []
        try:
            with self._store.transaction() as tx:
                expired = tx.expired_run_names(now)
                logger.debug("expired_runs_found", count=len(expired))
                for run_id in expired:
                    record = tx.get(run_id)
                    if record is not None:
                        tx.delete(record)
                        deleted.append(run_id)
        except StorageError as exc:
            logger.warning("expiry_sweep_failed", exc_info=True)
            report.error = str(exc)
            return report
        report.deleted = deleted
        if deleted:
            logger.info("expired_runs_deleted", count=len(deleted))
        return report


__all__ = [
    "RunRegistry",
    "RunListing",
    "ReconcileReport",
    "SweepReport",
    "SkippedRecord",
]
