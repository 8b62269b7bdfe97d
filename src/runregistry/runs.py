"""Run handles and the factory that builds them.

The registry depends only on the narrow :class:`RunHandle` capability: a run
that has an id, an owner, a status, listeners, a notification flag and can
produce a :class:`~runregistry.models.RunSnapshot`. The :class:`RunFactory`
is the only component that knows the concrete handle class, both when a run
is created and when a stored snapshot is turned back into a live handle.

``LocalRun`` is the bundled implementation. Its mutators validate the change,
apply it to the in-memory state and then ask the registry it is attached to
to flush the new snapshot. Handles that were never registered just keep the
change in memory.

Security context rules (owner, permissions, credentials, trusts):

* permissions can change at any time; granting ``Permission.NONE`` removes
  the grant
* credentials and trust anchors can only change while the run is
  ``INITIALIZING``
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from runregistry.core.errors import (
    BadStateChangeError,
    InvalidCredentialError,
    NoCreateError,
    NoCredentialError,
    NoListenerError,
)
from runregistry.core.logging import get_logger
from runregistry.models import (
    IO_LISTENER,
    Credential,
    Listener,
    Permission,
    RunSnapshot,
    RunStatus,
    Trust,
    as_utc,
    utcnow,
    validate_run_transition,
)

logger = get_logger(__name__)

DEFAULT_LIFETIME = timedelta(days=1)


class RunFlusher(Protocol):
    """Anything that can persist a registered run's latest state."""

    def flush(self, run: RunHandle) -> None: ...


@runtime_checkable
class RunHandle(Protocol):
    """What the registry needs from a run."""

    id: str | None
    finished_notified: bool

    @property
    def owner(self) -> str: ...

    @property
    def status(self) -> RunStatus: ...

    @property
    def expiry(self) -> datetime: ...

    @property
    def listeners(self) -> list[Listener]: ...

    def to_snapshot(self) -> RunSnapshot: ...

    def attach(self, flusher: RunFlusher | None) -> None: ...


class RunFactory(Protocol):
    """Builds run handles: new ones from a workflow, old ones from a snapshot."""

    def create(self, principal: str, workflow: str) -> RunHandle:
        """Create a run owned by *principal*; raises :class:`NoCreateError`."""
        ...

    def restore(self, snapshot: RunSnapshot, flusher: RunFlusher | None = None) -> RunHandle:
        """Turn a stored snapshot back into a live handle."""
        ...


def _new_id() -> str:
    return str(uuid.uuid4())


class LocalRun:
    """In-process run handle backed by a :class:`RunSnapshot`."""

    def __init__(self, snapshot: RunSnapshot, flusher: RunFlusher | None = None):
        self._state = snapshot
        self._flusher = flusher

    def __repr__(self) -> str:
        return f"LocalRun(id={self.id!r}, owner={self.owner!r}, status={self.status.value})"

    # ── Identity ─────────────────────────────────────────────────

    @property
    def id(self) -> str | None:
        return self._state.id

    @id.setter
    def id(self, value: str) -> None:
        if self._state.id is not None and self._state.id != value:
            raise ValueError("run id cannot be changed once assigned")
        self._state.id = value

    @property
    def owner(self) -> str:
        return self._state.owner

    @property
    def workflow(self) -> str:
        return self._state.workflow

    @property
    def created_at(self) -> datetime:
        return self._state.created_at

    @property
    def finished_notified(self) -> bool:
        return self._state.finished_notified

    @finished_notified.setter
    def finished_notified(self, value: bool) -> None:
        if self._state.finished_notified and not value:
            raise ValueError("finished_notified cannot be reset")
        self._state.finished_notified = value

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def status(self) -> RunStatus:
        return self._state.status

    def set_status(self, status: RunStatus) -> None:
        """Move the run to *status*; raises :class:`BadStateChangeError` if illegal."""
        if status == self._state.status:
            return
        validate_run_transition(self._state.status, status)
        logger.info("run_status_changed", run_id=self.id, old=self._state.status.value, new=status.value)
        self._state.status = status
        self._flush()

    @property
    def expiry(self) -> datetime:
        return self._state.expiry

    def set_expiry(self, expiry: datetime) -> None:
        self._state.expiry = as_utc(expiry)
        self._flush()

    # ── Listeners ────────────────────────────────────────────────

    @property
    def listeners(self) -> list[Listener]:
        return list(self._state.listeners)

    def get_listener(self, name: str) -> Listener:
        for listener in self._state.listeners:
            if listener.name == name:
                return listener
        raise NoListenerError(f"no such listener: {name}")

    def add_listener(self, listener: Listener) -> Listener:
        if any(existing.name == listener.name for existing in self._state.listeners):
            raise BadStateChangeError(f"listener already exists: {listener.name}")
        self._state.listeners.append(listener)
        self._flush()
        return listener

    def set_listener_property(self, listener_name: str, name: str, value: str) -> None:
        self.get_listener(listener_name).properties[name] = value
        self._flush()

    # ── Permissions ──────────────────────────────────────────────

    def get_permission(self, principal: str) -> Permission:
        return self._state.permissions.get(principal, Permission.NONE)

    def set_permission(self, principal: str, permission: Permission) -> None:
        if permission == Permission.NONE:
            self._state.permissions.pop(principal, None)
        else:
            self._state.permissions[principal] = permission
        self._flush()

    def list_permissions(self) -> dict[str, Permission]:
        return dict(sorted(self._state.permissions.items()))

    # ── Credentials and trusts ───────────────────────────────────

    @property
    def credentials(self) -> list[Credential]:
        return list(self._state.credentials)

    def get_credential(self, credential_id: str) -> Credential:
        for credential in self._state.credentials:
            if credential.id == credential_id:
                return credential
        raise NoCredentialError(credential_id)

    def add_credential(self, credential: Credential) -> Credential:
        self._require_initializing()
        if not credential.service_uri:
            raise InvalidCredentialError("credential must name the service it is for")
        if credential.id is None:
            credential.id = _new_id()
        elif any(c.id == credential.id for c in self._state.credentials):
            raise InvalidCredentialError(f"duplicate credential id: {credential.id}")
        self._state.credentials.append(credential)
        self._flush()
        return credential

    def replace_credential(self, credential_id: str, credential: Credential) -> Credential:
        self._require_initializing()
        if not credential.service_uri:
            raise InvalidCredentialError("credential must name the service it is for")
        existing = self.get_credential(credential_id)
        credential.id = credential_id
        index = self._state.credentials.index(existing)
        self._state.credentials[index] = credential
        self._flush()
        return credential

    def delete_credential(self, credential_id: str) -> None:
        self._require_initializing()
        self._state.credentials.remove(self.get_credential(credential_id))
        self._flush()

    def delete_all_credentials(self) -> None:
        self._require_initializing()
        self._state.credentials.clear()
        self._flush()

    @property
    def trusts(self) -> list[Trust]:
        return list(self._state.trusts)

    def get_trust(self, trust_id: str) -> Trust:
        for trust in self._state.trusts:
            if trust.id == trust_id:
                return trust
        raise NoCredentialError(trust_id)

    def add_trust(self, trust: Trust) -> Trust:
        self._require_initializing()
        if not trust.certificate.strip():
            raise InvalidCredentialError("trust anchor has no certificate content")
        if trust.id is None:
            trust.id = _new_id()
        elif any(t.id == trust.id for t in self._state.trusts):
            raise InvalidCredentialError(f"duplicate trust id: {trust.id}")
        self._state.trusts.append(trust)
        self._flush()
        return trust

    def replace_trust(self, trust_id: str, trust: Trust) -> Trust:
        self._require_initializing()
        if not trust.certificate.strip():
            raise InvalidCredentialError("trust anchor has no certificate content")
        existing = self.get_trust(trust_id)
        trust.id = trust_id
        index = self._state.trusts.index(existing)
        self._state.trusts[index] = trust
        self._flush()
        return trust

    def delete_trust(self, trust_id: str) -> None:
        self._require_initializing()
        self._state.trusts.remove(self.get_trust(trust_id))
        self._flush()

    def delete_all_trusts(self) -> None:
        self._require_initializing()
        self._state.trusts.clear()
        self._flush()

    # ── Persistence ──────────────────────────────────────────────

    def to_snapshot(self) -> RunSnapshot:
        return RunSnapshot.from_dict(self._state.to_dict())

    def attach(self, flusher: RunFlusher | None) -> None:
        self._flusher = flusher

    def _require_initializing(self) -> None:
        if self._state.status != RunStatus.INITIALIZING:
            raise BadStateChangeError("security details may only change before the run starts")

    def _flush(self) -> None:
        if self._flusher is not None and self._state.id is not None:
            self._flusher.flush(self)


class LocalRunFactory:
    """Creates and restores :class:`LocalRun` handles.

    Every new run gets an ``io`` listener so the exit code and notification
    address have somewhere to live.
    """

    def __init__(self, lifetime: timedelta = DEFAULT_LIFETIME):
        self._lifetime = lifetime

    def create(self, principal: str, workflow: str) -> LocalRun:
        if not principal:
            raise NoCreateError("runs must be created by an authenticated principal")
        if workflow is None:
            raise NoCreateError("no workflow supplied")
        now = utcnow()
        snapshot = RunSnapshot(
            owner=principal,
            workflow=workflow,
            created_at=now,
            expiry=now + self._lifetime,
            listeners=[Listener(name=IO_LISTENER, type="io")],
        )
        return LocalRun(snapshot)

    def restore(self, snapshot: RunSnapshot, flusher: RunFlusher | None = None) -> LocalRun:
        return LocalRun(snapshot, flusher)


__all__ = [
    "RunFlusher",
    "RunHandle",
    "RunFactory",
    "LocalRun",
    "LocalRunFactory",
    "DEFAULT_LIFETIME",
]
