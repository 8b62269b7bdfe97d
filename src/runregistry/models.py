"""Run domain models.

Defines the data structures shared by the registry, the run factory and the
access policy:

- RunStatus: lifecycle status with an enforced transition table
- Permission: per-user access grant on a run
- Listener: named observation endpoint with string properties
- Credential / Trust: security material attached to a run
- RunSnapshot: the serializable state of one run

Snapshots are what the registry persists. They serialize to JSON-safe dicts
with ``to_dict()`` and come back with ``from_dict()``; nothing else about
the concrete run implementation is stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from runregistry.core.errors import BadStateChangeError, NoListenerError

# Name of the listener carrying the exit code and notification address.
IO_LISTENER = "io"
NOTIFICATION_ADDRESS_PROPERTY = "notificationAddress"
EXIT_CODE_PROPERTY = "exitcode"


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be an object, not {type(value).__name__}")
    return value


def _sequence(value: Any, what: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list, not {type(value).__name__}")
    return value


class RunStatus(str, Enum):
    """Status of a run.

    Valid transition graph::

        INITIALIZING → RUNNING | FINISHED
        RUNNING      → STOPPED | FINISHED
        STOPPED      → RUNNING | FINISHED
        FINISHED     → (terminal)
    """

    INITIALIZING = "Initializing"
    RUNNING = "Running"
    FINISHED = "Finished"
    STOPPED = "Stopped"


RUN_VALID_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.INITIALIZING: frozenset({RunStatus.RUNNING, RunStatus.FINISHED}),
    RunStatus.RUNNING: frozenset({RunStatus.STOPPED, RunStatus.FINISHED}),
    RunStatus.STOPPED: frozenset({RunStatus.RUNNING, RunStatus.FINISHED}),
    RunStatus.FINISHED: frozenset(),  # terminal
}


def validate_run_transition(current: RunStatus, target: RunStatus) -> None:
    """Raise :class:`BadStateChangeError` if *current → target* is illegal.

    Example:
        >>> validate_run_transition(RunStatus.RUNNING, RunStatus.FINISHED)
        >>> validate_run_transition(RunStatus.FINISHED, RunStatus.RUNNING)
        Traceback (most recent call last):
        ...
        runregistry.core.errors.BadStateChangeError: cannot change run status from Finished to Running
    """
    if target not in RUN_VALID_TRANSITIONS.get(current, frozenset()):
        raise BadStateChangeError(
            f"cannot change run status from {current.value} to {target.value}"
        )


class Permission(str, Enum):
    """Access granted to a non-owner. Each level implies the ones below it."""

    NONE = "none"
    READ = "read"
    UPDATE = "update"
    DESTROY = "destroy"

    @property
    def rank(self) -> int:
        return _PERMISSION_ORDER.index(self)

    def implies(self, other: Permission) -> bool:
        return self.rank >= other.rank


_PERMISSION_ORDER = [Permission.NONE, Permission.READ, Permission.UPDATE, Permission.DESTROY]


@dataclass
class Listener:
    """A named observation endpoint attached to a run."""

    name: str
    type: str = "io"
    configuration: str = ""
    properties: dict[str, str] = field(default_factory=dict)

    def get_property(self, name: str) -> str:
        """Return a property value; unknown names raise :class:`NoListenerError`."""
        try:
            return self.properties[name]
        except KeyError:
            raise NoListenerError(f"no such property: {name}") from None

    def list_properties(self) -> list[str]:
        return list(self.properties)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "configuration": self.configuration,
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Listener:
        data = _mapping(data, "listener")
        properties = _mapping(data.get("properties", {}), "listener properties")
        return cls(
            name=data["name"],
            type=data.get("type", "io"),
            configuration=data.get("configuration", ""),
            properties={str(k): str(v) for k, v in properties.items()},
        )


@dataclass
class Credential:
    """A credential the run may present to a remote service.

    Only the description is kept; secret material never reaches the store.
    """

    service_uri: str
    credential_type: str = "password"
    username: str | None = None
    alias: str | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "service_uri": self.service_uri,
            "credential_type": self.credential_type,
            "username": self.username,
            "alias": self.alias,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        data = _mapping(data, "credential")
        return cls(
            id=data.get("id"),
            service_uri=data["service_uri"],
            credential_type=data.get("credential_type", "password"),
            username=data.get("username"),
            alias=data.get("alias"),
        )


@dataclass
class Trust:
    """A trust anchor (server certificate) the run accepts."""

    certificate: str
    certificate_type: str = "X.509"
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "certificate": self.certificate,
            "certificate_type": self.certificate_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Trust:
        data = _mapping(data, "trust")
        return cls(
            id=data.get("id"),
            certificate=data["certificate"],
            certificate_type=data.get("certificate_type", "X.509"),
        )


@dataclass
class RunSnapshot:
    """Serializable state of one run.

    Attributes:
        id: Run identifier (None until registered)
        owner: Principal that created the run
        status: Lifecycle status
        workflow: Opaque workflow definition
        expiry: When the record becomes eligible for deletion (UTC)
        created_at: Creation time (UTC)
        finished_notified: Completion notification already attempted
        listeners: Attached listeners, in attachment order
        permissions: Non-default grants, keyed by principal name
        credentials: Attached credential descriptions
        trusts: Attached trust anchors
    """

    owner: str
    expiry: datetime
    status: RunStatus = RunStatus.INITIALIZING
    workflow: str = ""
    id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    finished_notified: bool = False
    listeners: list[Listener] = field(default_factory=list)
    permissions: dict[str, Permission] = field(default_factory=dict)
    credentials: list[Credential] = field(default_factory=list)
    trusts: list[Trust] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "id": self.id,
            "owner": self.owner,
            "status": self.status.value,
            "workflow": self.workflow,
            "expiry": as_utc(self.expiry).isoformat(),
            "created_at": as_utc(self.created_at).isoformat(),
            "finished_notified": self.finished_notified,
            "listeners": [listener.to_dict() for listener in self.listeners],
            "permissions": {user: perm.value for user, perm in self.permissions.items()},
            "credentials": [c.to_dict() for c in self.credentials],
            "trusts": [t.to_dict() for t in self.trusts],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunSnapshot:
        """Rebuild a snapshot; malformed data raises ``KeyError``/``ValueError``."""
        data = _mapping(data, "run snapshot")
        listeners = _sequence(data.get("listeners", []), "listeners")
        permissions = _mapping(data.get("permissions", {}), "permissions")
        credentials = _sequence(data.get("credentials", []), "credentials")
        trusts = _sequence(data.get("trusts", []), "trusts")
        return cls(
            id=data.get("id"),
            owner=data["owner"],
            status=RunStatus(data["status"]),
            workflow=data.get("workflow", ""),
            expiry=as_utc(datetime.fromisoformat(data["expiry"])),
            created_at=as_utc(datetime.fromisoformat(data["created_at"])),
            finished_notified=bool(data.get("finished_notified", False)),
            listeners=[Listener.from_dict(item) for item in listeners],
            permissions={user: Permission(value) for user, value in permissions.items()},
            credentials=[Credential.from_dict(item) for item in credentials],
            trusts=[Trust.from_dict(item) for item in trusts],
        )


__all__ = [
    "IO_LISTENER",
    "NOTIFICATION_ADDRESS_PROPERTY",
    "EXIT_CODE_PROPERTY",
    "utcnow",
    "as_utc",
    "RunStatus",
    "RUN_VALID_TRANSITIONS",
    "validate_run_transition",
    "Permission",
    "Listener",
    "Credential",
    "Trust",
    "RunSnapshot",
]
