"""
Notification protocols and data classes.

Defines the contracts the registry's reconciliation pass consumes. Concrete
dispatchers live in ``channels.py``; routing lives in ``engine.py``.

Design Principles:
- Protocol over inheritance: dispatchers and message strategies are protocols
- Separation of concerns: *what* to say (CompletionNotifier) is independent
  of *how* to deliver it (NotificationDispatcher)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

from runregistry.models import utcnow
from runregistry.runs import RunHandle


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Delivers one message about a run to one destination.

    Raises on failure; the caller decides whether that matters.
    """

    def dispatch(
        self,
        run: RunHandle,
        destination: str | None,
        subject: str,
        body: str,
    ) -> None: ...


@runtime_checkable
class SchemeDispatcher(NotificationDispatcher, Protocol):
    """A dispatcher the engine can route to by destination scheme."""

    @property
    def name(self) -> str:
        """Unique dispatcher name."""
        ...

    @property
    def scheme(self) -> str:
        """Destination scheme handled, e.g. ``mailto``."""
        ...

    @property
    def enabled(self) -> bool:
        ...


@runtime_checkable
class CompletionNotifier(Protocol):
    """Builds the subject and body of a completion message."""

    def make_subject(self, run_id: str, run: RunHandle, code: int) -> str: ...

    def make_body(self, run_id: str, run: RunHandle, code: int) -> str: ...


@dataclass
class DeliveryRecord:
    """One dispatch attempt, as kept by the engine's history."""

    dispatcher: str
    run_id: str | None
    destination: str | None
    subject: str
    success: bool
    error: str | None = None
    delivered_at: datetime = field(default_factory=utcnow)


__all__ = [
    "NotificationDispatcher",
    "SchemeDispatcher",
    "CompletionNotifier",
    "DeliveryRecord",
]
