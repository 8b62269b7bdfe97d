"""Routes completion messages to dispatchers by destination scheme."""

from __future__ import annotations

import threading
from collections import deque

from runregistry.core.errors import NotificationError
from runregistry.core.logging import get_logger
from runregistry.notification.protocol import DeliveryRecord, SchemeDispatcher
from runregistry.runs import RunHandle

logger = get_logger(__name__)

DEFAULT_SCHEME = "mailto"


def split_destination(destination: str) -> tuple[str, str]:
    """Split ``scheme:address``; bare addresses containing ``@`` are e-mail.

    >>> split_destination("mailto:alice@example.org")
    ('mailto', 'alice@example.org')
    >>> split_destination("alice@example.org")
    ('mailto', 'alice@example.org')
    """
    scheme, sep, rest = destination.partition(":")
    if sep and scheme and "@" not in scheme and "/" not in scheme:
        return scheme.lower(), rest
    return DEFAULT_SCHEME, destination


class NotificationEngine:
    """
    Registry of dispatchers, itself usable as a ``NotificationDispatcher``.

    Supports:
    - One dispatcher per scheme (``mailto``, ...)
    - Universal dispatchers that get every message whose destination is empty
    - A bounded history of delivery attempts
    """

    def __init__(self, history_size: int = 100):
        self._dispatchers: dict[str, SchemeDispatcher] = {}
        self._universal: dict[str, SchemeDispatcher] = {}
        self._history: deque[DeliveryRecord] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def register(self, dispatcher: SchemeDispatcher, *, universal: bool = False) -> None:
        """Register a dispatcher for its scheme, or as a universal one."""
        with self._lock:
            if universal:
                self._universal[dispatcher.name] = dispatcher
            else:
                self._dispatchers[dispatcher.scheme] = dispatcher

    def unregister(self, name: str) -> None:
        with self._lock:
            self._universal.pop(name, None)
            for scheme, dispatcher in list(self._dispatchers.items()):
                if dispatcher.name == name:
                    del self._dispatchers[scheme]

    def schemes(self) -> list[str]:
        return sorted(self._dispatchers)

    def history(self) -> list[DeliveryRecord]:
        return list(self._history)

    def dispatch(self, run: RunHandle, destination: str | None, subject: str, body: str) -> None:
        """Deliver one message; raises :class:`NotificationError` if nothing could."""
        if destination:
            scheme, _ = split_destination(destination)
            dispatcher = self._dispatchers.get(scheme)
            if dispatcher is None or not dispatcher.enabled:
                raise NotificationError(f"no dispatcher for scheme {scheme!r}").with_context(
                    run_id=run.id, destination=destination
                )
            self._deliver(dispatcher, run, destination, subject, body)
            return

        targets = [d for d in self._universal.values() if d.enabled]
        if not targets:
            raise NotificationError("no destination and no universal dispatcher").with_context(
                run_id=run.id
            )
        for dispatcher in targets:
            self._deliver(dispatcher, run, None, subject, body)

    def _deliver(
        self,
        dispatcher: SchemeDispatcher,
        run: RunHandle,
        destination: str | None,
        subject: str,
        body: str,
    ) -> None:
        try:
            dispatcher.dispatch(run, destination, subject, body)
        except Exception as exc:
            self._history.append(
                DeliveryRecord(dispatcher.name, run.id, destination, subject, False, str(exc))
            )
            raise
        self._history.append(DeliveryRecord(dispatcher.name, run.id, destination, subject, True))
        logger.debug("notification_dispatched", dispatcher=dispatcher.name, run_id=run.id)


__all__ = ["NotificationEngine", "split_destination", "DEFAULT_SCHEME"]
