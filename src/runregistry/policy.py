"""Access control for runs.

The registry calls :meth:`AccessPolicy.permit_access` on every checked read;
the other checks are used by callers that modify, destroy or create runs.
A ``None`` principal is never passed to a policy: it means "trusted internal
caller" and the registry skips the check entirely.

Design Principles:
- Protocol over inheritance: any object with these four methods is a policy
- Default deny: a principal who is neither the owner nor granted a
  permission sees nothing
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from runregistry.core.logging import get_logger
from runregistry.models import Permission
from runregistry.runs import RunHandle

logger = get_logger(__name__)


@runtime_checkable
class AccessPolicy(Protocol):
    """Decides what a principal may do with a run."""

    def permit_access(self, principal: str, run: RunHandle) -> bool:
        """May *principal* see *run* at all?"""
        ...

    def permit_update(self, principal: str, run: RunHandle) -> bool:
        """May *principal* change *run*?"""
        ...

    def permit_destroy(self, principal: str, run: RunHandle) -> bool:
        """May *principal* delete *run*?"""
        ...

    def permit_create(self, principal: str, workflow: str) -> bool:
        """May *principal* create a new run?"""
        ...


def _granted(run: RunHandle) -> Callable[[str], Permission]:
    getter = getattr(run, "get_permission", None)
    if getter is None:
        return lambda principal: Permission.NONE
    return getter


class OwnerPermissionPolicy:
    """Owner has full control; everyone else needs an explicit grant.

    ``max_runs`` caps the number of stored runs; ``run_counter`` is asked for
    the current count when a create is checked (normally
    ``RunRegistry.count``).
    """

    def __init__(
        self,
        *,
        max_runs: int | None = None,
        run_counter: Callable[[], int] | None = None,
    ):
        self.max_runs = max_runs
        self._run_counter = run_counter

    def set_run_counter(self, run_counter: Callable[[], int]) -> None:
        self._run_counter = run_counter

    def _has(self, principal: str, run: RunHandle, needed: Permission) -> bool:
        if principal == run.owner:
            return True
        return _granted(run)(principal).implies(needed)

    def permit_access(self, principal: str, run: RunHandle) -> bool:
        return self._has(principal, run, Permission.READ)

    def permit_update(self, principal: str, run: RunHandle) -> bool:
        return self._has(principal, run, Permission.UPDATE)

    def permit_destroy(self, principal: str, run: RunHandle) -> bool:
        return self._has(principal, run, Permission.DESTROY)

    def permit_create(self, principal: str, workflow: str) -> bool:
        if not principal:
            return False
        if self.max_runs is None or self._run_counter is None:
            return True
        current = self._run_counter()
        if current >= self.max_runs:
            logger.info("run_limit_reached", principal=principal, limit=self.max_runs, current=current)
            return False
        return True


class PermitAllPolicy:
    """Allows everything. For trusted tooling and tests only."""

    def permit_access(self, principal: str, run: RunHandle) -> bool:
        return True

    def permit_update(self, principal: str, run: RunHandle) -> bool:
        return True

    def permit_destroy(self, principal: str, run: RunHandle) -> bool:
        return True

    def permit_create(self, principal: str, workflow: str) -> bool:
        return True


__all__ = ["AccessPolicy", "OwnerPermissionPolicy", "PermitAllPolicy"]
