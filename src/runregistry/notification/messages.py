"""Completion message construction."""

from __future__ import annotations

from typing import Any

from runregistry.core.settings import DEFAULT_BODY_TEMPLATE, DEFAULT_SUBJECT_TEMPLATE
from runregistry.runs import RunHandle


class TemplateCompletionNotifier:
    """Fills ``str.format`` templates from the run.

    Available fields: ``run_id``, ``code``, ``owner``, ``status``,
    ``created_at``, ``expiry``. Unknown fields in a template are left as-is.
    """

    def __init__(
        self,
        subject_template: str = DEFAULT_SUBJECT_TEMPLATE,
        body_template: str = DEFAULT_BODY_TEMPLATE,
    ):
        self.subject_template = subject_template
        self.body_template = body_template

    def _fields(self, run_id: str, run: RunHandle, code: int) -> dict[str, Any]:
        created_at = getattr(run, "created_at", None)
        return {
            "run_id": run_id,
            "code": code,
            "owner": run.owner,
            "status": run.status.value,
            "created_at": created_at.isoformat() if created_at else "unknown",
            "expiry": run.expiry.isoformat(),
        }

    def make_subject(self, run_id: str, run: RunHandle, code: int) -> str:
        return self.subject_template.format_map(_Lenient(self._fields(run_id, run, code)))

    def make_body(self, run_id: str, run: RunHandle, code: int) -> str:
        return self.body_template.format_map(_Lenient(self._fields(run_id, run, code)))


class _Lenient(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


__all__ = ["TemplateCompletionNotifier"]
