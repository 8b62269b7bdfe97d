"""SQLAlchemy 2.0 table definitions for the run registry.

Two tables:

* ``rr_runs``              -- one row per registered run: the serialized
  snapshot plus the columns the registry queries on (owner, status,
  notification flag, expiry).
* ``rr_management_state``  -- the singleton management settings row.

Datetimes are stored as naive UTC.

Usage::

    from runregistry.core.orm import RegistryBase, create_registry_engine

    engine = create_registry_engine("sqlite:///runs.db")
    RegistryBase.metadata.create_all(engine)
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from runregistry.core.orm.base import RegistryBase


class RunTable(RegistryBase):
    __tablename__ = "rr_runs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    finished_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expiry: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    __table_args__ = (Index("ix_rr_runs_expiry", "expiry"),)

    def __repr__(self) -> str:
        return f"RunTable(id={self.id!r}, owner={self.owner!r}, status={self.status!r})"


class ManagementStateTable(RegistryBase):
    __tablename__ = "rr_management_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    log_incoming_workflows: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allow_new_workflow_runs: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    log_outgoing_exceptions: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_record_log_file: Mapped[str | None] = mapped_column(Text, nullable=True)


__all__ = ["RunTable", "ManagementStateTable"]
