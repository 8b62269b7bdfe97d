"""SQLAlchemy 2.0 ORM layer for the run registry.

Modules
-------
base        RegistryBase (declarative base)
session     Engine factory, RegistrySession
tables      RunTable, ManagementStateTable
"""

from __future__ import annotations

from runregistry.core.orm.base import RegistryBase
from runregistry.core.orm.session import (
    RegistrySession,
    create_registry_engine,
    registry_session_factory,
)
from runregistry.core.orm.tables import ManagementStateTable, RunTable

__all__ = [
    "RegistryBase",
    "RegistrySession",
    "create_registry_engine",
    "registry_session_factory",
    "RunTable",
    "ManagementStateTable",
]
