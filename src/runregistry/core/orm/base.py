"""Declarative base and type-map for the registry's ORM models.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map`` so
``Mapped`` columns can be declared with plain Python types.
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import DeclarativeBase


class RegistryBase(DeclarativeBase):
    """Shared declarative base for every registry table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``bool``  → ``Boolean``
    * ``datetime.datetime`` → ``DateTime`` (naive UTC)
    * ``dict``  → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Boolean,
        datetime.datetime: DateTime,
        dict: JSON,
    }
