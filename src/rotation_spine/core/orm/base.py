"""Declarative base shared by every rotation-spine table."""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, DateTime, Float, Integer, Text
from sqlalchemy.orm import DeclarativeBase


class RotationBase(DeclarativeBase):
    """Shared declarative base.

    ``type_annotation_map`` lets Mapped columns use plain Python types:

    * ``str``   → ``Text``   (dates are stored as ISO-8601 text)
    * ``int``   → ``Integer``
    * ``float`` → ``Float``
    * ``bool``  → ``Integer``  (SQLite has no native BOOLEAN)
    * ``datetime.datetime`` → ``DateTime``
    * ``dict`` / ``list`` → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        bool: Integer,
        datetime.datetime: DateTime,
        dict: JSON,
        list: JSON,
    }
