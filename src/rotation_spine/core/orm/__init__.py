"""SQLAlchemy 2.0 ORM layer.

Modules
-------
base        RotationBase (declarative base with the type annotation map)
session     Engine factory, RotationSession, session factory, create_all
tables      Mapped table classes (IssuerTable, ScoreRecordTable, ...)
"""

from __future__ import annotations

from rotation_spine.core.orm.base import RotationBase
from rotation_spine.core.orm.session import (
    RotationSession,
    create_all,
    create_rotation_engine,
    rotation_session_factory,
)
from rotation_spine.core.orm.tables import *  # noqa: F401,F403
