"""Engine and session factories."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def create_rotation_engine(url: str = "sqlite:///rotation.db", *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    In-memory SQLite (``sqlite://``) uses a single shared connection so that
    every session sees the same database.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs.setdefault("poolclass", StaticPool)
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return _sa_create_engine(url, echo=echo, **kwargs)


class RotationSession(Session):
    """Session with ``expire_on_commit=False`` to avoid lazy-load surprises after commit."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def rotation_session_factory(engine: Engine) -> sessionmaker[RotationSession]:
    return sessionmaker(bind=engine, class_=RotationSession, expire_on_commit=False)


def create_all(engine: Engine) -> None:
    """Create every table known to :class:`RotationBase` (idempotent)."""
    from rotation_spine.core.orm import tables  # noqa: F401
    from rotation_spine.core.orm.base import RotationBase

    RotationBase.metadata.create_all(engine)
