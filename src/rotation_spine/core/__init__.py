"""Rotation Spine core: errors, logging, settings, identifiers, calendar and storage.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (RotationError, TransientError)
        timestamps.py      ULID generation, cursor formatting
        hashing.py         Deterministic ids for clusters, edges and entities

    Layer 2 -- Configuration & Logging
        settings.py        RotationSettings (pydantic-settings)
        logging.py         structlog configuration and LogContext

    Layer 3 -- Storage
        orm/               SQLAlchemy 2.0 tables
        store.py           RotationStore / RotationRepository (upserts, cursors, runs)
        checkpoint.py      Versioned checkpoint envelope

    Layer 4 -- Calendar
        quarters.py        Quarter partitioning and schedule helpers
"""
