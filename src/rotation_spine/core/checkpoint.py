"""
Versioned checkpoint records.

A run's whole resumable state is a small JSON-able dict wrapped in an
envelope that names the workflow and the record version.  The runner
writes one of these at every continuation and reads it back on resume;
nothing else survives between executions.

Examples:
    >>> record = encode_checkpoint("fanout", {"ticker": "AAPL"})
    >>> record["version"]
    1
    >>> decode_checkpoint(record, workflow="fanout")
    {'ticker': 'AAPL'}
"""

from __future__ import annotations

import json
from typing import Any

from rotation_spine.core.errors import CheckpointVersionError, InputError

CHECKPOINT_VERSION = 1


def encode_checkpoint(workflow: str, state: dict[str, Any]) -> dict[str, Any]:
    """Wrap *state* in a versioned envelope.

    The state is round-tripped through JSON so that anything not
    serialisable fails here, at write time, rather than on resume.
    """
    try:
        normalized = json.loads(json.dumps(state, sort_keys=True))
    except (TypeError, ValueError) as exc:
        raise InputError(f"Checkpoint state for {workflow} is not JSON-serialisable: {exc}") from exc
    return {"version": CHECKPOINT_VERSION, "workflow": workflow, "state": normalized}


def decode_checkpoint(record: dict[str, Any], *, workflow: str | None = None) -> dict[str, Any]:
    version = record.get("version")
    if version != CHECKPOINT_VERSION:
        raise CheckpointVersionError(version, CHECKPOINT_VERSION)
    if workflow is not None and record.get("workflow") != workflow:
        raise CheckpointVersionError(record.get("workflow"), CHECKPOINT_VERSION).with_context(workflow=workflow)
    return dict(record.get("state") or {})


__all__ = ["CHECKPOINT_VERSION", "encode_checkpoint", "decode_checkpoint"]
