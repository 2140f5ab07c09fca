"""
Tests for rotation_spine.core.checkpoint module.

Tests cover:
- Envelope shape (version, workflow, state)
- JSON normalisation of state at write time
- Version and workflow mismatch on decode
"""

from datetime import date

import pytest

from rotation_spine.core.checkpoint import CHECKPOINT_VERSION, decode_checkpoint, encode_checkpoint
from rotation_spine.core.errors import CheckpointVersionError, InputError


class TestEncodeCheckpoint:
    def test_envelope(self):
        record = encode_checkpoint("fanout", {"ticker": "AAPL", "iteration": 2})
        assert record == {
            "version": CHECKPOINT_VERSION,
            "workflow": "fanout",
            "state": {"iteration": 2, "ticker": "AAPL"},
        }

    def test_tuples_become_lists(self):
        record = encode_checkpoint("fanout", {"cusips": ("037833100",)})
        assert record["state"]["cusips"] == ["037833100"]

    def test_unserialisable_state_is_rejected(self):
        with pytest.raises(InputError):
            encode_checkpoint("fanout", {"from": date(2024, 1, 1)})


class TestDecodeCheckpoint:
    def test_round_trip(self):
        state = {"ticker": "AAPL", "totals": {"quarters": 3}}
        assert decode_checkpoint(encode_checkpoint("fanout", state), workflow="fanout") == state

    def test_wrong_version(self):
        with pytest.raises(CheckpointVersionError):
            decode_checkpoint({"version": 99, "workflow": "fanout", "state": {}})

    def test_missing_version(self):
        with pytest.raises(CheckpointVersionError):
            decode_checkpoint({"workflow": "fanout", "state": {}})

    def test_wrong_workflow(self):
        record = encode_checkpoint("fanout", {})
        with pytest.raises(CheckpointVersionError) as exc_info:
            decode_checkpoint(record, workflow="cursor_poller")
        assert exc_info.value.context.workflow == "cursor_poller"

    def test_decode_returns_copy(self):
        record = encode_checkpoint("fanout", {"a": 1})
        state = decode_checkpoint(record)
        state["a"] = 2
        assert record["state"]["a"] == 1
