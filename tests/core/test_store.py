"""
Tests for rotation_spine.core.store module.

Tests cover:
- Unit-of-work commit and rollback
- Forward-only cursors and operator reset
- Issuer upsert appending new CUSIPs without duplicates
- Idempotent entity and filing upserts
- Run checkpoint lifecycle (create, save, mark, cancel)
"""

from datetime import date

import pytest

from rotation_spine.core.errors import StorageError
from rotation_spine.core.orm.session import rotation_session_factory
from rotation_spine.core.store import RotationStore
from rotation_spine.signals.models import FilingRef, IssuerResolution, Submission


# =============================================================================
# Transactions
# =============================================================================


class TestUnitOfWork:
    def test_commit_persists(self, store):
        with store.unit_of_work() as repo:
            repo.advance_cursor("fanout", "AAPL", "2024-03-31")
        with store.unit_of_work() as repo:
            assert repo.get_cursor("fanout", "AAPL") == "2024-03-31"

    def test_error_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as repo:
                repo.advance_cursor("fanout", "AAPL", "2024-03-31")
                raise RuntimeError("boom")
        with store.unit_of_work() as repo:
            assert repo.get_cursor("fanout", "AAPL") is None

    def test_rows_readable_after_commit(self, store):
        with store.unit_of_work() as repo:
            repo.create_run("run-1", "fanout", "exec-1", {"state": {}}, "2024-07-01T12:00:00Z")
        with store.unit_of_work() as repo:
            run = repo.get_run("run-1")
        assert run.workflow == "fanout"
        assert run.execution_id == "exec-1"

    def test_session_factory_keeps_loaded_state(self, store):
        factory = rotation_session_factory(store.engine)
        assert factory.kw["expire_on_commit"] is False
        assert factory().expire_on_commit is False

    def test_from_url_creates_schema(self, tmp_path):
        db = tmp_path / "rotation.db"
        store = RotationStore.from_url(f"sqlite:///{db}")
        try:
            with store.unit_of_work() as repo:
                assert repo.count_edges() == 0
        finally:
            store.dispose()
        assert db.exists()


# =============================================================================
# Cursors
# =============================================================================


class TestCursors:
    def test_advance_forward(self, store):
        with store.unit_of_work() as repo:
            assert repo.advance_cursor("poller", "edgar", "2024-07-01T00:00:00Z") == "2024-07-01T00:00:00Z"
            assert repo.advance_cursor("poller", "edgar", "2024-07-02T00:00:00Z") == "2024-07-02T00:00:00Z"

    def test_advance_backward_is_noop(self, store):
        with store.unit_of_work() as repo:
            repo.advance_cursor("poller", "edgar", "2024-07-02T00:00:00Z")
            assert repo.advance_cursor("poller", "edgar", "2024-07-01T00:00:00Z") == "2024-07-02T00:00:00Z"
            assert repo.get_cursor("poller", "edgar") == "2024-07-02T00:00:00Z"

    def test_reset_moves_backward(self, store):
        with store.unit_of_work() as repo:
            repo.advance_cursor("poller", "edgar", "2024-07-02T00:00:00Z")
            repo.reset_cursor("poller", "edgar", "2024-01-01T00:00:00Z")
            assert repo.get_cursor("poller", "edgar") == "2024-01-01T00:00:00Z"

    def test_keys_are_independent(self, store):
        with store.unit_of_work() as repo:
            repo.advance_cursor("fanout", "AAPL", "2024-06-30")
            repo.advance_cursor("fanout", "MSFT", "2023-12-31")
            assert repo.get_cursor("fanout", "AAPL") == "2024-06-30"
            assert repo.get_cursor("fanout", "MSFT") == "2023-12-31"


# =============================================================================
# Issuers, entities, filings
# =============================================================================


class TestIssuersAndEntities:
    def test_upsert_issuer_appends_cusips(self, store):
        with store.unit_of_work() as repo:
            repo.upsert_issuer(IssuerResolution("0000320193", "aapl", "Apple Inc.", ("037833100",)))
        with store.unit_of_work() as repo:
            issuer = repo.upsert_issuer(IssuerResolution("0000320193", "AAPL", None, ("037833100", "037833AB6")))
        assert issuer.ticker == "AAPL"
        assert issuer.name == "Apple Inc."
        assert issuer.cusips == ("037833100", "037833AB6")

    def test_find_by_ticker(self, store):
        with store.unit_of_work() as repo:
            repo.upsert_issuer(IssuerResolution("0000320193", "AAPL"))
        with store.unit_of_work() as repo:
            assert repo.find_issuer_by_ticker("aapl").cik == "0000320193"
            assert repo.find_issuer_by_ticker("MSFT") is None

    def test_entity_upsert_is_idempotent(self, store):
        with store.unit_of_work() as repo:
            first = repo.upsert_entity("0000000001", None, "manager")
            second = repo.upsert_entity("0000000001", None, "manager", "Fund One")
            entities = repo.get_entities([first])
        assert first == second
        assert entities[first].name == "Fund One"

    def test_filings_upsert_once_per_accession(self, store):
        filing = FilingRef("0001-24-000001", "0000320193", "SC 13G", date(2024, 5, 10))
        with store.unit_of_work() as repo:
            repo.upsert_filings([filing])
        with store.unit_of_work() as repo:
            repo.upsert_filings([filing])
            assert repo.count_filings() == 1

    def test_submissions_tagged_as_poller(self, store):
        sub = Submission("sub-1", "0000000001", "13F-HR", "2024-07-01T11:50:00Z")
        with store.unit_of_work() as repo:
            assert repo.upsert_submissions([sub]) == 1
        with store.unit_of_work() as repo:
            assert repo.count_filings(source="poller") == 1
            assert repo.count_filings(source="fanout") == 0


# =============================================================================
# Run checkpoints
# =============================================================================


class TestRunCheckpoints:
    def _create(self, store):
        with store.unit_of_work() as repo:
            repo.create_run("run-1", "fanout", "exec-1", {"version": 1}, "2024-07-01T12:00:00Z")

    def test_create_is_pending(self, store):
        self._create(store)
        with store.unit_of_work() as repo:
            row = repo.get_run("run-1")
            assert row.status == "pending"
            assert row.sequence == 0

    def test_save_checkpoint_increments_sequence(self, store):
        self._create(store)
        with store.unit_of_work() as repo:
            assert repo.save_checkpoint("run-1", "exec-2", {"version": 1, "state": {"a": 1}}) == 1
            assert repo.save_checkpoint("run-1", "exec-3", {"version": 1, "state": {"a": 2}}) == 2
        with store.unit_of_work() as repo:
            row = repo.get_run("run-1")
            assert row.execution_id == "exec-3"
            assert row.payload["state"] == {"a": 2}
            assert row.status == "continued"

    def test_mark_and_cancel(self, store):
        self._create(store)
        with store.unit_of_work() as repo:
            repo.request_cancel("run-1")
            repo.mark_run("run-1", "failed", error={"message": "x"})
        with store.unit_of_work() as repo:
            assert repo.is_cancel_requested("run-1") is True
            assert repo.get_run("run-1").error == {"message": "x"}
            assert [r.run_id for r in repo.list_runs(status="failed")] == ["run-1"]

    def test_unknown_run(self, store):
        with pytest.raises(StorageError):
            with store.unit_of_work() as repo:
                repo.save_checkpoint("missing", "exec", {})
