"""
Persistent store.

Manifesto:
    The store is the single source of truth shared by every run.  Every
    write is an upsert keyed by natural identity, so a retried or re-run
    unit of work lands on the rows it wrote the first time instead of
    appending duplicates.

    - **One transaction per unit of work:** ``unit_of_work()`` commits the
      whole sub-range or nothing
    - **Forward-only cursors:** ``advance_cursor`` never moves backward;
      only ``reset_cursor`` (operator action) can
    - **Domain in, rows out:** callers hand over domain dataclasses that
      expose ``to_row()``; the repository never builds them itself

Architecture:
    ::

        RotationStore(engine)
            │
            ├── unit_of_work()  ──►  RotationRepository(session)
            │                          upsert_issuer / upsert_entity
            │                          upsert_filings / put_signal_bundle
            │                          put_score / put_clusters / put_event_study
            │                          put_edge / put_explanation
            │                          get_cursor / advance_cursor / reset_cursor
            │                          create_run / save_checkpoint / mark_run
            │
            └── RotationBase.metadata (tables.py)

Examples:
    >>> store = RotationStore.from_url("sqlite://")
    >>> with store.unit_of_work() as repo:
    ...     repo.advance_cursor("fanout", "AAPL", "2024-03-31T00:00:00Z")
    '2024-03-31T00:00:00Z'

Tags:
    persistence, upsert, sqlalchemy, unit-of-work, rotation-spine
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rotation_spine.core.errors import StorageError
from rotation_spine.core.hashing import entity_id_for
from rotation_spine.core.logging import get_logger
from rotation_spine.core.orm.session import create_all, create_rotation_engine, rotation_session_factory
from rotation_spine.core.orm.tables import (
    DumpClusterTable,
    EntityTable,
    EventStudyTable,
    ExplanationTable,
    FilingTable,
    IngestionCursorTable,
    IssuerTable,
    RotationEdgeTable,
    RunCheckpointTable,
    ScoreRecordTable,
    SignalBundleTable,
)
from rotation_spine.signals.models import FilingRef, IssuerResolution, Submission

logger = get_logger(__name__)


class RotationRepository:
    """Data access for one session.  Obtain through :meth:`RotationStore.unit_of_work`."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # -- issuers & entities ----------------------------------------------------

    def get_issuer(self, cik: str) -> IssuerResolution | None:
        row = self.session.get(IssuerTable, cik)
        return _issuer_from_row(row) if row is not None else None

    def find_issuer_by_ticker(self, ticker: str) -> IssuerResolution | None:
        row = self.session.scalars(
            select(IssuerTable).where(IssuerTable.ticker == ticker.upper()).order_by(IssuerTable.cik)
        ).first()
        return _issuer_from_row(row) if row is not None else None

    def upsert_issuer(self, issuer: IssuerResolution) -> IssuerResolution:
        """Insert the issuer, or append newly seen CUSIPs to the existing row."""
        row = self.session.get(IssuerTable, issuer.cik)
        if row is None:
            row = IssuerTable(
                cik=issuer.cik,
                ticker=issuer.ticker.upper(),
                series_id=issuer.series_id,
                name=issuer.name,
                cusips=list(dict.fromkeys(issuer.cusips)),
            )
            self.session.add(row)
        else:
            known = list(row.cusips or [])
            merged = known + [c for c in issuer.cusips if c not in known]
            if merged != known:
                row.cusips = merged
            if row.name is None and issuer.name:
                row.name = issuer.name
        self.session.flush()
        self.upsert_entity(issuer.cik, issuer.series_id, "issuer", issuer.name)
        return _issuer_from_row(row)

    def upsert_entity(self, cik: str, series_id: str | None, kind: str, name: str | None = None) -> str:
        """Upsert an entity and return its deterministic id."""
        entity_id = entity_id_for(cik, series_id, kind)
        row = self.session.get(EntityTable, entity_id)
        if row is None:
            self.session.add(
                EntityTable(entity_id=entity_id, cik=cik, series_id=series_id or "", kind=kind, name=name)
            )
            self.session.flush()
        elif name and not row.name:
            row.name = name
        return entity_id

    def get_entities(self, entity_ids: Iterable[str]) -> dict[str, EntityTable]:
        ids = sorted(set(entity_ids))
        if not ids:
            return {}
        rows = self.session.scalars(select(EntityTable).where(EntityTable.entity_id.in_(ids)))
        return {row.entity_id: row for row in rows}

    # -- filings -----------------------------------------------------------------

    def upsert_filings(self, filings: Iterable[FilingRef], source: str = "fanout") -> int:
        count = 0
        for filing in filings:
            self.session.merge(
                FilingTable(
                    accession=filing.accession,
                    cik=filing.cik,
                    form=filing.form,
                    filed_date=filing.filed_date.isoformat(),
                    period_end=filing.period_end.isoformat() if filing.period_end else None,
                    company_name=filing.company_name,
                    source=source,
                )
            )
            count += 1
        return count

    def upsert_submissions(self, submissions: Iterable[Submission]) -> int:
        count = 0
        for sub in submissions:
            self.session.merge(
                FilingTable(
                    accession=sub.accession,
                    cik=sub.cik,
                    form=sub.form,
                    filed_date=sub.filed_at[:10],
                    company_name=sub.company_name,
                    source="poller",
                )
            )
            count += 1
        return count

    def count_filings(self, source: str | None = None) -> int:
        stmt = select(FilingTable.accession)
        if source is not None:
            stmt = stmt.where(FilingTable.source == source)
        return len(self.session.scalars(stmt).all())

    # -- per-quarter artifacts ---------------------------------------------------

    def put_signal_bundle(self, bundle: Any) -> None:
        self.session.merge(SignalBundleTable(**bundle.to_row()))

    def get_signal_bundle(self, issuer_cik: str, period: str) -> SignalBundleTable | None:
        return self.session.get(SignalBundleTable, (issuer_cik, period))

    def put_score(self, record: Any) -> None:
        self.session.merge(ScoreRecordTable(**record.to_row()))

    def get_score(self, issuer_cik: str, period: str) -> ScoreRecordTable | None:
        return self.session.get(ScoreRecordTable, (issuer_cik, period))

    def list_scores(self, issuer_cik: str, start: str | None = None, end: str | None = None) -> list[ScoreRecordTable]:
        stmt = select(ScoreRecordTable).where(ScoreRecordTable.issuer_cik == issuer_cik)
        if start is not None:
            stmt = stmt.where(ScoreRecordTable.period_end >= start)
        if end is not None:
            stmt = stmt.where(ScoreRecordTable.period_start <= end)
        return list(self.session.scalars(stmt.order_by(ScoreRecordTable.period)))

    def is_period_committed(self, issuer_cik: str, period: str, start: str, end: str) -> bool:
        """True when a score already covers ``[start, end]`` of *period*."""
        row = self.get_score(issuer_cik, period)
        return row is not None and row.period_start <= start and row.period_end >= end

    def put_clusters(self, clusters: Iterable[Any], composites: dict[str, float] | None = None) -> int:
        composites = composites or {}
        count = 0
        for cluster in clusters:
            row = cluster.to_row(composite=composites.get(cluster.cluster_id, 0.0))
            self.session.merge(DumpClusterTable(**row))
            count += 1
        return count

    def get_clusters(self, cluster_ids: Iterable[str]) -> dict[str, DumpClusterTable]:
        ids = sorted(set(cluster_ids))
        if not ids:
            return {}
        rows = self.session.scalars(select(DumpClusterTable).where(DumpClusterTable.cluster_id.in_(ids)))
        return {row.cluster_id: row for row in rows}

    def list_clusters(self, issuer_cik: str, period: str) -> list[DumpClusterTable]:
        stmt = (
            select(DumpClusterTable)
            .where(DumpClusterTable.issuer_cik == issuer_cik, DumpClusterTable.period == period)
            .order_by(DumpClusterTable.anchor_date, DumpClusterTable.cluster_id)
        )
        return list(self.session.scalars(stmt))

    def put_event_study(self, result: Any) -> None:
        self.session.merge(EventStudyTable(**result.to_row()))

    def list_event_studies(self, cluster_id: str) -> list[EventStudyTable]:
        stmt = select(EventStudyTable).where(EventStudyTable.cluster_id == cluster_id).order_by(EventStudyTable.signal)
        return list(self.session.scalars(stmt))

    # -- graph -------------------------------------------------------------------

    def put_edge(self, edge: Any) -> None:
        self.session.merge(RotationEdgeTable(**edge.to_row()))

    def get_edges(self, edge_ids: Iterable[str]) -> list[RotationEdgeTable]:
        ids = sorted(set(edge_ids))
        if not ids:
            return []
        stmt = select(RotationEdgeTable).where(RotationEdgeTable.edge_id.in_(ids)).order_by(RotationEdgeTable.edge_id)
        return list(self.session.scalars(stmt))

    def list_edges(
        self,
        start: str,
        end: str,
        *,
        issuer_cik: str | None = None,
        seller_ids: Iterable[str] | None = None,
    ) -> list[RotationEdgeTable]:
        """Edges whose anchor falls in ``[start, end]``, optionally filtered."""
        stmt = select(RotationEdgeTable).where(
            RotationEdgeTable.anchor_date >= start, RotationEdgeTable.anchor_date <= end
        )
        if issuer_cik is not None:
            stmt = stmt.where(RotationEdgeTable.issuer_cik == issuer_cik)
        if seller_ids is not None:
            ids = sorted(set(seller_ids))
            if not ids:
                return []
            stmt = stmt.where(or_(*[RotationEdgeTable.seller_id == sid for sid in ids]))
        return list(self.session.scalars(stmt.order_by(RotationEdgeTable.edge_id)))

    def count_edges(self) -> int:
        return len(self.session.scalars(select(RotationEdgeTable.edge_id)).all())

    def put_explanation(self, explanation: Any) -> None:
        self.session.merge(ExplanationTable(**explanation.to_row()))

    # -- cursors -----------------------------------------------------------------

    def get_cursor(self, pipeline: str, key: str) -> str | None:
        row = self.session.get(IngestionCursorTable, (pipeline, key))
        return row.high_water if row is not None else None

    def advance_cursor(self, pipeline: str, key: str, high_water: str, meta: dict[str, Any] | None = None) -> str:
        """Move the cursor forward (forward-only).

        A value lexicographically ≤ the stored one is a no-op; the stored
        value is returned either way.
        """
        row = self.session.get(IngestionCursorTable, (pipeline, key))
        if row is None:
            self.session.add(IngestionCursorTable(pipeline=pipeline, key=key, high_water=high_water, meta=meta or {}))
            self.session.flush()
            return high_water
        if high_water <= row.high_water:
            return row.high_water
        row.high_water = high_water
        if meta:
            row.meta = {**(row.meta or {}), **meta}
        return high_water

    def reset_cursor(self, pipeline: str, key: str, high_water: str) -> str:
        """Operator reset: set the cursor even if it moves backward."""
        row = self.session.get(IngestionCursorTable, (pipeline, key))
        if row is None:
            self.session.add(IngestionCursorTable(pipeline=pipeline, key=key, high_water=high_water, meta={}))
        else:
            row.high_water = high_water
        self.session.flush()
        logger.warning("cursor.reset", pipeline=pipeline, key=key, high_water=high_water)
        return high_water

    # -- run checkpoints -----------------------------------------------------------

    def create_run(self, run_id: str, workflow: str, execution_id: str, payload: dict, started_at: str) -> None:
        self.session.add(
            RunCheckpointTable(
                run_id=run_id,
                workflow=workflow,
                execution_id=execution_id,
                sequence=0,
                payload=payload,
                status="pending",
                started_at=started_at,
            )
        )
        self.session.flush()

    def get_run(self, run_id: str) -> RunCheckpointTable | None:
        return self.session.get(RunCheckpointTable, run_id)

    def save_checkpoint(self, run_id: str, execution_id: str, payload: dict) -> int:
        """Overwrite the run's checkpoint and return the new sequence number."""
        row = self._require_run(run_id)
        row.sequence = row.sequence + 1
        row.execution_id = execution_id
        row.payload = payload
        row.status = "continued"
        row.error = None
        return row.sequence

    def mark_run(
        self,
        run_id: str,
        status: str,
        *,
        execution_id: str | None = None,
        error: dict | None = None,
        result: dict | None = None,
    ) -> None:
        row = self._require_run(run_id)
        row.status = status
        if execution_id is not None:
            row.execution_id = execution_id
        row.error = error
        if result is not None:
            row.result = result

    def request_cancel(self, run_id: str) -> None:
        self._require_run(run_id).cancel_requested = True

    def is_cancel_requested(self, run_id: str) -> bool:
        row = self.get_run(run_id)
        return bool(row is not None and row.cancel_requested)

    def list_runs(self, status: str | None = None) -> list[RunCheckpointTable]:
        stmt = select(RunCheckpointTable)
        if status is not None:
            stmt = stmt.where(RunCheckpointTable.status == status)
        return list(self.session.scalars(stmt.order_by(RunCheckpointTable.started_at, RunCheckpointTable.run_id)))

    def _require_run(self, run_id: str) -> RunCheckpointTable:
        row = self.get_run(run_id)
        if row is None:
            raise StorageError(f"Run not found: {run_id}").with_context(run_id=run_id)
        return row


class RotationStore:
    """Engine owner and transaction boundary."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._factory = rotation_session_factory(engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False, create: bool = True) -> RotationStore:
        store = cls(create_rotation_engine(url, echo=echo))
        if create:
            store.create_schema()
        return store

    def create_schema(self) -> None:
        create_all(self.engine)

    @contextmanager
    def unit_of_work(self) -> Iterator[RotationRepository]:
        """Yield a repository; commit on success, roll back on any error."""
        session = self._factory()
        try:
            yield RotationRepository(session)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Store transaction failed: {exc}", cause=exc) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _issuer_from_row(row: IssuerTable) -> IssuerResolution:
    return IssuerResolution(
        cik=row.cik,
        ticker=row.ticker,
        name=row.name,
        cusips=tuple(row.cusips or ()),
        series_id=row.series_id,
    )


__all__ = ["RotationRepository", "RotationStore"]
