"""
ORM table definitions.

Primary keys are the natural identities the pipeline upserts on:
(issuer_cik, period) for bundles and scores, cluster_id for clusters,
edge_id = hash(cluster_id, cusip) for edges, (pipeline, key) for cursors.
Score and edge rows carry no wall-clock columns so that recomputing a
quarter from identical inputs rewrites identical rows.
"""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Index, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from rotation_spine.core.orm.base import RotationBase


class IssuerTable(RotationBase):
    __tablename__ = "issuers"

    cik: Mapped[str] = mapped_column(Text, primary_key=True)
    ticker: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    series_id: Mapped[str | None] = mapped_column(Text)
    name: Mapped[str | None] = mapped_column(Text)
    cusips: Mapped[list] = mapped_column(default=list)


class EntityTable(RotationBase):
    __tablename__ = "entities"
    __table_args__ = (UniqueConstraint("cik", "series_id", "kind", name="uq_entities_identity"),)

    entity_id: Mapped[str] = mapped_column(Text, primary_key=True)
    cik: Mapped[str] = mapped_column(Text, nullable=False)
    series_id: Mapped[str] = mapped_column(Text, nullable=False, default="")
    kind: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text)


class FilingTable(RotationBase):
    __tablename__ = "filings"

    accession: Mapped[str] = mapped_column(Text, primary_key=True)
    cik: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    form: Mapped[str] = mapped_column(Text, nullable=False)
    filed_date: Mapped[str] = mapped_column(Text, nullable=False)
    period_end: Mapped[str | None] = mapped_column(Text)
    company_name: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(Text, nullable=False, default="fanout")


class SignalBundleTable(RotationBase):
    __tablename__ = "signal_bundles"

    issuer_cik: Mapped[str] = mapped_column(Text, primary_key=True)
    period: Mapped[str] = mapped_column(Text, primary_key=True)
    period_start: Mapped[str] = mapped_column(Text, nullable=False)
    period_end: Mapped[str] = mapped_column(Text, nullable=False)
    holdings_delta: Mapped[float] = mapped_column(default=0.0)
    dumped_shares: Mapped[float] = mapped_column(default=0.0)
    positive_same: Mapped[float] = mapped_column(default=0.0)
    positive_next: Mapped[float] = mapped_column(default=0.0)
    short_interest_level: Mapped[float | None] = mapped_column()
    ats_weekly_volume: Mapped[float] = mapped_column(default=0.0)
    options_overlay: Mapped[float] = mapped_column(default=0.0)
    uhf_overlay: Mapped[float] = mapped_column(default=0.0)
    filings_count: Mapped[int] = mapped_column(default=0)
    positions_count: Mapped[int] = mapped_column(default=0)
    content_hash: Mapped[str] = mapped_column(Text, nullable=False)


class ScoreRecordTable(RotationBase):
    __tablename__ = "score_records"

    issuer_cik: Mapped[str] = mapped_column(Text, primary_key=True)
    period: Mapped[str] = mapped_column(Text, primary_key=True)
    ticker: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    period_start: Mapped[str] = mapped_column(Text, nullable=False)
    period_end: Mapped[str] = mapped_column(Text, nullable=False)
    cluster_id: Mapped[str | None] = mapped_column(Text)
    anchor_date: Mapped[str | None] = mapped_column(Text)
    composite: Mapped[float] = mapped_column(default=0.0)
    raw_score: Mapped[float] = mapped_column(default=0.0)
    gated: Mapped[bool] = mapped_column(default=False)
    dump_z: Mapped[float] = mapped_column(default=0.0)
    u_same: Mapped[float] = mapped_column(default=0.0)
    u_next: Mapped[float] = mapped_column(default=0.0)
    uhf_same: Mapped[float] = mapped_column(default=0.0)
    uhf_next: Mapped[float] = mapped_column(default=0.0)
    opt_same: Mapped[float] = mapped_column(default=0.0)
    opt_next: Mapped[float] = mapped_column(default=0.0)
    short_relief: Mapped[float] = mapped_column(default=0.0)
    index_penalty: Mapped[float] = mapped_column(default=0.0)
    options_flow: Mapped[float] = mapped_column(default=0.0)
    passive_share: Mapped[float] = mapped_column(default=0.0)
    eow: Mapped[bool] = mapped_column(default=False)
    cluster_count: Mapped[int] = mapped_column(default=0)


class DumpClusterTable(RotationBase):
    __tablename__ = "dump_clusters"
    __table_args__ = (Index("ix_dump_clusters_issuer_period", "issuer_cik", "period"),)

    cluster_id: Mapped[str] = mapped_column(Text, primary_key=True)
    issuer_cik: Mapped[str] = mapped_column(Text, nullable=False)
    period: Mapped[str] = mapped_column(Text, nullable=False)
    seller_entity_id: Mapped[str] = mapped_column(Text, nullable=False)
    seller_cik: Mapped[str] = mapped_column(Text, nullable=False)
    cusip: Mapped[str] = mapped_column(Text, nullable=False)
    anchor_date: Mapped[str] = mapped_column(Text, nullable=False)
    delta: Mapped[float] = mapped_column(nullable=False)
    pre_mean: Mapped[float] = mapped_column(nullable=False)
    pre_length: Mapped[int] = mapped_column(nullable=False)
    post_value: Mapped[float] = mapped_column(nullable=False)
    dump_z: Mapped[float] = mapped_column(default=0.0)
    shares_sold: Mapped[float] = mapped_column(default=0.0)
    source: Mapped[str] = mapped_column(Text, nullable=False, default="holdings")
    composite: Mapped[float] = mapped_column(default=0.0)
    accessions: Mapped[list] = mapped_column(default=list)


class EventStudyTable(RotationBase):
    __tablename__ = "event_studies"

    cluster_id: Mapped[str] = mapped_column(Text, primary_key=True)
    signal: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    pre_mean: Mapped[float | None] = mapped_column()
    post_mean: Mapped[float | None] = mapped_column()
    pre_count: Mapped[int] = mapped_column(default=0)
    post_count: Mapped[int] = mapped_column(default=0)
    change: Mapped[float | None] = mapped_column()
    metrics: Mapped[dict] = mapped_column(default=dict)


class RotationEdgeTable(RotationBase):
    __tablename__ = "rotation_edges"
    __table_args__ = (
        UniqueConstraint("cluster_id", "cusip", name="uq_rotation_edges_cluster_cusip"),
        Index("ix_rotation_edges_period", "period_start", "period_end"),
        Index("ix_rotation_edges_issuer", "issuer_cik", "period_start"),
    )

    edge_id: Mapped[str] = mapped_column(Text, primary_key=True)
    cluster_id: Mapped[str] = mapped_column(Text, nullable=False)
    cusip: Mapped[str] = mapped_column(Text, nullable=False)
    issuer_cik: Mapped[str] = mapped_column(Text, nullable=False)
    seller_id: Mapped[str] = mapped_column(Text, nullable=False)
    counterparty_id: Mapped[str] = mapped_column(Text, nullable=False)
    counterparty_kind: Mapped[str] = mapped_column(Text, nullable=False)
    period_start: Mapped[str] = mapped_column(Text, nullable=False)
    period_end: Mapped[str] = mapped_column(Text, nullable=False)
    anchor_date: Mapped[str] = mapped_column(Text, nullable=False)
    weight: Mapped[float] = mapped_column(default=0.0)
    confidence: Mapped[float] = mapped_column(default=0.0)
    equity_shares: Mapped[float] = mapped_column(default=0.0)
    options_shares: Mapped[float] = mapped_column(default=0.0)
    attrs: Mapped[dict] = mapped_column(default=dict)


class IngestionCursorTable(RotationBase):
    __tablename__ = "ingestion_cursors"

    pipeline: Mapped[str] = mapped_column(Text, primary_key=True)
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    high_water: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict] = mapped_column(default=dict)


class RunCheckpointTable(RotationBase):
    __tablename__ = "run_checkpoints"

    run_id: Mapped[str] = mapped_column(Text, primary_key=True)
    workflow: Mapped[str] = mapped_column(Text, nullable=False)
    execution_id: Mapped[str] = mapped_column(Text, nullable=False)
    sequence: Mapped[int] = mapped_column(default=0)
    payload: Mapped[dict] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    error: Mapped[dict | None] = mapped_column()
    result: Mapped[dict | None] = mapped_column()
    cancel_requested: Mapped[bool] = mapped_column(default=False)
    started_at: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.current_timestamp(), onupdate=func.current_timestamp()
    )


class ExplanationTable(RotationBase):
    __tablename__ = "explanations"

    explanation_id: Mapped[str] = mapped_column(Text, primary_key=True)
    edge_ids: Mapped[list] = mapped_column(nullable=False)
    question: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    accessions: Mapped[list] = mapped_column(default=list)
    synthesizer: Mapped[str] = mapped_column(Text, nullable=False)


__all__ = [
    "IssuerTable",
    "EntityTable",
    "FilingTable",
    "SignalBundleTable",
    "ScoreRecordTable",
    "DumpClusterTable",
    "EventStudyTable",
    "RotationEdgeTable",
    "IngestionCursorTable",
    "RunCheckpointTable",
    "ExplanationTable",
]
