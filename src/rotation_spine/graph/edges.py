"""
GraphEdgeBuilder: dump clusters → directed rotation edges.

Each cluster yields exactly one edge per (cluster_id, cusip).  The seller
is the cluster's holder; the counterparty is the filer with the largest
positive position change in the same cusip over the same or following
quarter (ties go to the lowest CIK).  When nobody in the 13F universe
took the shares up the edge points at the abstract ``market`` node.

Edge ids are derived from (cluster_id, cusip) and rows carry no wall-clock
fields, so rebuilding a quarter updates rows in place with identical
content.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from rotation_spine.core.hashing import edge_id_for, entity_id_for
from rotation_spine.core.logging import get_logger
from rotation_spine.core.store import RotationRepository
from rotation_spine.events.dump_detector import DumpCluster
from rotation_spine.scoring.composer import ScoreRecord
from rotation_spine.signals.flows import HolderDelta, QuarterFlows

logger = get_logger(__name__)

MARKET_NODE_ID = "market"
KIND_MANAGER = "manager"
KIND_MARKET = "market"


@dataclass(frozen=True, slots=True)
class RotationEdge:
    edge_id: str
    cluster_id: str
    cusip: str
    issuer_cik: str
    seller_id: str
    counterparty_id: str
    counterparty_kind: str
    period_start: date
    period_end: date
    anchor_date: date
    weight: float
    confidence: float
    equity_shares: float = 0.0
    options_shares: float = 0.0
    attrs: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict:
        return {
            "edge_id": self.edge_id,
            "cluster_id": self.cluster_id,
            "cusip": self.cusip,
            "issuer_cik": self.issuer_cik,
            "seller_id": self.seller_id,
            "counterparty_id": self.counterparty_id,
            "counterparty_kind": self.counterparty_kind,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "anchor_date": self.anchor_date.isoformat(),
            "weight": self.weight,
            "confidence": self.confidence,
            "equity_shares": self.equity_shares,
            "options_shares": self.options_shares,
            "attrs": dict(self.attrs),
        }


def best_counterparty(flows: QuarterFlows, cusip: str, seller_cik: str) -> HolderDelta | None:
    candidates = [
        d
        for d in (*flows.same, *flows.following)
        if d.cusip == cusip and d.holder_cik != seller_cik and d.delta > 0
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda d: (-d.delta, d.holder_cik))


class GraphEdgeBuilder:
    def build(self, cluster: DumpCluster, score: ScoreRecord, flows: QuarterFlows) -> RotationEdge:
        buyer = best_counterparty(flows, cluster.cusip, cluster.seller_cik) if cluster.cusip else None
        if buyer is None:
            counterparty_id, counterparty_kind = MARKET_NODE_ID, KIND_MARKET
            equity = cluster.shares_sold
            options = 0.0
            confidence = 0.0
        else:
            counterparty_id = entity_id_for(buyer.holder_cik, None, KIND_MANAGER)
            counterparty_kind = KIND_MANAGER
            equity = buyer.delta
            options = max(buyer.option_delta, 0.0)
            confidence = min(buyer.delta / cluster.shares_sold, 1.0) if cluster.shares_sold > 0 else 0.0

        return RotationEdge(
            edge_id=edge_id_for(cluster.cluster_id, cluster.cusip),
            cluster_id=cluster.cluster_id,
            cusip=cluster.cusip,
            issuer_cik=cluster.issuer_cik,
            seller_id=cluster.seller_entity_id,
            counterparty_id=counterparty_id,
            counterparty_kind=counterparty_kind,
            period_start=score.period_start,
            period_end=score.period_end,
            anchor_date=cluster.anchor_date,
            weight=score.composite,
            confidence=confidence,
            equity_shares=equity,
            options_shares=options,
            attrs={
                "period": cluster.period,
                "source": cluster.source,
                "dump_z": cluster.dump_z,
                "gated": score.gated,
                "seller_cik": cluster.seller_cik,
                "counterparty_cik": buyer.holder_cik if buyer is not None else None,
                "accessions": list(cluster.accessions),
            },
        )

    def store(self, repo: RotationRepository, edge: RotationEdge) -> None:
        """Upsert the edge and the manager entities it connects."""
        repo.upsert_entity(edge.attrs["seller_cik"], None, KIND_MANAGER)
        if edge.counterparty_kind == KIND_MANAGER:
            repo.upsert_entity(edge.attrs["counterparty_cik"], None, KIND_MANAGER)
        repo.put_edge(edge)
        logger.debug("graph.edge_upserted", edge_id=edge.edge_id, counterparty=edge.counterparty_kind)


__all__ = ["RotationEdge", "GraphEdgeBuilder", "best_counterparty", "MARKET_NODE_ID"]
