"""
Neighborhood and path queries over persisted rotation edges.

The traversal is a bounded breadth-first walk over stored edges, never a
recomputation from filings:

* hop 1: edges of the root issuer whose anchor lies in ``[start, end]``
* hop k: edges inside the window whose seller is the counterparty reached
  at hop k-1 (the ``market`` node has no outgoing edges)

A path never revisits a node.  Paths are ranked by aggregate weight
(descending), then by length, then by earliest anchor date, then by edge
ids so the ordering is total.

Examples:
    >>> # with a populated store
    >>> # with store.unit_of_work() as repo:
    >>> #     result = resolve_neighborhood(repo, "AAPL", date(2024, 1, 1), date(2024, 12, 31), hops=2)
    >>> #     result["top_paths"][0]["edge_ids"]
"""

from __future__ import annotations

from datetime import date
from typing import Any

from rotation_spine.core.errors import InputError, ParseError
from rotation_spine.core.hashing import entity_id_for
from rotation_spine.core.logging import get_logger
from rotation_spine.core.orm.tables import RotationEdgeTable
from rotation_spine.core.settings import GraphSettings
from rotation_spine.core.store import RotationRepository
from rotation_spine.graph.edges import MARKET_NODE_ID
from rotation_spine.signals.models import IssuerResolution
from rotation_spine.signals.normalize import normalize_cik

logger = get_logger(__name__)

# Paths kept per hop before extending further
MAX_FRONTIER = 5000

Path = tuple[RotationEdgeTable, ...]


def resolve_root(repo: RotationRepository, ticker_or_cik: str) -> IssuerResolution:
    """Look up a stored issuer by CIK (all digits) or ticker."""
    text = (ticker_or_cik or "").strip()
    if not text:
        raise InputError("ticker or CIK is required", field_name="ticker_or_cik")
    if text.isdigit():
        try:
            issuer = repo.get_issuer(normalize_cik(text))
        except ParseError as exc:
            raise InputError(f"Invalid CIK: {text!r}", field_name="ticker_or_cik", cause=exc) from exc
    else:
        issuer = repo.find_issuer_by_ticker(text)
    if issuer is None:
        raise InputError(f"Unknown issuer: {text!r}", field_name="ticker_or_cik")
    return issuer


def edge_to_dict(edge: RotationEdgeTable) -> dict[str, Any]:
    return {
        "edge_id": edge.edge_id,
        "cluster_id": edge.cluster_id,
        "cusip": edge.cusip,
        "issuer_cik": edge.issuer_cik,
        "seller_id": edge.seller_id,
        "counterparty_id": edge.counterparty_id,
        "counterparty_kind": edge.counterparty_kind,
        "period_start": edge.period_start,
        "period_end": edge.period_end,
        "anchor_date": edge.anchor_date,
        "weight": edge.weight,
        "confidence": edge.confidence,
        "equity_shares": edge.equity_shares,
        "options_shares": edge.options_shares,
        "attrs": dict(edge.attrs or {}),
    }


def path_rank(path: Path) -> tuple:
    return (
        -sum(e.weight for e in path),
        len(path),
        min(e.anchor_date for e in path),
        tuple(e.edge_id for e in path),
    )


def _visited(path: Path) -> set[str]:
    nodes = {path[0].seller_id}
    nodes.update(e.counterparty_id for e in path)
    return nodes


def walk_paths(repo: RotationRepository, issuer_cik: str, start: str, end: str, hops: int) -> list[Path]:
    """Every simple path of 1..hops edges from the issuer's edges, unranked."""
    frontier: list[Path] = [(e,) for e in repo.list_edges(start, end, issuer_cik=issuer_cik)]
    paths = list(frontier)
    for _ in range(hops - 1):
        sellers = {p[-1].counterparty_id for p in frontier if p[-1].counterparty_id != MARKET_NODE_ID}
        if not sellers:
            break
        by_seller: dict[str, list[RotationEdgeTable]] = {}
        for edge in repo.list_edges(start, end, seller_ids=sellers):
            by_seller.setdefault(edge.seller_id, []).append(edge)

        extended: list[Path] = []
        for path in frontier:
            seen = _visited(path)
            for edge in by_seller.get(path[-1].counterparty_id, ()):
                if edge.counterparty_id in seen:
                    continue
                extended.append((*path, edge))
        if len(extended) > MAX_FRONTIER:
            logger.warning("graph.frontier_truncated", issuer=issuer_cik, size=len(extended), kept=MAX_FRONTIER)
            extended = sorted(extended, key=path_rank)[:MAX_FRONTIER]
        paths.extend(extended)
        frontier = extended
    return paths


def resolve_neighborhood(
    repo: RotationRepository,
    ticker_or_cik: str,
    start: date,
    end: date,
    hops: int = 1,
    settings: GraphSettings | None = None,
) -> dict[str, Any]:
    settings = settings or GraphSettings()
    if end < start:
        raise InputError(f"Invalid window: {start} > {end}", field_name="window")
    if not 1 <= hops <= settings.max_hops:
        raise InputError(f"hops must be between 1 and {settings.max_hops}, got {hops}", field_name="hops")

    issuer = resolve_root(repo, ticker_or_cik)
    paths = walk_paths(repo, issuer.cik, start.isoformat(), end.isoformat(), hops)

    edges: dict[str, RotationEdgeTable] = {}
    for path in paths:
        for edge in path:
            edges[edge.edge_id] = edge

    issuer_node = entity_id_for(issuer.cik, issuer.series_id, "issuer")
    node_ids = {issuer_node}
    for edge in edges.values():
        node_ids.add(edge.seller_id)
        node_ids.add(edge.counterparty_id)
    entities = repo.get_entities(node_ids - {MARKET_NODE_ID})

    nodes = []
    for node_id in sorted(node_ids):
        if node_id == MARKET_NODE_ID:
            nodes.append({"id": MARKET_NODE_ID, "kind": "market", "cik": None, "name": "Market"})
            continue
        entity = entities.get(node_id)
        nodes.append(
            {
                "id": node_id,
                "kind": entity.kind if entity is not None else "manager",
                "cik": entity.cik if entity is not None else None,
                "name": entity.name if entity is not None else None,
            }
        )

    ranked = sorted(paths, key=path_rank)[: settings.top_paths]
    top_paths = [
        {
            "edge_ids": [e.edge_id for e in path],
            "nodes": [path[0].seller_id, *(e.counterparty_id for e in path)],
            "weight": sum(e.weight for e in path),
            "length": len(path),
            "anchor_date": min(e.anchor_date for e in path),
        }
        for path in ranked
    ]
    logger.info(
        "graph.neighborhood", issuer=issuer.cik, hops=hops, edges=len(edges), paths=len(paths), nodes=len(nodes)
    )
    return {
        "issuer": {"cik": issuer.cik, "ticker": issuer.ticker, "name": issuer.name, "node_id": issuer_node},
        "nodes": nodes,
        "edges": [edge_to_dict(edges[k]) for k in sorted(edges)],
        "top_paths": top_paths,
    }


__all__ = ["resolve_root", "resolve_neighborhood", "walk_paths", "path_rank", "edge_to_dict"]
