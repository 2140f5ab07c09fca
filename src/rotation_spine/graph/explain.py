"""
Explanation surface for rotation edges.

``explain_edges`` validates the requested edge ids, gathers each edge with
its dump cluster, the period's score breakdown and the filing accessions
behind it, and hands that bundle to a synthesizer.  Synthesizers are
chosen by tag from ``settings.llm.kind`` when the surface is built:

    ==========  ==================================================
    kind        implementation
    ==========  ==================================================
    template    deterministic text rendered from the bundle
    openai      chat completions endpoint over httpx
    ==========  ==================================================

An unknown kind raises :class:`UnsupportedProviderError`; there is no
silent fallback.  The explanation id is a hash of the sorted edge ids and
the question, so asking the same thing twice overwrites one row.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import httpx

from rotation_spine.core.errors import ConfigError, InputError, ParseError, UnsupportedProviderError
from rotation_spine.core.hashing import compute_hash
from rotation_spine.core.logging import get_logger
from rotation_spine.core.settings import LlmSettings
from rotation_spine.core.store import RotationRepository
from rotation_spine.execution.rate_limit import TokenBucketLimiter
from rotation_spine.graph.paths import edge_to_dict
from rotation_spine.signals.http import HttpSource

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You explain institutional ownership rotations. Be factual, cite filing accessions "
    "where given, and say when the evidence is thin."
)


class LlmKind(str, Enum):
    TEMPLATE = "template"
    OPENAI = "openai"


@dataclass(frozen=True)
class ExplanationContext:
    edges: list[dict[str, Any]]
    clusters: dict[str, dict[str, Any]]
    scores: dict[str, dict[str, Any]]
    accessions: list[str]


@dataclass(frozen=True)
class Explanation:
    explanation_id: str
    edge_ids: list[str]
    question: str | None
    content: str
    accessions: list[str] = field(default_factory=list)
    synthesizer: str = LlmKind.TEMPLATE.value

    def to_row(self) -> dict:
        return {
            "explanation_id": self.explanation_id,
            "edge_ids": list(self.edge_ids),
            "question": self.question,
            "content": self.content,
            "accessions": list(self.accessions),
            "synthesizer": self.synthesizer,
        }


class Synthesizer(Protocol):
    name: str

    def synthesize(self, context: ExplanationContext, question: str | None) -> str: ...


class TemplateSynthesizer:
    name = LlmKind.TEMPLATE.value

    def synthesize(self, context: ExplanationContext, question: str | None) -> str:
        lines = []
        if question:
            lines.append(f"Question: {question}")
        for edge in context.edges:
            score = context.scores.get(edge["edge_id"], {})
            target = "the market" if edge["counterparty_kind"] == "market" else edge["counterparty_id"]
            lines.append(
                f"Edge {edge['edge_id']}: {edge['seller_id']} reduced {edge['cusip'] or 'its stake'} "
                f"on {edge['anchor_date']}; shares went to {target} "
                f"(weight {edge['weight']:.3f}, confidence {edge['confidence']:.2f})."
            )
            if score:
                lines.append(
                    f"  Period {score['period']}: composite {score['composite']:.3f}, dump z {score['dump_z']:.2f}, "
                    f"uptake same/next {score['u_same']:.2f}/{score['u_next']:.2f}, "
                    f"short relief {score['short_relief']:.2f}, index penalty {score['index_penalty']:.2f}."
                )
        if context.accessions:
            lines.append("Filings: " + ", ".join(context.accessions))
        return "\n".join(lines)


class OpenAISynthesizer(HttpSource):
    name = LlmKind.OPENAI.value

    def __init__(self, client: httpx.Client, limiter: TokenBucketLimiter, settings: LlmSettings):
        super().__init__(client, limiter)
        self.settings = settings

    @classmethod
    def from_settings(cls, settings: LlmSettings, client: httpx.Client | None = None) -> OpenAISynthesizer:
        if not settings.api_key:
            raise ConfigError("llm.api_key is required for the openai synthesizer")
        if client is None:
            client = httpx.Client(headers={"Authorization": f"Bearer {settings.api_key}"}, timeout=60.0)
        return cls(client, TokenBucketLimiter(rate=1.0, capacity=1.0), settings)

    def synthesize(self, context: ExplanationContext, question: str | None) -> str:
        prompt = TemplateSynthesizer().synthesize(context, None)
        if question:
            prompt = f"{prompt}\n\nAnswer this question about the rotation above: {question}"
        body = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        url = f"{self.settings.base_url.rstrip('/')}/chat/completions"
        payload = self.request_json("POST", url, json=body)
        try:
            return payload["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ParseError("Chat completion response had no content", cause=exc).with_context(
                source_name=self.name, url=url
            ) from exc


def create_synthesizer(settings: LlmSettings, **kwargs: Any) -> Synthesizer:
    try:
        kind = LlmKind(settings.kind)
    except ValueError as exc:
        raise UnsupportedProviderError(settings.kind, [k.value for k in LlmKind]) from exc
    if kind is LlmKind.OPENAI:
        return OpenAISynthesizer.from_settings(settings, client=kwargs.get("client"))
    return TemplateSynthesizer()


def _validate_ids(edge_ids: Sequence[str]) -> list[str]:
    if isinstance(edge_ids, str) or not edge_ids:
        raise InputError("edge_ids must be a non-empty list", field_name="edge_ids")
    cleaned = []
    for value in edge_ids:
        if not isinstance(value, str) or not value.strip():
            raise InputError(f"Invalid edge id: {value!r}", field_name="edge_ids")
        cleaned.append(value.strip())
    return sorted(set(cleaned))


def build_context(repo: RotationRepository, edge_ids: Sequence[str]) -> ExplanationContext:
    """Gather edges, clusters, score breakdowns and accessions; unknown ids are rejected."""
    ids = _validate_ids(edge_ids)
    rows = repo.get_edges(ids)
    missing = sorted(set(ids) - {r.edge_id for r in rows})
    if missing:
        raise InputError(f"Unknown edge ids: {', '.join(missing)}", field_name="edge_ids")

    edges = [edge_to_dict(r) for r in rows]
    cluster_rows = repo.get_clusters(e["cluster_id"] for e in edges)
    clusters = {
        cid: {
            "seller_cik": c.seller_cik,
            "anchor_date": c.anchor_date,
            "delta": c.delta,
            "dump_z": c.dump_z,
            "shares_sold": c.shares_sold,
            "source": c.source,
        }
        for cid, c in cluster_rows.items()
    }

    scores: dict[str, dict[str, Any]] = {}
    accessions: set[str] = set()
    for edge in edges:
        period = edge["attrs"].get("period")
        score = repo.get_score(edge["issuer_cik"], period) if period else None
        if score is not None:
            scores[edge["edge_id"]] = {
                "period": score.period,
                "composite": score.composite,
                "dump_z": score.dump_z,
                "u_same": score.u_same,
                "u_next": score.u_next,
                "short_relief": score.short_relief,
                "index_penalty": score.index_penalty,
            }
        accessions.update(edge["attrs"].get("accessions") or ())
        cluster = cluster_rows.get(edge["cluster_id"])
        if cluster is not None:
            accessions.update(cluster.accessions or ())
    return ExplanationContext(edges=edges, clusters=clusters, scores=scores, accessions=sorted(accessions))


def explain_edges(
    repo: RotationRepository,
    edge_ids: Sequence[str],
    question: str | None = None,
    *,
    synthesizer: Synthesizer,
) -> Explanation:
    context = build_context(repo, edge_ids)
    ids = [e["edge_id"] for e in context.edges]
    question = question.strip() if question and question.strip() else None
    content = synthesizer.synthesize(context, question)
    explanation = Explanation(
        explanation_id=compute_hash("explanation", *ids, question),
        edge_ids=ids,
        question=question,
        content=content,
        accessions=context.accessions,
        synthesizer=synthesizer.name,
    )
    repo.put_explanation(explanation)
    logger.info(
        "graph.explained", explanation_id=explanation.explanation_id, edges=len(ids), synthesizer=synthesizer.name
    )
    return explanation


__all__ = [
    "LlmKind",
    "Explanation",
    "ExplanationContext",
    "TemplateSynthesizer",
    "OpenAISynthesizer",
    "create_synthesizer",
    "build_context",
    "explain_edges",
]
