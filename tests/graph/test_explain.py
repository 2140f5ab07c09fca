"""
Tests for rotation_spine.graph.explain module.

Tests cover:
- Edge id validation and unknown ids
- Context assembly (clusters, score breakdowns, accessions)
- Template synthesis and deterministic explanation ids
- OpenAI synthesizer over httpx.MockTransport
- Synthesizer selection by kind
"""

import json
from datetime import date

import httpx
import pytest

from rotation_spine.core.errors import ConfigError, InputError, ParseError, UnsupportedProviderError
from rotation_spine.core.settings import DetectorSettings, LlmSettings, RotationSettings
from rotation_spine.events.dump_detector import DumpEventDetector
from rotation_spine.graph.edges import GraphEdgeBuilder
from rotation_spine.graph.explain import (
    OpenAISynthesizer,
    TemplateSynthesizer,
    build_context,
    create_synthesizer,
    explain_edges,
)
from rotation_spine.scoring.composer import ScoreComposer
from rotation_spine.signals.flows import compute_quarter_flows
from rotation_spine.signals.models import HoldingPosition, IssuerResolution, QuarterSignals

ISSUER = IssuerResolution("0000320193", "AAPL", "Apple Inc.", ("037833100",))


def _holding(holder, asof, shares, accession=None):
    return HoldingPosition(holder, "037833100", date.fromisoformat(asof), shares, accession=accession)


@pytest.fixture
def edge_id(store):
    """Persist one scored AAPL rotation and return its edge id."""
    holdings = tuple(
        _holding("0000000001", d, s, accession=f"acc-{d}")
        for d, s in [("2023-06-30", 1000), ("2023-09-30", 1000), ("2023-12-31", 1000), ("2024-03-31", 1000), ("2024-06-30", 300)]
    ) + (_holding("0000000002", "2024-03-31", 100), _holding("0000000002", "2024-06-30", 600))
    signals = QuarterSignals(
        issuer=ISSUER, label="2024Q2", start=date(2024, 4, 1), end=date(2024, 6, 30), holdings=holdings
    )
    flows = compute_quarter_flows(signals)
    clusters = DumpEventDetector(DetectorSettings()).detect(signals)
    record, per_cluster = ScoreComposer(RotationSettings()).compose(signals, flows, clusters)
    builder = GraphEdgeBuilder()
    edge = builder.build(clusters[0], per_cluster[clusters[0].cluster_id], flows)
    with store.unit_of_work() as repo:
        repo.upsert_issuer(ISSUER)
        repo.put_clusters(clusters, {c: r.composite for c, r in per_cluster.items()})
        repo.put_score(record)
        builder.store(repo, edge)
    return edge.edge_id


# =============================================================================
# Context and validation
# =============================================================================


class TestBuildContext:
    def test_context(self, store, edge_id):
        with store.unit_of_work() as repo:
            context = build_context(repo, [edge_id])
        assert [e["edge_id"] for e in context.edges] == [edge_id]
        assert context.scores[edge_id]["period"] == "2024Q2"
        assert context.accessions == ["acc-2024-03-31", "acc-2024-06-30"]
        cluster = next(iter(context.clusters.values()))
        assert cluster["shares_sold"] == 700

    def test_duplicates_collapse(self, store, edge_id):
        with store.unit_of_work() as repo:
            assert len(build_context(repo, [edge_id, f" {edge_id} "]).edges) == 1

    @pytest.mark.parametrize("bad", [[], "e-1", [""], [None]])
    def test_invalid_ids(self, store, bad):
        with store.unit_of_work() as repo:
            with pytest.raises(InputError):
                build_context(repo, bad)

    def test_unknown_ids(self, store, edge_id):
        with store.unit_of_work() as repo:
            with pytest.raises(InputError) as exc_info:
                build_context(repo, [edge_id, "missing-edge"])
        assert "missing-edge" in str(exc_info.value)


# =============================================================================
# Explanations
# =============================================================================


class TestExplainEdges:
    def test_template_explanation(self, store, edge_id):
        with store.unit_of_work() as repo:
            explanation = explain_edges(repo, [edge_id], "Who bought?", synthesizer=TemplateSynthesizer())
        assert explanation.synthesizer == "template"
        assert explanation.question == "Who bought?"
        assert explanation.content.startswith("Question: Who bought?")
        assert f"Edge {edge_id}" in explanation.content
        assert "Period 2024Q2" in explanation.content
        assert "acc-2024-06-30" in explanation.content

    def test_explanation_id_is_deterministic(self, store, edge_id):
        with store.unit_of_work() as repo:
            first = explain_edges(repo, [edge_id], "why", synthesizer=TemplateSynthesizer())
        with store.unit_of_work() as repo:
            second = explain_edges(repo, [edge_id], "  why  ", synthesizer=TemplateSynthesizer())
        with store.unit_of_work() as repo:
            other = explain_edges(repo, [edge_id], "something else", synthesizer=TemplateSynthesizer())
        assert first.explanation_id == second.explanation_id
        assert first.explanation_id != other.explanation_id

    def test_blank_question_is_none(self, store, edge_id):
        with store.unit_of_work() as repo:
            explanation = explain_edges(repo, [edge_id], "   ", synthesizer=TemplateSynthesizer())
        assert explanation.question is None


class TestOpenAISynthesizer:
    def setup_method(self):
        self.bodies = []

    def _synthesizer(self, payload):
        def handler(request):
            self.bodies.append(json.loads(request.content))
            return httpx.Response(200, json=payload)

        settings = LlmSettings(kind="openai", api_key="test-key", base_url="https://llm.test/v1")
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return create_synthesizer(settings, client=client)

    def test_completion(self, store, edge_id):
        synthesizer = self._synthesizer({"choices": [{"message": {"content": "  Fund 2 absorbed the sale. "}}]})
        assert isinstance(synthesizer, OpenAISynthesizer)
        with store.unit_of_work() as repo:
            explanation = explain_edges(repo, [edge_id], "Who bought?", synthesizer=synthesizer)
        assert explanation.content == "Fund 2 absorbed the sale."
        assert explanation.synthesizer == "openai"
        body = self.bodies[0]
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][0]["role"] == "system"
        assert "Who bought?" in body["messages"][1]["content"]

    def test_bad_payload(self, store, edge_id):
        synthesizer = self._synthesizer({"choices": []})
        with store.unit_of_work() as repo:
            with pytest.raises(ParseError):
                explain_edges(repo, [edge_id], synthesizer=synthesizer)

    def test_api_key_required(self):
        with pytest.raises(ConfigError):
            OpenAISynthesizer.from_settings(LlmSettings(kind="openai"))


class TestCreateSynthesizer:
    def test_template_default(self):
        assert isinstance(create_synthesizer(LlmSettings()), TemplateSynthesizer)

    def test_unknown_kind(self):
        with pytest.raises(UnsupportedProviderError):
            create_synthesizer(LlmSettings(kind="oracle"))
