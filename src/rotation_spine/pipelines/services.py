"""Collaborators shared by the pipeline workflows, built once from settings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from rotation_spine.core.settings import RotationSettings
from rotation_spine.events.dump_detector import DumpEventDetector
from rotation_spine.events.event_study import EventStudyEngine
from rotation_spine.graph.edges import GraphEdgeBuilder
from rotation_spine.scoring.composer import ScoreComposer
from rotation_spine.signals.aggregator import SignalAggregator
from rotation_spine.signals.gateway import SignalProvider, SignalRouter, build_gateway


@dataclass
class PipelineServices:
    settings: RotationSettings
    gateway: SignalRouter
    aggregator: SignalAggregator
    detector: DumpEventDetector
    composer: ScoreComposer
    studies: EventStudyEngine
    edges: GraphEdgeBuilder

    @classmethod
    def from_settings(
        cls, settings: RotationSettings, *, providers: Mapping[str, SignalProvider] | None = None
    ) -> PipelineServices:
        gateway = build_gateway(settings, providers=providers)
        return cls(
            settings=settings,
            gateway=gateway,
            aggregator=SignalAggregator(gateway, settings),
            detector=DumpEventDetector(settings.detector),
            composer=ScoreComposer(settings),
            studies=EventStudyEngine(settings.event_study),
            edges=GraphEdgeBuilder(),
        )


__all__ = ["PipelineServices"]
