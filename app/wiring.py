from __future__ import annotations

from adapters.layout.placement import SmartPlacementEngine
from adapters.mermaid.flowchart_parser import MermaidFlowchartParser
from app.config import AppSettings
from domain.ports.diagram_parser import DiagramParser
from domain.services.canvas_session import CanvasSession
from domain.services.match_content import ContentMatcher
from domain.services.reconcile_scene import SceneReconciler


def build_reconciler(settings: AppSettings, parser: DiagramParser | None = None) -> SceneReconciler:
    return SceneReconciler(
        parser=parser or MermaidFlowchartParser(),
        layout=SmartPlacementEngine(settings.layout.to_config()),
        matcher=ContentMatcher(config=settings.matching.to_config()),
        config=settings.reconciler.to_config(),
    )


def build_session(settings: AppSettings, parser: DiagramParser | None = None) -> CanvasSession:
    return CanvasSession(
        build_reconciler(settings, parser),
        continuous_mode=settings.reconciler.continuous_mode,
        history_limit=settings.reconciler.history_limit,
    )
