from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from adapters.canvas.memory_host import InMemoryCanvasHost
from adapters.layout.placement import SmartPlacementEngine
from adapters.mermaid.flowchart_parser import MermaidFlowchartParser
from app.config import AppSettings, ReconcilerSettings, WebSettings
from domain.services.reconcile_scene import ReconcilerConfig, SceneReconciler


def _clear_vcanvas_env() -> None:
    for key in list(os.environ):
        if key.startswith("VCANVAS_"):
            os.environ.pop(key, None)


_clear_vcanvas_env()


@pytest.fixture(autouse=True)
def clear_vcanvas_env() -> Generator[None, None, None]:
    _clear_vcanvas_env()
    yield
    _clear_vcanvas_env()


@pytest.fixture
def web_settings(tmp_path: Path) -> WebSettings:
    return WebSettings(
        title="Test Canvas",
        scene_dir=tmp_path / "scenes",
        excalidraw_base_url="http://testserver/excalidraw",
        max_url_length=8000,
    )


@pytest.fixture
def app_settings_factory(web_settings: WebSettings) -> Callable[..., AppSettings]:
    def _factory(**overrides: object) -> AppSettings:
        return AppSettings(
            web=web_settings.model_copy(update=overrides),
            reconciler=ReconcilerSettings(settle_delay_seconds=0.0),
        )

    return _factory


@pytest.fixture
def host() -> InMemoryCanvasHost:
    return InMemoryCanvasHost()


@pytest.fixture
def reconciler() -> SceneReconciler:
    return SceneReconciler(
        parser=MermaidFlowchartParser(),
        layout=SmartPlacementEngine(),
        config=ReconcilerConfig(settle_delay_seconds=0.0),
    )
