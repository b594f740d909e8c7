from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from adapters.filesystem.scene_repository import FileSystemSceneRepository
from domain.models import Element, ExcalidrawDocument
from domain.ports.canvas import CanvasHost, CommitMode
from domain.ports.repositories import SceneRepository

logger = logging.getLogger(__name__)


class FileSystemCanvasHost(CanvasHost):
    """Canvas host backed by a single ``.excalidraw`` scene file."""

    def __init__(self, path: Path, repository: SceneRepository | None = None) -> None:
        self.path = path
        self.repository = repository or FileSystemSceneRepository()

    def document(self) -> ExcalidrawDocument:
        return self.repository.load(self.path)

    def get_scene_elements(self) -> list[Element]:
        return list(self.document().elements)

    def update_scene(
        self,
        elements: Sequence[Element],
        app_state: dict[str, Any] | None = None,
        commit_mode: CommitMode = "immediately",
    ) -> None:
        current = self.document()
        merged_state = {**current.app_state, **(app_state or {})}
        self.repository.save(
            ExcalidrawDocument(elements=list(elements), app_state=merged_state, files=current.files),
            self.path,
        )
        logger.debug("Saved %d elements to %s (%s)", len(elements), self.path, commit_mode)

    async def settle(self) -> None:
        # Writes are synchronous, so every update is already observable.
        return None
