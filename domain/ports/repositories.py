from __future__ import annotations

from pathlib import Path
from typing import Protocol

from domain.models import ExcalidrawDocument


class SceneRepository(Protocol):
    def exists(self, path: Path) -> bool: ...

    def load(self, path: Path) -> ExcalidrawDocument: ...

    def save(self, document: ExcalidrawDocument, path: Path) -> None: ...
