from __future__ import annotations

from pathlib import Path

from filelock import FileLock

from adapters.filesystem.json_utils import load_json_object, write_json_atomic
from domain.models import ExcalidrawDocument
from domain.ports.repositories import SceneRepository


def lock_path_for(path: Path) -> Path:
    return path.with_suffix(f"{path.suffix}.lock")


class FileSystemSceneRepository(SceneRepository):
    """Reads and writes ``.excalidraw`` scene files; writes are atomic and file-locked."""

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def load(self, path: Path) -> ExcalidrawDocument:
        if not path.exists():
            return ExcalidrawDocument(elements=[], app_state={}, files={})
        with FileLock(str(lock_path_for(path))):
            return ExcalidrawDocument.from_dict(load_json_object(path))

    def save(self, document: ExcalidrawDocument, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(str(lock_path_for(path))):
            write_json_atomic(path, document.to_dict())
