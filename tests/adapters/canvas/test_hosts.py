from __future__ import annotations

import asyncio
from pathlib import Path

import orjson

from adapters.canvas.file_host import FileSystemCanvasHost
from adapters.canvas.memory_host import InMemoryCanvasHost
from adapters.filesystem.scene_repository import FileSystemSceneRepository, lock_path_for
from domain.models import ExcalidrawDocument


def test_memory_host_returns_copies() -> None:
    host = InMemoryCanvasHost([{"id": "a", "type": "rectangle"}])

    elements = host.get_scene_elements()
    elements[0]["type"] = "ellipse"

    assert host.get_scene_elements()[0]["type"] == "rectangle"


def test_memory_host_records_commits() -> None:
    host = InMemoryCanvasHost()

    host.update_scene([{"id": "a"}], app_state={"zoom": 1}, commit_mode="never")

    assert host.commits[0].commit_mode == "never"
    assert host.app_state == {"zoom": 1}
    assert host.live_elements == [{"id": "a"}]


def test_delayed_host_applies_on_settle() -> None:
    host = InMemoryCanvasHost([{"id": "old"}], apply_delay=0.01)

    host.update_scene([{"id": "new"}])
    before = host.get_scene_elements()
    asyncio.run(host.settle())

    assert before == [{"id": "old"}]
    assert host.get_scene_elements() == [{"id": "new"}]


def test_live_elements_skip_deleted() -> None:
    host = InMemoryCanvasHost([{"id": "a"}, {"id": "b", "isDeleted": True}])

    assert [element["id"] for element in host.live_elements] == ["a"]


def test_file_host_persists_updates(tmp_path: Path) -> None:
    path = tmp_path / "scenes" / "demo.excalidraw"
    host = FileSystemCanvasHost(path)

    assert host.get_scene_elements() == []
    host.update_scene([{"id": "a", "type": "text", "text": "hi"}], app_state={"theme": "dark"})
    asyncio.run(host.settle())
    host.update_scene([{"id": "b"}])

    stored = orjson.loads(path.read_bytes())
    assert stored["elements"] == [{"id": "b"}]
    assert stored["appState"] == {"theme": "dark"}
    assert stored["type"] == "excalidraw"


def test_scene_repository_roundtrip(tmp_path: Path) -> None:
    repository = FileSystemSceneRepository()
    path = tmp_path / "one.excalidraw"
    document = ExcalidrawDocument(elements=[{"id": "x"}], app_state={"a": 1}, files={"f": {}})

    assert not repository.exists(path)
    repository.save(document, path)

    assert repository.exists(path)
    assert repository.load(path) == document
    assert lock_path_for(path).name == "one.excalidraw.lock"
