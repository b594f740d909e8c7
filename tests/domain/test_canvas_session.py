from __future__ import annotations

import asyncio

import pytest

from adapters.canvas.memory_host import InMemoryCanvasHost
from domain.models import ContentBlock
from domain.services.canvas_session import CanvasSession, coerce_block
from domain.services.reconcile_scene import SceneReconciler
from domain.services.scene_elements import primary_group_id


def _groceries(*items: str) -> dict:
    return {"type": "note", "title": "Groceries", "content": list(items)}


def test_follow_up_updates_the_same_note(
    reconciler: SceneReconciler, host: InMemoryCanvasHost
) -> None:
    session = CanvasSession(reconciler)

    first = asyncio.run(session.handle_response(_groceries("milk"), "make a grocery list", host))
    second = asyncio.run(
        session.handle_response(_groceries("milk", "eggs"), "update the groceries with eggs", host)
    )

    assert not first.is_update
    assert second.is_update
    assert second.group_id == first.group_id
    assert second.matched_topic == "groceries"
    assert len(host.live_elements) == 3
    assert {primary_group_id(element) for element in host.live_elements} == {first.group_id}
    assert "• milk\n• eggs" in [element.get("text") for element in host.live_elements]


def test_explicit_new_request_keeps_both_notes(
    reconciler: SceneReconciler, host: InMemoryCanvasHost
) -> None:
    session = CanvasSession(reconciler)

    first = asyncio.run(session.handle_response(_groceries("milk"), "make a grocery list", host))
    second = asyncio.run(
        session.handle_response(_groceries("bread"), "make a new grocery list for the party", host)
    )

    assert not second.is_update
    assert second.group_id != first.group_id
    assert len(host.live_elements) == 6


def test_history_is_recorded_and_trimmed(
    reconciler: SceneReconciler, host: InMemoryCanvasHost
) -> None:
    session = CanvasSession(reconciler, history_limit=3)

    asyncio.run(session.handle_response(_groceries("milk"), "make a grocery list", host))
    asyncio.run(session.handle_response(_groceries("milk", "eggs"), "update the list", host))

    assert len(session.history) == 3
    assert session.history[-1].role == "assistant"
    assert session.history[-1].block_kind() == "note"
    assert session.history[-2].content == "update the list"


def test_clear_history_resets_topics(reconciler: SceneReconciler, host: InMemoryCanvasHost) -> None:
    session = CanvasSession(reconciler)
    decision = asyncio.run(session.handle_response(_groceries("milk"), "make a grocery list", host))

    group_id = session.clear_history()

    assert session.history == []
    assert session.registry.topics() == []
    assert group_id != decision.group_id
    assert session.registry.current_group_id == group_id


def test_raw_json_diagram_response(reconciler: SceneReconciler, host: InMemoryCanvasHost) -> None:
    session = CanvasSession(reconciler)

    decision = asyncio.run(
        session.handle_response(
            '{"type": "diagram", "content": "graph LR\\nA[Build] --> B[Deploy]"}',
            "draw the pipeline",
            host,
        )
    )

    texts = [element.get("text") for element in host.live_elements]
    assert "Build" in texts and "Deploy" in texts
    assert decision.topic == "graph lr"


def test_multi_child_topic_is_updated_in_place(
    reconciler: SceneReconciler, host: InMemoryCanvasHost
) -> None:
    session = CanvasSession(reconciler)
    bundle = {
        "type": "multi",
        "content": [
            {"type": "note", "title": "Todo", "content": ["write tests"]},
            {"type": "diagram", "content": "graph LR\nA[Build] --> B[Deploy]"},
        ],
    }

    first = asyncio.run(session.handle_response(bundle, "plan the release", host))
    second = asyncio.run(
        session.handle_response(
            {"type": "note", "title": "Todo", "content": ["write tests", "ship"]},
            "update the todo",
            host,
        )
    )

    texts = [element.get("text") for element in host.live_elements]
    assert texts.count("Todo") == 1
    assert "• write tests\n• ship" in texts
    assert "Build" in texts and "Deploy" in texts
    assert second.is_update
    assert second.group_id == f"{first.group_id}_0"
    assert session.registry.resolve("todo") == f"{first.group_id}_0"


@pytest.mark.parametrize(
    ("payload", "kind", "text"),
    [
        ("just some words", "note", "just some words"),
        ('{"kind": "note", "body": ["a", "b"]}', "note", "a\nb"),
        ('{"type": "chart", "content": "x"}', "note", "x"),
        ([1, 2], "note", "[1,2]"),
    ],
)
def test_coerce_block_accepts_loose_payloads(payload: object, kind: str, text: str) -> None:
    block = coerce_block(payload)

    assert block.kind == kind
    assert block.text() == text


def test_coerce_block_passes_blocks_through() -> None:
    block = ContentBlock(kind="diagram", content="graph TD\nA-->B")

    assert coerce_block(block) is block
