from __future__ import annotations

from adapters.layout.placement import PlacementConfig, SmartPlacementEngine, boxes_collide
from domain.models import BoundingBox, Point, Size


def _rect(x: float, y: float, width: float, height: float, *groups: str) -> dict:
    return {"id": f"r{x}_{y}", "x": x, "y": y, "width": width, "height": height, "groupIds": list(groups)}


def test_empty_canvas_uses_viewport_center() -> None:
    engine = SmartPlacementEngine()

    note = engine.place([], "note", width=300, height=150)
    diagram = engine.place([], "diagram", width=400, height=300)

    assert note == Point(600 - 150 - 100, 400 - 75)
    assert diagram == Point(600 - 200, 400 - 150)


def test_default_sizes_apply_when_missing() -> None:
    engine = SmartPlacementEngine(PlacementConfig(viewport_center=Point(0, 0), note_offset_x=0))

    assert engine.place([], "note") == Point(-150, -75)
    assert engine.place([], "diagram") == Point(-200, -150)


def test_diagram_goes_below_existing_content() -> None:
    engine = SmartPlacementEngine()
    existing = [_rect(100, 100, 400, 200)]

    position = engine.place(existing, "diagram", width=400, height=300)

    assert position.y == 300 + 200
    assert not engine.collides(position, Size(400, 300), existing)


def test_note_goes_right_of_existing_content() -> None:
    engine = SmartPlacementEngine()
    existing = [_rect(100, 100, 400, 200)]

    position = engine.place(existing, "note", width=300, height=150)

    assert position == Point(500 + 200, 100)


def test_group_relative_placement() -> None:
    engine = SmartPlacementEngine()
    existing = [_rect(100, 100, 200, 100), _rect(1000, 1000, 100, 100, "group_1")]

    diagram = engine.place(existing, "diagram", "group_1", width=100, height=100)
    note = engine.place(existing, "note", "group_1", width=100, height=100)

    assert diagram == Point(1000, 1100 + 200)
    assert note == Point(1100 + 200, 1000)


def test_deleted_elements_are_ignored() -> None:
    engine = SmartPlacementEngine()
    deleted = {**_rect(0, 0, 2000, 2000), "isDeleted": True}

    assert engine.place([deleted], "diagram", width=400, height=300) == Point(400, 250)


def test_placement_never_overlaps_dense_canvas() -> None:
    engine = SmartPlacementEngine()
    existing = [_rect(x * 150, y * 150, 100, 100) for x in range(5) for y in range(5)]

    for kind in ("note", "diagram"):
        position = engine.place(existing, kind, width=300, height=200)
        assert not engine.collides(position, Size(300, 200), existing)
        assert position.x >= 100 and position.y >= 100


def test_boxes_collide_uses_padding() -> None:
    first = BoundingBox(0, 0, 100, 100)
    near = BoundingBox(150, 0, 250, 100)
    far = BoundingBox(201, 0, 300, 100)

    assert boxes_collide(first, near, 50)
    assert not boxes_collide(first, far, 50)
    assert not boxes_collide(first, near, 10)
