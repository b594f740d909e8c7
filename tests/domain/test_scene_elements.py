from __future__ import annotations

from domain.models import CUSTOM_DATA_KEY
from domain.services.scene_elements import (
    ElementFactory,
    bounding_box,
    bump_render_version,
    is_note_element,
    label_text,
    primary_group_id,
    tag_group,
    with_metadata,
)


def test_text_size_is_estimated_from_content() -> None:
    factory = ElementFactory()

    short = factory.text(0, 0, "hi")
    long = factory.text(0, 0, "x" * 50 + "\nsecond\nthird", width=100, height=10)

    assert short["width"] == 200
    assert short["height"] == 40
    assert long["width"] == 50 * 20 * 0.6 + 20
    assert long["height"] == 3 * 20 * 1.35 + 10
    assert long["fontSize"] == 20
    assert long["textAlign"] == "center"


def test_bound_text_disables_auto_resize() -> None:
    factory = ElementFactory()

    free = factory.text(0, 0, "label")
    bound = factory.text(0, 0, "label", container_id="rect_1")

    assert free["autoResize"] is True
    assert bound["autoResize"] is False
    assert bound["containerId"] == "rect_1"


def test_primitives_get_unique_ids_and_jitter() -> None:
    factory = ElementFactory()

    first = factory.rectangle(0, 0, 100, 50)
    second = factory.rectangle(0, 0, 100, 50)

    assert first["id"] != second["id"]
    assert first["roundness"] == {"type": 3}
    assert isinstance(first["seed"], int)
    assert isinstance(first["versionNonce"], int)


def test_tag_group_appends_primary_group_last() -> None:
    element = {"groupIds": ["inner", "group_1"]}

    tag_group(element, "group_1")
    tag_group(element, "group_2")

    assert element["groupIds"] == ["inner", "group_1", "group_2"]
    assert primary_group_id(element) == "group_2"
    assert primary_group_id({"groupIds": []}) is None


def test_metadata_marks_note_elements() -> None:
    element = with_metadata({"customData": {"other": 1}}, "note_body", note_element=True)

    assert is_note_element(element)
    assert element["customData"]["other"] == 1
    assert element["customData"][CUSTOM_DATA_KEY]["role"] == "note_body"
    assert not is_note_element({"type": "text"})


def test_bounding_box_of_elements() -> None:
    box = bounding_box(
        [
            {"x": 10, "y": 20, "width": 100, "height": 50},
            {"x": -5, "y": 40, "width": 10, "height": 100},
        ]
    )

    assert (box.min_x, box.min_y, box.max_x, box.max_y) == (-5, 20, 110, 140)
    assert box.center_x == 52.5
    assert bounding_box([]).width == 0


def test_bump_render_version_keeps_content_and_geometry() -> None:
    text = ElementFactory().text(10, 20, "hello")

    bumped = bump_render_version(text)

    assert bumped["version"] == text["version"] + 2
    assert bumped["baseline"] == text["fontSize"]
    for key in ("id", "x", "y", "width", "height", "text"):
        assert bumped[key] == text[key]


def test_label_text_flattens_structures() -> None:
    assert label_text({"text": "Start"}) == "Start"
    assert label_text(["a", {"value": "b"}, None]) == "a b"
    assert label_text(3) == "3"
    assert label_text(None) == ""
