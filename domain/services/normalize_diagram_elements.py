from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from domain.models import BoundingBox, Element, Point
from domain.services.scene_elements import (
    DEFAULT_FONT_FAMILY,
    DEFAULT_FONT_SIZE,
    DEFAULT_LINE_HEIGHT,
    RECT_BACKGROUND_COLOR,
    RECT_STROKE_COLOR,
    TEXT_COLOR,
    ElementFactory,
    bounding_box,
    label_text,
    make_id,
    now_ms,
    rand_nonce,
    rand_seed,
    tag_group,
    with_metadata,
)

logger = logging.getLogger(__name__)

LINEAR_TYPES = {"arrow", "line"}
ROUNDED_TYPES = {"rectangle", "diamond"}
FILLED_TYPES = {"rectangle", "diamond"}
DEFAULT_SHAPE_SIZE = 100.0

_PAREN_IN_LABEL = re.compile(r"\[([^\]]*)\(([^\)]*)\)([^\]]*)\]")
_BRACKET_LABEL = re.compile(r"\[([^\]]*)\]")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E\n]")


class DiagramNormalizationError(ValueError):
    pass


def sanitize_markup(markup: str) -> str:
    """Rewrite the label constructs that most often break diagram parsers."""
    cleaned = _PAREN_IN_LABEL.sub(r"[\1 - \2 - \3]", markup)
    cleaned = _BRACKET_LABEL.sub(
        lambda match: "[" + match.group(1).replace('"', "").replace("'", "") + "]",
        cleaned,
    )
    return _NON_PRINTABLE.sub("", cleaned)


def _number(value: Any, default: float) -> float | None:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _has_bound_text(element: Mapping[str, Any]) -> bool:
    bound = element.get("boundElements")
    if not isinstance(bound, list):
        return False
    return any(isinstance(item, Mapping) and item.get("type") == "text" for item in bound)


class DiagramNormalizer:
    """Turns parser skeleton elements into placed, fully specified canvas primitives.

    Every element gets a fresh id; container/bound-text/arrow bindings are rewritten
    through the old -> new id table, labels without bound text become centered text
    elements bound to their container, and the target group id is appended last to
    each element's ``groupIds``.
    """

    def __init__(self, factory: ElementFactory | None = None) -> None:
        self.factory = factory or ElementFactory()

    def measure(self, raw_elements: Sequence[Mapping[str, Any]]) -> BoundingBox:
        return bounding_box(element for element in raw_elements if isinstance(element, Mapping))

    def normalize(
        self,
        raw_elements: Sequence[Mapping[str, Any]],
        position: Point,
        group_id: str | None = None,
    ) -> list[Element]:
        sources = [element for element in raw_elements if isinstance(element, Mapping)]
        if not sources:
            raise DiagramNormalizationError("Diagram parser returned no elements")

        source_bounds = self.measure(sources)
        offset = Point(position.x - source_bounds.min_x, position.y - source_bounds.min_y)
        token = uuid.uuid4().hex[:8]

        id_map: dict[str, str] = {}
        new_ids: list[str] = []
        for idx, source in enumerate(sources):
            old_id = source.get("id")
            if not isinstance(old_id, str) or not old_id:
                old_id = make_id("m")
            new_id = f"{old_id}_{token}_{idx}"
            id_map.setdefault(old_id, new_id)
            new_ids.append(new_id)
        inner_groups: dict[str, str] = {}

        candidates: list[Element] = []
        for source, new_id in zip(sources, new_ids):
            element = self._normalize_element(source, new_id, offset, id_map, inner_groups)
            if element is not None:
                candidates.append(element)
        self._remap_bound_elements(candidates, id_map)

        ordered = self._bind_labels(candidates)
        valid = [element for element in ordered if self._is_valid(element)]
        self._drop_dangling_references(valid)
        if not valid:
            raise DiagramNormalizationError("No valid elements after normalization")

        for element in valid:
            tag_group(element, group_id)
            role = "diagram_label" if element.get("type") == "text" else "diagram_shape"
            with_metadata(element, role, note_element=False)
        logger.debug("Normalized %d of %d diagram elements", len(valid), len(sources))
        return valid

    def _normalize_element(
        self,
        source: Mapping[str, Any],
        new_id: str,
        offset: Point,
        id_map: Mapping[str, str],
        inner_groups: dict[str, str],
    ) -> Element | None:
        type_name = source.get("type")
        if not isinstance(type_name, str) or not type_name:
            return None
        x = _number(source.get("x"), 0.0)
        y = _number(source.get("y"), 0.0)
        width = _number(source.get("width"), DEFAULT_SHAPE_SIZE)
        height = _number(source.get("height"), DEFAULT_SHAPE_SIZE)
        if x is None or y is None or width is None or height is None:
            return None

        linear = type_name in LINEAR_TYPES
        element: Element = dict(source)
        element.update(
            {
                "id": new_id,
                "type": type_name,
                "x": x + offset.x,
                "y": y + offset.y,
                "width": width,
                "height": height,
                "angle": source.get("angle", 0),
                "seed": source.get("seed") or rand_seed(),
                "version": source.get("version") or 1,
                "versionNonce": source.get("versionNonce") or rand_nonce(),
                "isDeleted": False,
                "groupIds": self._remap_groups(source.get("groupIds"), inner_groups),
                "updated": now_ms(),
                "boundElements": list(source.get("boundElements") or []),
                "roundness": source.get("roundness")
                or ({"type": 3} if type_name in ROUNDED_TYPES else None),
                "fillStyle": source.get("fillStyle") or "solid",
                "backgroundColor": source.get("backgroundColor")
                or (RECT_BACKGROUND_COLOR if type_name in FILLED_TYPES else "transparent"),
                "strokeColor": source.get("strokeColor")
                or (TEXT_COLOR if linear else RECT_STROKE_COLOR),
                "strokeWidth": source.get("strokeWidth") or (2 if linear else 2.5),
                "strokeStyle": source.get("strokeStyle") or "solid",
                "opacity": source.get("opacity", 100),
                "roughness": source.get("roughness", 0 if type_name == "text" else 1.5),
                "locked": bool(source.get("locked", False)),
                "frameId": None,
                "link": source.get("link"),
            }
        )
        points = source.get("points")
        if isinstance(points, list) and points:
            element["points"] = [list(point) for point in points]
        else:
            element.pop("points", None)

        for key in ("startBinding", "endBinding"):
            binding = source.get(key)
            if isinstance(binding, Mapping):
                target = binding.get("elementId")
                element[key] = {**binding, "elementId": id_map.get(target, target)}

        container_id = source.get("containerId")
        if isinstance(container_id, str) and container_id:
            element["containerId"] = id_map.get(container_id, container_id)

        if type_name == "text":
            raw_text = source.get("text") or source.get("label")
            text = label_text(raw_text)
            element["text"] = text
            element["originalText"] = label_text(source.get("originalText")) or text
            element.pop("label", None)
            font_size = source.get("fontSize") or DEFAULT_FONT_SIZE
            element["fontSize"] = font_size
            element["fontFamily"] = source.get("fontFamily") or DEFAULT_FONT_FAMILY
            element["textAlign"] = "center"
            element["verticalAlign"] = "middle"
            element["lineHeight"] = source.get("lineHeight") or DEFAULT_LINE_HEIGHT
            element["baseline"] = font_size
            element.setdefault("containerId", None)
            element["autoResize"] = not element.get("containerId")
            element["version"] = max(int(source.get("version") or 1) + 1, 3)
        return element

    def _remap_groups(self, group_ids: Any, inner_groups: dict[str, str]) -> list[str]:
        if not isinstance(group_ids, list):
            return []
        remapped: list[str] = []
        for group_id in group_ids:
            if not isinstance(group_id, str) or not group_id:
                continue
            remapped.append(inner_groups.setdefault(group_id, make_id("dgroup")))
        return remapped

    def _remap_bound_elements(self, elements: list[Element], id_map: Mapping[str, str]) -> None:
        for element in elements:
            remapped: list[dict[str, Any]] = []
            for bound in element.get("boundElements") or []:
                if not isinstance(bound, Mapping):
                    continue
                bound_id = bound.get("id")
                remapped.append({**bound, "id": id_map.get(bound_id, bound_id)})
            element["boundElements"] = remapped

    def _bind_labels(self, elements: list[Element]) -> list[Element]:
        texts = [element for element in elements if element["type"] == "text"]
        shapes = [element for element in elements if element["type"] != "text"]
        shape_index = {shape["id"]: shape for shape in shapes}

        text_by_container: dict[str, Element] = {}
        for text in texts:
            container = shape_index.get(text.get("containerId") or "")
            if container is None:
                continue
            self._fit_to_container(text, container)
            self._register_binding(container, text)
            text_by_container[container["id"]] = text

        ordered: list[Element] = []
        for shape in shapes:
            ordered.append(shape)
            # bound text replaces the skeleton label
            label = label_text(shape.pop("label", None)).strip()
            bound_text = text_by_container.get(shape["id"])
            if bound_text is not None:
                ordered.append(bound_text)
                continue
            if _has_bound_text(shape):
                continue
            if not label:
                continue
            synthesized = self.factory.text(
                x=shape["x"],
                y=shape["y"],
                text=label,
                font_size=DEFAULT_FONT_SIZE,
                container_id=shape["id"],
            )
            self._fit_to_container(synthesized, shape)
            synthesized["groupIds"] = list(shape.get("groupIds") or [])
            self._register_binding(shape, synthesized)
            ordered.append(synthesized)

        bound_ids = {text["id"] for text in text_by_container.values()}
        ordered.extend(text for text in texts if text["id"] not in bound_ids)
        return ordered

    def _fit_to_container(self, text: Element, container: Mapping[str, Any]) -> None:
        text["x"] = container["x"]
        text["y"] = container["y"]
        text["width"] = container.get("width") or DEFAULT_SHAPE_SIZE
        text["height"] = container.get("height") or DEFAULT_SHAPE_SIZE
        text["textAlign"] = "center"
        text["verticalAlign"] = "middle"
        text["autoResize"] = False
        text["lineHeight"] = text.get("lineHeight") or DEFAULT_LINE_HEIGHT
        text["originalText"] = text.get("originalText") or text.get("text") or ""
        text["baseline"] = text.get("fontSize") or DEFAULT_FONT_SIZE
        text["updated"] = now_ms()
        text["version"] = max(int(text.get("version") or 1) + 1, 3)
        text["versionNonce"] = rand_nonce()

    def _register_binding(self, container: Element, text: Element) -> None:
        text["containerId"] = container["id"]
        bound = container.setdefault("boundElements", [])
        if not any(item.get("id") == text["id"] for item in bound if isinstance(item, Mapping)):
            bound.append({"type": "text", "id": text["id"]})

    def _is_valid(self, element: Mapping[str, Any]) -> bool:
        if not isinstance(element.get("id"), str) or not element["id"]:
            return False
        for key in ("x", "y", "width", "height"):
            value = element.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
        if element.get("type") == "text":
            return isinstance(element.get("text"), str)
        return bool(element.get("type"))

    def _drop_dangling_references(self, elements: list[Element]) -> None:
        known = {element["id"] for element in elements}
        for element in elements:
            container_id = element.get("containerId")
            if container_id and container_id not in known:
                element["containerId"] = None
                element["autoResize"] = True
            bound = element.get("boundElements")
            if isinstance(bound, list):
                element["boundElements"] = [item for item in bound if item.get("id") in known]
            for key in ("startBinding", "endBinding"):
                binding = element.get(key)
                if isinstance(binding, Mapping) and binding.get("elementId") not in known:
                    element[key] = None
