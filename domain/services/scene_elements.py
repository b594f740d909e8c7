from __future__ import annotations

import random
import time
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from domain.models import (
    CUSTOM_DATA_KEY,
    METADATA_SCHEMA_VERSION,
    BoundingBox,
    Element,
    Size,
)

Metadata = dict[str, Any]

DEFAULT_FONT_SIZE = 20.0
DEFAULT_FONT_FAMILY = 1
DEFAULT_LINE_HEIGHT = 1.25
TEXT_COLOR = "#1e1e1e"
RECT_STROKE_COLOR = "#2563eb"
RECT_BACKGROUND_COLOR = "#eff6ff"
TEXT_DEFAULT_WIDTH = 200.0
TEXT_DEFAULT_HEIGHT = 40.0


def make_id(prefix: str = "el") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def now_ms() -> int:
    return int(time.time() * 1000)


def rand_seed() -> int:
    return random.randint(1, 100_000)


def rand_nonce() -> int:
    return random.randint(1, 10**9)


def element_metadata(element: Mapping[str, Any]) -> Metadata:
    custom = element.get("customData")
    if not isinstance(custom, Mapping):
        return {}
    meta = custom.get(CUSTOM_DATA_KEY)
    return dict(meta) if isinstance(meta, Mapping) else {}


def with_metadata(element: Element, role: str, *, note_element: bool) -> Element:
    custom = element.get("customData")
    custom = dict(custom) if isinstance(custom, Mapping) else {}
    custom[CUSTOM_DATA_KEY] = {
        "schema_version": METADATA_SCHEMA_VERSION,
        "role": role,
        "note_element": note_element,
    }
    element["customData"] = custom
    return element


def is_note_element(element: Mapping[str, Any]) -> bool:
    return element_metadata(element).get("note_element") is True


def element_role(element: Mapping[str, Any]) -> str | None:
    role = element_metadata(element).get("role")
    return str(role) if role is not None else None


def primary_group_id(element: Mapping[str, Any]) -> str | None:
    group_ids = element.get("groupIds")
    if not isinstance(group_ids, list) or not group_ids:
        return None
    last = group_ids[-1]
    return last if isinstance(last, str) else None


def belongs_to_group(element: Mapping[str, Any], group_id: str) -> bool:
    group_ids = element.get("groupIds")
    return isinstance(group_ids, list) and group_id in group_ids


def tag_group(element: Element, group_id: str | None) -> Element:
    if not group_id:
        return element
    group_ids = [gid for gid in element.get("groupIds") or [] if isinstance(gid, str) and gid != group_id]
    group_ids.append(group_id)
    element["groupIds"] = group_ids
    return element


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def element_box(element: Mapping[str, Any]) -> BoundingBox:
    x = _number(element.get("x"))
    y = _number(element.get("y"))
    return BoundingBox(
        min_x=x,
        min_y=y,
        max_x=x + _number(element.get("width")),
        max_y=y + _number(element.get("height")),
    )


def bounding_box(elements: Iterable[Mapping[str, Any]]) -> BoundingBox:
    min_x = float("inf")
    min_y = float("inf")
    max_x = float("-inf")
    max_y = float("-inf")
    for element in elements:
        box = element_box(element)
        min_x = min(min_x, box.min_x)
        min_y = min(min_y, box.min_y)
        max_x = max(max_x, box.max_x)
        max_y = max(max_y, box.max_y)
    if min_x == float("inf"):
        return BoundingBox(0.0, 0.0, 0.0, 0.0)
    return BoundingBox(min_x, min_y, max_x, max_y)


class ElementFactory:
    """Builds Excalidraw primitives with every field the host renderer expects."""

    def measure_text(self, content: str, font_size: float = DEFAULT_FONT_SIZE) -> Size:
        lines = content.split("\n")
        longest = max((len(line) for line in lines), default=0) or 1
        return Size(longest * font_size * 0.6 + 20, len(lines) * font_size * 1.35 + 10)

    def text(
        self,
        x: float,
        y: float,
        text: Any,
        width: float | None = None,
        height: float | None = None,
        font_size: float | None = None,
        text_align: str = "center",
        vertical_align: str = "middle",
        container_id: str | None = None,
    ) -> Element:
        size = font_size or DEFAULT_FONT_SIZE
        if isinstance(text, str):
            content = text
        else:
            content = str(text) if text is not None else "Empty text"
        estimated = self.measure_text(content, size)
        estimated_width = max(width if width is not None else TEXT_DEFAULT_WIDTH, estimated.width)
        estimated_height = max(height if height is not None else TEXT_DEFAULT_HEIGHT, estimated.height)
        return {
            "id": make_id("text"),
            "type": "text",
            "x": x,
            "y": y,
            "width": estimated_width,
            "height": estimated_height,
            "angle": 0,
            "strokeColor": TEXT_COLOR,
            "backgroundColor": "transparent",
            "fillStyle": "solid",
            "strokeWidth": 0,
            "strokeStyle": "solid",
            "roughness": 0,
            "opacity": 100,
            "seed": rand_seed(),
            # Fresh text starts at version 3 so the host renders it on first paint.
            "version": 3,
            "versionNonce": rand_nonce(),
            "isDeleted": False,
            "groupIds": [],
            "boundElements": [],
            "frameId": None,
            "roundness": None,
            "link": None,
            "locked": False,
            "text": content,
            "fontSize": size,
            "fontFamily": DEFAULT_FONT_FAMILY,
            "textAlign": text_align,
            "verticalAlign": vertical_align,
            "containerId": container_id,
            "originalText": content,
            "lineHeight": DEFAULT_LINE_HEIGHT,
            "baseline": size,
            "updated": now_ms(),
            "autoResize": container_id is None,
        }

    def rectangle(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        stroke_color: str | None = None,
        background_color: str | None = None,
        roundness: dict[str, Any] | None = None,
    ) -> Element:
        return {
            "id": make_id("rect"),
            "type": "rectangle",
            "x": x,
            "y": y,
            "width": width,
            "height": height,
            "angle": 0,
            "strokeColor": stroke_color or RECT_STROKE_COLOR,
            "backgroundColor": background_color or RECT_BACKGROUND_COLOR,
            "fillStyle": "solid",
            "strokeWidth": 2.5,
            "strokeStyle": "solid",
            "roughness": 1.5,
            "opacity": 100,
            "seed": rand_seed(),
            "version": 1,
            "versionNonce": rand_nonce(),
            "isDeleted": False,
            "groupIds": [],
            "boundElements": [],
            "frameId": None,
            "roundness": roundness or {"type": 3},
            "link": None,
            "locked": False,
            "updated": now_ms(),
        }


def bump_render_version(element: Element) -> Element:
    """Return a copy whose render metadata changed while content and geometry stay put."""
    bumped = dict(element)
    bumped["version"] = int(element.get("version") or 1) + 2
    bumped["versionNonce"] = rand_nonce()
    bumped["updated"] = now_ms()
    bumped["baseline"] = element.get("fontSize") or DEFAULT_FONT_SIZE
    return bumped


def label_text(label: Any) -> str:
    """Flatten the loosely typed labels diagram parsers emit into plain text."""
    if label is None or label is False:
        return ""
    if isinstance(label, str):
        return label
    if isinstance(label, (int, float)):
        return str(label)
    if isinstance(label, list):
        return " ".join(part for part in (label_text(item) for item in label) if part)
    if isinstance(label, Mapping):
        for key in ("text", "rawText", "value", "label", "content", "name", "title"):
            value = label.get(key)
            if value:
                return label_text(value)
        return ""
    return str(label)
