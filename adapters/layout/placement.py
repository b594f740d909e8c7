from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from domain.models import BoundingBox, Element, PlacementKind, Point, Size
from domain.ports.layout import LayoutEngine
from domain.services.scene_elements import belongs_to_group, bounding_box, element_box

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacementConfig:
    viewport_center: Point = Point(600.0, 400.0)
    spacing: float = 200.0
    collision_padding: float = 50.0
    min_margin: float = 100.0
    note_offset_x: float = 100.0
    note_size: Size = Size(300.0, 150.0)
    diagram_size: Size = Size(400.0, 300.0)


def boxes_collide(first: BoundingBox, second: BoundingBox, padding: float) -> bool:
    """Padded axis-aligned overlap test; touching padded edges count as a collision."""
    return not (
        first.max_x + padding < second.min_x - padding
        or first.min_x - padding > second.max_x + padding
        or first.max_y + padding < second.min_y - padding
        or first.min_y - padding > second.max_y + padding
    )


class SmartPlacementEngine(LayoutEngine):
    def __init__(self, config: PlacementConfig | None = None) -> None:
        self.config = config or PlacementConfig()

    def place(
        self,
        existing: Sequence[Element],
        kind: PlacementKind,
        target_group_id: str | None = None,
        width: float | None = None,
        height: float | None = None,
    ) -> Point:
        default_size = self.config.diagram_size if kind == "diagram" else self.config.note_size
        size = Size(
            width if width else default_size.width,
            height if height else default_size.height,
        )
        live = [element for element in existing if not element.get("isDeleted")]

        if target_group_id and live:
            related = [element for element in live if belongs_to_group(element, target_group_id)]
            if related:
                candidate = self._beside_group(bounding_box(related), kind, size)
                if not self.collides(candidate, size, live):
                    return candidate
                logger.debug("Group-relative slot for %s is occupied, falling back", target_group_id)

        if not live:
            return self._viewport_slot(kind, size)

        bounds = bounding_box(live)
        if kind == "diagram":
            candidate = self._place_diagram(bounds, size, live)
        else:
            candidate = self._place_note(bounds, size, live)
        if self.collides(candidate, size, live):
            candidate = self._below_everything(bounds)
            logger.debug("All placement candidates collided, placing below content at %s", candidate)
        return candidate

    def collides(self, position: Point, size: Size, existing: Sequence[Element]) -> bool:
        box = BoundingBox(position.x, position.y, position.x + size.width, position.y + size.height)
        padding = self.config.collision_padding
        return any(boxes_collide(box, element_box(element), padding) for element in existing)

    def _beside_group(self, group_box: BoundingBox, kind: PlacementKind, size: Size) -> Point:
        spacing = self.config.spacing
        if kind == "diagram":
            return Point(group_box.center_x - size.width / 2, group_box.max_y + spacing)
        return Point(group_box.max_x + spacing, group_box.min_y)

    def _viewport_slot(self, kind: PlacementKind, size: Size) -> Point:
        center = self.config.viewport_center
        x = center.x - size.width / 2
        if kind == "note":
            x -= self.config.note_offset_x
        return Point(x, center.y - size.height / 2)

    def _place_diagram(self, bounds: BoundingBox, size: Size, live: Sequence[Element]) -> Point:
        spacing = self.config.spacing
        x = max(self.config.min_margin, bounds.center_x - size.width / 2)
        y = bounds.max_y + spacing
        if self.collides(Point(x, y), size, live):
            x = bounds.max_x + spacing
            y = bounds.min_y
            if self.collides(Point(x, y), size, live):
                x = bounds.center_x - size.width / 2
                y = bounds.max_y + spacing
        return self._clamp(x, y)

    def _place_note(self, bounds: BoundingBox, size: Size, live: Sequence[Element]) -> Point:
        spacing = self.config.spacing
        x = bounds.max_x + spacing
        y = bounds.min_y
        if self.collides(Point(x, y), size, live):
            x = bounds.min_x
            y = bounds.max_y + spacing
            if self.collides(Point(x, y), size, live):
                x = bounds.max_x + spacing * 2
                y = self.config.viewport_center.y
                if self.collides(Point(x, y), size, live):
                    x = self.config.viewport_center.x - size.width / 2
                    y = bounds.max_y + spacing
        return self._clamp(x, y)

    def _below_everything(self, bounds: BoundingBox) -> Point:
        return self._clamp(bounds.min_x, bounds.max_y + self.config.spacing)

    def _clamp(self, x: float, y: float) -> Point:
        margin = self.config.min_margin
        return Point(max(margin, x), max(margin, y))
