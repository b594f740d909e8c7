from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from domain.models import Element, PlacementKind, Point


class LayoutEngine(Protocol):
    def place(
        self,
        existing: Sequence[Element],
        kind: PlacementKind,
        target_group_id: str | None = None,
        width: float | None = None,
        height: float | None = None,
    ) -> Point:
        ...
