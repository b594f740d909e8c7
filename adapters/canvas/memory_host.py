from __future__ import annotations

import asyncio
import copy
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from domain.models import Element
from domain.ports.canvas import CanvasHost, CommitMode


@dataclass(frozen=True)
class SceneCommit:
    elements: list[Element]
    app_state: dict[str, Any]
    commit_mode: str


@dataclass
class _PendingUpdate:
    elements: list[Element]
    app_state: dict[str, Any] = field(default_factory=dict)


class InMemoryCanvasHost(CanvasHost):
    """Canvas host kept in memory, optionally applying updates only after ``settle``.

    With ``apply_delay`` > 0 the host behaves like a renderer that processes updates
    asynchronously: ``get_scene_elements`` keeps returning the previous scene until the
    pending update is applied by ``settle``.
    """

    def __init__(
        self,
        elements: Sequence[Element] | None = None,
        app_state: dict[str, Any] | None = None,
        apply_delay: float = 0.0,
    ) -> None:
        self._elements: list[Element] = copy.deepcopy(list(elements or []))
        self.app_state: dict[str, Any] = dict(app_state or {})
        self.apply_delay = apply_delay
        self.commits: list[SceneCommit] = []
        self._pending: _PendingUpdate | None = None

    def get_scene_elements(self) -> list[Element]:
        return copy.deepcopy(self._elements)

    def update_scene(
        self,
        elements: Sequence[Element],
        app_state: dict[str, Any] | None = None,
        commit_mode: CommitMode = "immediately",
    ) -> None:
        snapshot = copy.deepcopy(list(elements))
        self.commits.append(SceneCommit(snapshot, dict(app_state or {}), commit_mode))
        pending = _PendingUpdate(snapshot, dict(app_state or {}))
        if self.apply_delay > 0:
            self._pending = pending
            return
        self._apply(pending)

    async def settle(self) -> None:
        if self._pending is None:
            return
        await asyncio.sleep(self.apply_delay)
        pending, self._pending = self._pending, None
        self._apply(pending)

    @property
    def live_elements(self) -> list[Element]:
        return [element for element in self._elements if not element.get("isDeleted")]

    def _apply(self, pending: _PendingUpdate) -> None:
        self._elements = copy.deepcopy(pending.elements)
        self.app_state.update(pending.app_state)
