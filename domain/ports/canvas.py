from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Literal, Protocol

from domain.models import Element

CommitMode = Literal["immediately", "eventually", "never"]


class CanvasHost(Protocol):
    def get_scene_elements(self) -> list[Element]: ...

    def update_scene(
        self,
        elements: Sequence[Element],
        app_state: dict[str, Any] | None = None,
        commit_mode: CommitMode = "immediately",
    ) -> None: ...

    async def settle(self) -> None:
        """Resolve once the last ``update_scene`` call is observable through ``get_scene_elements``."""
        ...
