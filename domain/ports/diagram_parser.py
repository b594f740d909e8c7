from __future__ import annotations

from typing import Any, Protocol


class DiagramParseError(ValueError):
    pass


class DiagramParser(Protocol):
    async def parse(self, markup: str) -> dict[str, Any]:
        """Return ``{"elements": [...]}`` skeleton elements or raise DiagramParseError."""
        ...
