from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from domain.models import ContentBlock, ConversationMessage, Element, Point
from domain.ports.canvas import CanvasHost
from domain.ports.diagram_parser import DiagramParseError, DiagramParser
from domain.ports.layout import LayoutEngine
from domain.services.build_note_elements import NoteBuilder, format_note_body
from domain.services.group_registry import GroupIdAllocator, child_group_id
from domain.services.match_content import ContentMatcher
from domain.services.normalize_diagram_elements import (
    DiagramNormalizationError,
    DiagramNormalizer,
    sanitize_markup,
)
from domain.services.scene_elements import (
    ElementFactory,
    bump_render_version,
    is_note_element,
    primary_group_id,
    tag_group,
    with_metadata,
)

logger = logging.getLogger(__name__)

DIAGRAM_HEADING_OFFSET = 60.0
DIAGRAM_HEADING_FONT_SIZE = 24.0


@dataclass(frozen=True)
class ReconcilerConfig:
    settle_delay_seconds: float = 0.1
    max_multi_depth: int = 8


def host_is_ready(host: Any) -> bool:
    return callable(getattr(host, "get_scene_elements", None)) and callable(
        getattr(host, "update_scene", None)
    )


class SceneReconciler:
    """Merges content blocks into the live canvas with a delete, commit, confirm protocol.

    Each block is classified (new vs. update of a group), the superseded elements of the
    same semantic kind are removed and committed first, fresh elements are materialized at
    a collision-free position, and a second metadata-only commit forces the host to
    re-measure the new text.
    """

    def __init__(
        self,
        parser: DiagramParser,
        layout: LayoutEngine,
        matcher: ContentMatcher | None = None,
        factory: ElementFactory | None = None,
        normalizer: DiagramNormalizer | None = None,
        notes: NoteBuilder | None = None,
        allocator: GroupIdAllocator | None = None,
        config: ReconcilerConfig | None = None,
    ) -> None:
        self.parser = parser
        self.layout = layout
        self.matcher = matcher or ContentMatcher()
        self.factory = factory or ElementFactory()
        self.normalizer = normalizer or DiagramNormalizer(self.factory)
        self.notes = notes or NoteBuilder(self.factory)
        self.allocator = allocator or GroupIdAllocator()
        self.config = config or ReconcilerConfig()

    async def reconcile(
        self,
        block: ContentBlock | Mapping[str, Any],
        host: CanvasHost,
        history: Sequence[ConversationMessage] = (),
        utterance: str | None = None,
        force_update: bool = False,
        depth: int = 0,
    ) -> None:
        if not host_is_ready(host):
            logger.error("Canvas host does not expose get_scene_elements/update_scene; skipping")
            return
        if not isinstance(block, ContentBlock):
            block = ContentBlock.model_validate(block)
        logger.info(
            "Reconciling %s block (group=%s, forced=%s, history=%d) for %r",
            block.kind,
            block.group_id,
            force_update,
            len(history),
            utterance,
        )
        try:
            await self._reconcile_block(block, host, force_update, depth)
        except Exception:
            logger.exception("Failed to reconcile %s block %s", block.kind, block.group_id)

    async def _reconcile_block(
        self,
        block: ContentBlock,
        host: CanvasHost,
        force_update: bool,
        depth: int,
    ) -> None:
        if block.kind == "multi":
            if depth < self.config.max_multi_depth:
                await self._reconcile_multi(block, host, force_update, depth)
                return
            logger.warning("Nested multi block exceeds depth %d; rendering as note", depth)
            block = ContentBlock(
                kind="note", title=block.title, content=block.raw_text(), group_id=block.group_id
            )

        body = format_note_body(block.content) if block.kind == "note" else block.text().strip()
        if not body:
            logger.info("Ignoring empty %s block", block.kind)
            return

        elements = list(host.get_scene_elements())
        group_id, is_update = self._classify(block, elements, force_update)
        if is_update:
            remaining = [element for element in elements if not self._is_superseded(element, group_id, block.kind)]
            if len(remaining) != len(elements):
                logger.info("Removing %d %s elements of %s", len(elements) - len(remaining), block.kind, group_id)
                host.update_scene(remaining, commit_mode="immediately")
                await self._settle(host)
                elements = list(host.get_scene_elements())

        if block.kind == "note":
            created = self._materialize_note(body, block.title, group_id, elements)
        else:
            created = await self._materialize_diagram(block, group_id, elements)
        if not created:
            return

        host.update_scene([*elements, *created], commit_mode="immediately")
        logger.info("Committed %d new elements to %s", len(created), group_id)
        await self._settle(host)
        await self._confirm(host, created)

    async def _reconcile_multi(
        self,
        block: ContentBlock,
        host: CanvasHost,
        force_update: bool,
        depth: int,
    ) -> None:
        parent_group_id = block.group_id or self.allocator.allocate()
        for index, child in enumerate(block.children):
            if not child.group_id:
                child = child.with_group(child_group_id(parent_group_id, index))
            try:
                await self._reconcile_block(child, host, force_update, depth + 1)
            except Exception:
                logger.exception("Failed to reconcile child %d of %s", index, parent_group_id)

    def _classify(
        self,
        block: ContentBlock,
        elements: Sequence[Element],
        force_update: bool,
    ) -> tuple[str, bool]:
        if block.group_id:
            if force_update:
                return block.group_id, True
            return block.group_id, self._owns_kind(elements, block.group_id, block.kind)

        if block.kind == "note":
            match = self.matcher.find_similar_note(block.text(), elements, title=block.title)
        else:
            match = self.matcher.find_similar_diagram(block.text(), elements)
        if match is not None:
            logger.info("Content matches %s (score %.2f)", match.group_id, match.score)
            return match.group_id, True
        return self.allocator.allocate(), False

    def _owns_kind(self, elements: Sequence[Element], group_id: str, kind: str) -> bool:
        return any(
            not element.get("isDeleted") and self._is_superseded(element, group_id, kind)
            for element in elements
        )

    def _is_superseded(self, element: Element, group_id: str, kind: str) -> bool:
        if primary_group_id(element) != group_id:
            return False
        return is_note_element(element) == (kind == "note")

    def _materialize_note(
        self,
        body: str,
        title: str | None,
        group_id: str,
        elements: Sequence[Element],
    ) -> list[Element]:
        size = self.notes.note_size(body, title)
        position = self.layout.place(elements, "note", group_id, size.width, size.height)
        return self.notes.build_note(body, position, group_id, title)

    async def _materialize_diagram(
        self,
        block: ContentBlock,
        group_id: str,
        elements: Sequence[Element],
    ) -> list[Element]:
        markup = block.text("\n")
        try:
            raw_elements = await self._parse(markup)
            return self._place_diagram(raw_elements, block.title, group_id, elements)
        except (DiagramParseError, DiagramNormalizationError) as exc:
            logger.warning("Rendering error card for %s: %s", group_id, exc)
            return self._error_card(str(exc), markup, block.title, group_id, elements)

    async def _parse(self, markup: str) -> list[Any]:
        try:
            result = await self.parser.parse(markup)
        except DiagramParseError as exc:
            logger.warning("Diagram parse failed (%s); retrying with sanitized markup", exc)
            result = await self.parser.parse(sanitize_markup(markup))
        raw_elements = result.get("elements") if isinstance(result, Mapping) else None
        if not isinstance(raw_elements, list):
            raise DiagramNormalizationError("Diagram parser returned no element list")
        return raw_elements

    def _place_diagram(
        self,
        raw_elements: Sequence[Any],
        title: str | None,
        group_id: str,
        elements: Sequence[Element],
    ) -> list[Element]:
        bounds = self.normalizer.measure(raw_elements)
        heading_band = DIAGRAM_HEADING_OFFSET if title else 0.0
        heading_width = (
            self.factory.measure_text(title, DIAGRAM_HEADING_FONT_SIZE).width if title else 0.0
        )
        position = self.layout.place(
            elements,
            "diagram",
            group_id,
            max(bounds.width, heading_width) or None,
            (bounds.height + heading_band) or None,
        )
        origin = Point(position.x, position.y + heading_band)
        normalized = self.normalizer.normalize(raw_elements, origin, group_id)
        if not title:
            return normalized
        heading = self.factory.text(
            x=origin.x,
            y=origin.y - DIAGRAM_HEADING_OFFSET,
            text=title,
            width=bounds.width,
            font_size=DIAGRAM_HEADING_FONT_SIZE,
        )
        with_metadata(heading, "diagram_heading", note_element=False)
        return [tag_group(heading, group_id), *normalized]

    def _error_card(
        self,
        error: str,
        markup: str,
        title: str | None,
        group_id: str,
        elements: Sequence[Element],
    ) -> list[Element]:
        message = self.notes.error_message(error, markup)
        size = self.notes.error_card_size(message, title)
        position = self.layout.place(elements, "note", group_id, size.width, size.height)
        return self.notes.build_error_card(message, position, group_id, title)

    async def _confirm(self, host: CanvasHost, created: Sequence[Element]) -> None:
        text_ids = {element["id"] for element in created if element.get("type") == "text"}
        if not text_ids:
            return
        current = list(host.get_scene_elements())
        confirmed = [
            bump_render_version(element) if element.get("id") in text_ids else element
            for element in current
        ]
        host.update_scene(confirmed, commit_mode="never")
        await self._settle(host)
        logger.debug("Confirmed %d text elements", len(text_ids))

    async def _settle(self, host: CanvasHost) -> None:
        settle = getattr(host, "settle", None)
        if callable(settle):
            await settle()
        else:
            await asyncio.sleep(self.config.settle_delay_seconds)
