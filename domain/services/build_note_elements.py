from __future__ import annotations

import re
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass

from domain.models import Element, Point, Size
from domain.services.scene_elements import ElementFactory, tag_group, with_metadata

BULLET = "• "
_LEADING_BULLETS = re.compile(r"^(?:•\s*)+")
_MARKDOWN_BULLET = re.compile(r"^[-*]\s+")

NOTE_STROKE_COLOR = "#3b82f6"
NOTE_BACKGROUND_COLOR = "#eff6ff"
ERROR_STROKE_COLOR = "#ef4444"
ERROR_BACKGROUND_COLOR = "#fee2e2"
ERROR_TIP = "Tip: keep node labels short and avoid parentheses or quotes inside brackets."


def format_note_body(content: str | Sequence[str]) -> str:
    """Render note content as bullet lines, each prefixed with exactly one ``• ``."""
    lines = content.split("\n") if isinstance(content, str) else [str(item) for item in content]
    formatted: list[str] = []
    for line in lines:
        for part in line.split("\n"):
            stripped = part.strip()
            stripped = _LEADING_BULLETS.sub("", stripped)
            stripped = _MARKDOWN_BULLET.sub("", stripped).strip()
            if stripped:
                formatted.append(f"{BULLET}{stripped}")
    return "\n".join(formatted)


@dataclass(frozen=True)
class NoteGeometry:
    char_width: float = 11.0
    min_text_width: float = 400.0
    line_height: float = 28.0
    min_text_height: float = 80.0
    padding_x: float = 20.0
    padding_y: float = 15.0
    heading_offset: float = 50.0
    heading_font_size: float = 24.0
    body_font_size: float = 20.0
    error_width: float = 500.0
    error_height: float = 200.0
    error_font_size: float = 16.0
    error_wrap_width: int = 44


class NoteBuilder:
    """Lays out note cards (frame, heading, bulleted body) and diagram error cards.

    Positions passed to ``build_note``/``build_error_card`` are the top-left corner of the
    whole unit; when a heading is present it occupies the band above the frame.
    """

    def __init__(
        self,
        factory: ElementFactory | None = None,
        geometry: NoteGeometry | None = None,
    ) -> None:
        self.factory = factory or ElementFactory()
        self.geometry = geometry or NoteGeometry()

    def text_size(self, body: str) -> Size:
        lines = body.split("\n")
        longest = max((len(line) for line in lines), default=0)
        # Never reserve less room than the rendered text element will claim.
        rendered = self.factory.measure_text(body, self.geometry.body_font_size)
        return Size(
            max(self.geometry.min_text_width, longest * self.geometry.char_width, rendered.width),
            max(self.geometry.min_text_height, len(lines) * self.geometry.line_height, rendered.height),
        )

    def heading_width(self, title: str | None) -> float:
        if not title:
            return 0.0
        return self.factory.measure_text(title, self.geometry.heading_font_size).width

    def note_size(self, body: str, title: str | None = None) -> Size:
        text = self.text_size(body)
        heading = self.geometry.heading_offset if title else 0.0
        return Size(
            max(text.width + self.geometry.padding_x * 2, self.heading_width(title)),
            text.height + self.geometry.padding_y * 2 + heading,
        )

    def build_note(
        self,
        body: str,
        position: Point,
        group_id: str,
        title: str | None = None,
    ) -> list[Element]:
        geometry = self.geometry
        text = self.text_size(body)
        frame_y = position.y + (geometry.heading_offset if title else 0.0)
        frame = self.factory.rectangle(
            x=position.x,
            y=frame_y,
            width=text.width + geometry.padding_x * 2,
            height=text.height + geometry.padding_y * 2,
            stroke_color=NOTE_STROKE_COLOR,
            background_color=NOTE_BACKGROUND_COLOR,
        )
        elements = [with_metadata(frame, "note_frame", note_element=True)]
        if title:
            heading = self.factory.text(
                x=position.x,
                y=frame_y - geometry.heading_offset,
                text=title,
                width=frame["width"],
                font_size=geometry.heading_font_size,
            )
            elements.append(with_metadata(heading, "note_heading", note_element=True))
        body_text = self.factory.text(
            x=position.x + geometry.padding_x,
            y=frame_y + geometry.padding_y,
            text=body,
            width=text.width,
            height=text.height,
            font_size=geometry.body_font_size,
            text_align="left",
            vertical_align="top",
        )
        elements.append(with_metadata(body_text, "note_body", note_element=True))
        for element in elements:
            tag_group(element, group_id)
        return elements

    def error_message(self, error: str, markup: str) -> str:
        excerpt = markup[:150] + ("..." if len(markup) > 150 else "")
        paragraphs = [f"Could not render diagram: {error}", excerpt, ERROR_TIP]
        wrapped: list[str] = []
        for paragraph in paragraphs:
            for line in paragraph.split("\n"):
                wrapped.extend(textwrap.wrap(line, self.geometry.error_wrap_width) or [""])
        return "\n".join(wrapped).strip()

    def error_card_size(self, message: str, title: str | None = None) -> Size:
        geometry = self.geometry
        lines = message.count("\n") + 1
        text_height = lines * geometry.error_font_size * 1.35 + 10
        heading = geometry.heading_offset if title else 0.0
        return Size(
            max(geometry.error_width, self.heading_width(f"{title} (Error)" if title else None)),
            max(geometry.error_height, text_height + geometry.padding_x * 2) + heading,
        )

    def build_error_card(
        self,
        message: str,
        position: Point,
        group_id: str,
        title: str | None = None,
    ) -> list[Element]:
        geometry = self.geometry
        size = self.error_card_size(message)
        card_y = position.y + (geometry.heading_offset if title else 0.0)
        card = self.factory.rectangle(
            x=position.x,
            y=card_y,
            width=size.width,
            height=size.height,
            stroke_color=ERROR_STROKE_COLOR,
            background_color=ERROR_BACKGROUND_COLOR,
        )
        elements = [with_metadata(card, "error_frame", note_element=False)]
        if title:
            heading = self.factory.text(
                x=position.x,
                y=card_y - geometry.heading_offset,
                text=f"{title} (Error)",
                width=size.width,
                font_size=geometry.heading_font_size,
            )
            elements.append(with_metadata(heading, "error_heading", note_element=False))
        text = self.factory.text(
            x=position.x + geometry.padding_x,
            y=card_y + geometry.padding_x,
            text=message,
            width=size.width - geometry.padding_x * 2,
            font_size=geometry.error_font_size,
            text_align="left",
            vertical_align="top",
        )
        elements.append(with_metadata(text, "error_message", note_element=False))
        for element in elements:
            tag_group(element, group_id)
        return elements
