from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

METADATA_SCHEMA_VERSION = "1.0"
CUSTOM_DATA_KEY = "vcanvas"
GROUP_ID_PREFIX = "group_"

BlockKind = Literal["note", "diagram", "multi"]
PlacementKind = Literal["note", "diagram"]
BLOCK_KINDS = {"note", "diagram", "multi"}

Element = dict[str, Any]


def _raw_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return orjson.dumps(value).decode("utf-8")
    except TypeError:
        return str(value)


def _coerce_lines(value: Any) -> str | list[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [item if isinstance(item, str) else _raw_text(item) for item in value if item is not None]
    return _raw_text(value)


class ContentBlock(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: BlockKind = Field(validation_alias=AliasChoices("kind", "type"))
    title: str | None = None
    content: str | list[str] | list[ContentBlock] = Field(
        default="",
        validation_alias=AliasChoices("content", "body"),
    )
    group_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("group_id", "groupId"),
    )

    @model_validator(mode="before")
    @classmethod
    def downgrade_malformed(cls, data: Any) -> Any:
        if isinstance(data, BaseModel):
            return data
        if not isinstance(data, dict):
            return {"kind": "note", "content": _raw_text(data)}
        payload = dict(data)
        kind = payload.pop("type", None)
        kind = payload.pop("kind", kind)
        content = payload.pop("body", None)
        content = payload.pop("content", content)
        title = payload.get("title")
        if title is not None and not isinstance(title, str):
            payload["title"] = None
        if kind not in BLOCK_KINDS or (kind == "multi" and not isinstance(content, list)):
            payload["kind"] = "note"
            payload["content"] = _coerce_lines(content)
            return payload
        payload["kind"] = kind
        if kind == "multi":
            payload["content"] = [item for item in content if isinstance(item, (dict, ContentBlock))]
        else:
            payload["content"] = _coerce_lines(content)
        return payload

    @property
    def children(self) -> list[ContentBlock]:
        if self.kind != "multi" or not isinstance(self.content, list):
            return []
        return [item for item in self.content if isinstance(item, ContentBlock)]

    def text(self, separator: str = "\n") -> str:
        if isinstance(self.content, str):
            return self.content
        if self.kind == "multi":
            return separator.join(child.text(separator) for child in self.children)
        return separator.join(item for item in self.content if isinstance(item, str))

    def raw_text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return _raw_text(
            [item.model_dump(by_alias=False) if isinstance(item, ContentBlock) else item for item in self.content]
        )

    def with_group(self, group_id: str) -> ContentBlock:
        return self.model_copy(update={"group_id": group_id})


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str | ContentBlock
    timestamp: float = 0.0

    def block_kind(self) -> str | None:
        if isinstance(self.content, ContentBlock):
            return self.content.kind
        if self.role != "assistant":
            return None
        # Assistant turns may be stored as the raw JSON the model returned.
        try:
            payload = orjson.loads(self.content)
        except orjson.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        kind = payload.get("kind", payload.get("type"))
        return kind if isinstance(kind, str) else None

    def text(self) -> str:
        if isinstance(self.content, ContentBlock):
            return self.content.text()
        return self.content


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Size:
    width: float
    height: float


@dataclass(frozen=True)
class BoundingBox:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center_x(self) -> float:
        return self.min_x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.min_y + self.height / 2


@dataclass(frozen=True)
class UpdateDecision:
    is_update: bool
    group_id: str
    topic: str | None = None
    matched_topic: str | None = None


@dataclass(frozen=True)
class ExcalidrawDocument:
    elements: list[Element]
    app_state: dict
    files: dict

    def to_dict(self) -> dict:
        return {
            "type": "excalidraw",
            "version": 2,
            "source": "voice-canvas",
            "elements": self.elements,
            "appState": self.app_state,
            "files": self.files,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExcalidrawDocument:
        return cls(
            elements=list(data.get("elements") or []),
            app_state=dict(data.get("appState") or {}),
            files=dict(data.get("files") or {}),
        )
