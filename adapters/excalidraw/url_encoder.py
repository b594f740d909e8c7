from __future__ import annotations

import json
from typing import Any, cast

from lzstring import LZString  # type: ignore[import-untyped]

from domain.models import ExcalidrawDocument


class ShareUrlTooLongError(ValueError):
    pass


def encode_scene_payload(scene: dict[str, Any]) -> str:
    payload = json.dumps(scene, ensure_ascii=True, separators=(",", ":"))
    encoded = LZString().compressToEncodedURIComponent(payload)
    return cast(str, encoded)


def decode_scene_payload(encoded: str) -> dict[str, Any]:
    payload = LZString().decompressFromEncodedURIComponent(encoded)
    if not payload:
        msg = "Share payload could not be decompressed"
        raise ValueError(msg)
    data = json.loads(payload)
    return data if isinstance(data, dict) else {}


def build_excalidraw_url(base_url: str, scene: dict[str, Any]) -> str:
    clean_base = base_url.split("#", 1)[0]
    encoded = encode_scene_payload(scene)
    return f"{clean_base}#json={encoded}"


def build_share_url(
    base_url: str,
    document: ExcalidrawDocument,
    max_length: int | None = None,
) -> str:
    live = [element for element in document.elements if not element.get("isDeleted")]
    url = build_excalidraw_url(
        base_url,
        {
            "type": "excalidraw",
            "version": 2,
            "elements": live,
            "appState": {"viewBackgroundColor": "#ffffff"},
        },
    )
    if max_length is not None and len(url) > max_length:
        msg = f"Share URL is {len(url)} characters, limit is {max_length}"
        raise ShareUrlTooLongError(msg)
    return url
