from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse, RedirectResponse
from pydantic import BaseModel

from adapters.canvas.file_host import FileSystemCanvasHost
from adapters.excalidraw.url_encoder import ShareUrlTooLongError, build_share_url
from adapters.filesystem.scene_repository import FileSystemSceneRepository
from app.config import AppSettings, load_settings
from app.wiring import build_session
from domain.ports.diagram_parser import DiagramParser
from domain.services.canvas_session import CanvasSession

logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"^[A-Za-z0-9_\-]{1,64}$")


class ResponsePayload(BaseModel):
    utterance: str = ""
    response: dict[str, Any] | list[Any] | str
    continuous_mode: bool | None = None


@dataclass
class SessionSlot:
    session: CanvasSession
    host: FileSystemCanvasHost
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@dataclass
class SessionStore:
    """Sessions sharded by id; each one owns its registry, history and scene file.

    At most ``web.max_sessions`` stay in memory. Idle sessions are evicted least recently
    used first; their scene files stay on disk.
    """

    settings: AppSettings
    parser: DiagramParser | None = None
    slots: OrderedDict[str, SessionSlot] = field(default_factory=OrderedDict)

    def scene_path(self, session_id: str) -> Path:
        return self.settings.web.scene_dir / f"{session_id}.excalidraw"

    def get(self, session_id: str) -> SessionSlot:
        slot = self.slots.get(session_id)
        if slot is None:
            slot = SessionSlot(
                session=build_session(self.settings, self.parser),
                host=FileSystemCanvasHost(self.scene_path(session_id)),
            )
            self.slots[session_id] = slot
            logger.info("Opened session %s", session_id)
        self.slots.move_to_end(session_id)
        self._evict(keep=session_id)
        return slot

    def _evict(self, keep: str) -> None:
        excess = len(self.slots) - self.settings.web.max_sessions
        if excess <= 0:
            return
        idle = [
            key for key, slot in self.slots.items() if key != keep and not slot.lock.locked()
        ]
        for session_id in idle[:excess]:
            del self.slots[session_id]
            logger.info("Evicted idle session %s", session_id)


def create_app(settings: AppSettings, parser: DiagramParser | None = None) -> FastAPI:
    app = FastAPI(title=settings.web.title)
    store = SessionStore(settings=settings, parser=parser)
    app.state.store = store
    scene_repo = FileSystemSceneRepository()

    @app.post("/api/sessions/{session_id}/responses")
    async def post_response(
        session_id: str,
        payload: ResponsePayload,
        store: SessionStore = Depends(get_store),
    ) -> ORJSONResponse:
        slot = store.get(validate_session_id(session_id))
        async with slot.lock:
            if payload.continuous_mode is not None:
                slot.session.continuous_mode = payload.continuous_mode
            decision = await slot.session.handle_response(
                payload.response, payload.utterance, slot.host
            )
            elements = slot.host.get_scene_elements()
        return ORJSONResponse(
            {
                "is_update": decision.is_update,
                "group_id": decision.group_id,
                "topic": decision.topic,
                "matched_topic": decision.matched_topic,
                "element_count": len(elements),
            }
        )

    @app.get("/api/sessions/{session_id}/scene")
    async def get_scene(
        session_id: str,
        store: SessionStore = Depends(get_store),
    ) -> ORJSONResponse:
        path = store.scene_path(validate_session_id(session_id))
        if not scene_repo.exists(path):
            raise HTTPException(status_code=404, detail="Scene not found")
        return ORJSONResponse(scene_repo.load(path).to_dict())

    @app.delete("/api/sessions/{session_id}/history")
    async def clear_history(
        session_id: str,
        store: SessionStore = Depends(get_store),
    ) -> ORJSONResponse:
        slot = store.get(validate_session_id(session_id))
        async with slot.lock:
            group_id = slot.session.clear_history()
        return ORJSONResponse({"cleared": True, "group_id": group_id})

    @app.get("/api/sessions/{session_id}/open")
    async def open_scene(
        session_id: str,
        store: SessionStore = Depends(get_store),
    ) -> RedirectResponse:
        path = store.scene_path(validate_session_id(session_id))
        if not scene_repo.exists(path):
            raise HTTPException(status_code=404, detail="Scene not found")
        try:
            url = build_share_url(
                settings.web.excalidraw_base_url,
                scene_repo.load(path),
                settings.web.max_url_length,
            )
        except ShareUrlTooLongError as exc:
            raise HTTPException(status_code=413, detail=str(exc)) from exc
        return RedirectResponse(url=url)

    return app


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def validate_session_id(session_id: str) -> str:
    if not _SESSION_ID.match(session_id):
        raise HTTPException(status_code=400, detail="Invalid session id")
    return session_id


app = create_app(load_settings())
