from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi.testclient import TestClient

from app.config import AppSettings
from app.web_main import create_app


def _groceries(*items: str) -> dict[str, Any]:
    return {"type": "note", "title": "Groceries", "content": list(items)}


def _client(app_settings_factory: Callable[..., AppSettings], **overrides: Any) -> TestClient:
    return TestClient(create_app(app_settings_factory(**overrides)))


def test_post_response_creates_then_updates(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)

    created = client.post(
        "/api/sessions/demo/responses",
        json={"utterance": "make a grocery list", "response": _groceries("milk")},
    )
    updated = client.post(
        "/api/sessions/demo/responses",
        json={"utterance": "update the groceries", "response": _groceries("milk", "eggs")},
    )

    assert created.status_code == 200
    assert created.json()["is_update"] is False
    assert created.json()["element_count"] == 3
    body = updated.json()
    assert body["is_update"] is True
    assert body["group_id"] == created.json()["group_id"]
    assert body["matched_topic"] == "groceries"
    assert body["element_count"] == 3


def test_scene_endpoint_returns_document(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)
    client.post(
        "/api/sessions/demo/responses",
        json={
            "utterance": "draw the deploy flow",
            "response": '{"type": "diagram", "content": "graph TD\\nA[Build] --> B[Ship]"}',
        },
    )

    response = client.get("/api/sessions/demo/scene")

    assert response.status_code == 200
    scene = response.json()
    assert scene["type"] == "excalidraw"
    texts = [element.get("text") for element in scene["elements"]]
    assert "Build" in texts and "Ship" in texts


def test_sessions_are_isolated(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)

    client.post("/api/sessions/alpha/responses", json={"response": _groceries("milk")})

    assert client.get("/api/sessions/alpha/scene").status_code == 200
    assert client.get("/api/sessions/beta/scene").status_code == 404


def test_idle_sessions_are_evicted_but_scenes_survive(
    app_settings_factory: Callable[..., AppSettings],
) -> None:
    client = _client(app_settings_factory, max_sessions=1)

    client.post("/api/sessions/alpha/responses", json={"response": _groceries("milk")})
    client.post("/api/sessions/beta/responses", json={"response": _groceries("eggs")})

    assert list(client.app.state.store.slots) == ["beta"]
    assert client.get("/api/sessions/alpha/scene").status_code == 200


def test_open_redirects_to_share_url(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)
    client.post("/api/sessions/demo/responses", json={"response": _groceries("milk")})

    response = client.get("/api/sessions/demo/open", follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"].startswith("http://testserver/excalidraw#json=")


def test_open_rejects_oversized_scene(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory, max_url_length=50)
    client.post("/api/sessions/demo/responses", json={"response": _groceries("milk")})

    response = client.get("/api/sessions/demo/open", follow_redirects=False)

    assert response.status_code == 413


def test_open_missing_scene(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)

    assert client.get("/api/sessions/nothing/open", follow_redirects=False).status_code == 404


def test_clear_history_starts_new_group(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)
    first = client.post(
        "/api/sessions/demo/responses",
        json={"utterance": "make a grocery list", "response": _groceries("milk")},
    ).json()

    cleared = client.delete("/api/sessions/demo/history").json()
    after = client.post(
        "/api/sessions/demo/responses",
        json={"utterance": "update the groceries", "response": _groceries("bread")},
    ).json()

    assert cleared["cleared"] is True
    assert cleared["group_id"] != first["group_id"]
    assert after["topic"] == "groceries"
    assert after["is_update"] is False
    assert after["group_id"] != first["group_id"]


def test_invalid_session_id_is_rejected(app_settings_factory: Callable[..., AppSettings]) -> None:
    client = _client(app_settings_factory)

    assert client.get("/api/sessions/bad.id/scene").status_code == 400
    assert client.post("/api/sessions/bad.id/responses", json={"response": "hi"}).status_code == 400


def test_missing_response_field_is_unprocessable(
    app_settings_factory: Callable[..., AppSettings],
) -> None:
    client = _client(app_settings_factory)

    assert client.post("/api/sessions/demo/responses", json={"utterance": "hi"}).status_code == 422
