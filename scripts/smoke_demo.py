from __future__ import annotations

import argparse
import json
import time
import urllib.error
import urllib.request
import uuid


def fetch(url: str, data: dict | None = None) -> tuple[int, bytes]:
    body = json.dumps(data).encode("utf-8") if data is not None else None
    req = urllib.request.Request(url, data=body, method="POST" if body else "GET")
    if body:
        req.add_header("Content-Type", "application/json")
    with urllib.request.urlopen(req, timeout=10) as resp:
        return resp.status, resp.read()


def wait_for(url: str, timeout: int) -> bytes:
    deadline = time.time() + timeout
    last_error: Exception | None = None
    while time.time() < deadline:
        try:
            status, body = fetch(url)
            if status == 200:
                return body
        except (urllib.error.URLError, OSError) as exc:
            last_error = exc
        time.sleep(1)
    raise RuntimeError(f"Timed out waiting for {url}: {last_error}")


def post_turn(base: str, session_id: str, utterance: str, response: dict) -> dict:
    status, body = fetch(
        f"{base}/api/sessions/{session_id}/responses",
        {"utterance": utterance, "response": response},
    )
    if status != 200:
        raise RuntimeError(f"Response endpoint returned {status}")
    return json.loads(body.decode("utf-8"))


def main() -> None:
    parser = argparse.ArgumentParser(description="Smoke test against a running voice-canvas server.")
    parser.add_argument("--server", default="http://localhost:8080")
    parser.add_argument("--timeout", type=int, default=60)
    args = parser.parse_args()

    base = args.server.rstrip("/")
    session_id = f"smoke-{uuid.uuid4().hex[:8]}"

    wait_for(f"{base}/docs", args.timeout)
    created = post_turn(
        base,
        session_id,
        "make a launch checklist",
        {"type": "note", "title": "Launch", "content": ["buy domain"]},
    )
    updated = post_turn(
        base,
        session_id,
        "update the launch checklist",
        {"type": "note", "title": "Launch", "content": ["buy domain", "write docs"]},
    )
    if created["is_update"] or not updated["is_update"]:
        raise RuntimeError(f"Unexpected decisions: {created} then {updated}")
    if updated["group_id"] != created["group_id"]:
        raise RuntimeError("Update landed in a different group")

    scene = json.loads(wait_for(f"{base}/api/sessions/{session_id}/scene", args.timeout))
    live = [element for element in scene.get("elements", []) if not element.get("isDeleted")]
    if len(live) != updated["element_count"]:
        raise RuntimeError("Scene payload does not match reported element count")

    print(f"Smoke test passed ({len(live)} elements in {session_id}).")


if __name__ == "__main__":
    main()
