from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from adapters.canvas.file_host import FileSystemCanvasHost
from adapters.excalidraw.url_encoder import ShareUrlTooLongError, build_share_url
from adapters.filesystem.json_utils import load_json
from adapters.filesystem.scene_repository import FileSystemSceneRepository
from app.config import AppSettings, load_settings
from app.wiring import build_session
from domain.models import ContentBlock, UpdateDecision

app = typer.Typer(no_args_is_help=True)
console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _settings(config_path: Path | None) -> AppSettings:
    settings = load_settings(config_path)
    configure_logging(settings.log_level)
    return settings


def _read_transcript(path: Path) -> list[dict[str, Any]]:
    data = load_json(path)
    if not isinstance(data, list):
        msg = "Transcript must be a JSON list of {utterance, response} turns"
        raise ValueError(msg)
    turns: list[dict[str, Any]] = []
    for index, turn in enumerate(data):
        if not isinstance(turn, dict) or "response" not in turn:
            msg = f"Turn {index} is missing a response"
            raise ValueError(msg)
        turns.append(turn)
    return turns


async def _replay(
    settings: AppSettings,
    turns: list[dict[str, Any]],
    scene_path: Path,
) -> list[UpdateDecision]:
    session = build_session(settings)
    host = FileSystemCanvasHost(scene_path)
    decisions: list[UpdateDecision] = []
    for turn in turns:
        decision = await session.handle_response(
            turn["response"], str(turn.get("utterance") or ""), host
        )
        decisions.append(decision)
    return decisions


@app.command("replay")
def replay(
    transcript: Path = typer.Argument(..., help="JSON list of {utterance, response} turns."),
    scene: Path = typer.Option(Path("data/scenes/replay.excalidraw"), help="Scene file to write."),
    config: Path | None = typer.Option(None, help="YAML settings file."),
    continuous: bool = typer.Option(True, help="Treat consecutive turns as one conversation."),
) -> None:
    settings = _settings(config)
    settings.reconciler.continuous_mode = continuous
    if not transcript.exists():
        console.print(f"[red]File not found:[/] {transcript}")
        raise typer.Exit(code=1)
    try:
        turns = _read_transcript(transcript)
    except ValueError as exc:
        console.print(f"[red]Invalid transcript:[/] {exc}")
        raise typer.Exit(code=1) from exc

    decisions = asyncio.run(_replay(settings, turns, scene))

    table = Table(title=f"Replayed {len(decisions)} turns")
    table.add_column("#", justify="right")
    table.add_column("Utterance")
    table.add_column("Decision")
    table.add_column("Group")
    table.add_column("Topic")
    for index, (turn, decision) in enumerate(zip(turns, decisions), start=1):
        table.add_row(
            str(index),
            str(turn.get("utterance") or ""),
            "[yellow]update[/]" if decision.is_update else "[green]new[/]",
            decision.group_id,
            decision.topic or "-",
        )
    console.print(table)
    element_count = len(FileSystemSceneRepository().load(scene).elements)
    console.print(f"[green]Wrote[/] {scene} ({element_count} elements)")


@app.command("validate")
def validate(block_file: Path = typer.Argument(..., help="Content block JSON file to validate.")) -> None:
    if not block_file.exists():
        console.print(f"[red]File not found:[/] {block_file}")
        raise typer.Exit(code=1)
    try:
        raw = load_json(block_file)
        block = ContentBlock.model_validate(raw)
    except (ValueError, ValidationError) as exc:
        console.print(f"[red]Validation failed:[/] {exc}")
        raise typer.Exit(code=1) from exc

    declared = raw.get("kind", raw.get("type")) if isinstance(raw, dict) else None
    if declared != block.kind:
        console.print(f"[yellow]Block downgraded to {block.kind}[/] (declared {declared!r})")
    console.print(f"[green]Valid {block.kind} block:[/] {block.title or '(untitled)'}")
    for child in block.children:
        console.print(f"  - {child.kind}: {child.title or '(untitled)'}")


@app.command("open-url")
def open_url(
    scene: Path = typer.Argument(..., help="Scene file to share."),
    config: Path | None = typer.Option(None, help="YAML settings file."),
) -> None:
    settings = _settings(config)
    repository = FileSystemSceneRepository()
    if not repository.exists(scene):
        console.print(f"[red]File not found:[/] {scene}")
        raise typer.Exit(code=1)
    try:
        url = build_share_url(
            settings.web.excalidraw_base_url,
            repository.load(scene),
            settings.web.max_url_length,
        )
    except ShareUrlTooLongError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    console.print(url, soft_wrap=True)


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8080, help="Port to bind."),
) -> None:
    import uvicorn

    configure_logging(load_settings().log_level)
    uvicorn.run("app.web_main:app", host=host, port=port)


if __name__ == "__main__":
    app()
