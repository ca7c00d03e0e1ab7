from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import typer
from rich import print

from . import __version__
from .config import (
    MemWorkerConfig,
    config_as_dict,
    get_config_path,
    load_config,
    read_config_file,
    uses_messages_api,
    write_config_file,
)
from .context_window import estimate_turns_tokens, truncate_transcript
from .session import Turn
from .session_store import DEFAULT_DB_PATH, SqliteSessionStore, resolve_memory_session_id

app = typer.Typer(help="memworker: bounded-concurrency observer worker for Anthropic sessions")


def _load_turns(path: Path) -> list[Turn]:
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as exc:
        print(f"[red]Failed to read transcript: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not isinstance(data, list):
        print("[red]Transcript must be a JSON array of turns[/red]")
        raise typer.Exit(code=1)
    turns: list[Turn] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        text = entry.get("text", entry.get("content"))
        if not isinstance(text, str):
            continue
        role = "assistant" if entry.get("role") == "assistant" else "user"
        turns.append(Turn(role, text))
    return turns


@app.command()
def version() -> None:
    """Print the memworker version."""
    print(__version__)


def _read_config_or_exit(config_path: Path) -> dict[str, Any]:
    try:
        return read_config_file(config_path)
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _write_config_or_exit(data: dict[str, Any], config_path: Path) -> None:
    try:
        write_config_file(data, config_path)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


@app.command()
def config(
    path: str = typer.Option(None, help="Path to config file"),
    show_secrets: bool = typer.Option(False, help="Print the API key unredacted"),
) -> None:
    """Show the effective configuration (file plus environment overrides)."""
    config_path = get_config_path(Path(path) if path else None)
    _read_config_or_exit(config_path)
    cfg = load_config(config_path)
    payload: dict[str, Any] = {
        "path": str(config_path),
        "messages_api": uses_messages_api(cfg),
        "config": config_as_dict(cfg, redact_secrets=not show_secrets),
    }
    typer.echo(json.dumps(payload, indent=2))


@app.command("set-config")
def set_config(
    key: str = typer.Argument(..., help="Config key, e.g. anthropic_concurrency"),
    value: str = typer.Argument(..., help="New value; JSON numbers are stored as numbers"),
    path: str = typer.Option(None, help="Path to config file"),
) -> None:
    """Persist one setting to the config file."""
    known = {item.name for item in fields(MemWorkerConfig)}
    if key not in known:
        print(f"[red]Unknown config key: {key}[/red]")
        raise typer.Exit(code=1)
    config_path = get_config_path(Path(path) if path else None)
    data = _read_config_or_exit(config_path)
    try:
        data[key] = json.loads(value)
    except json.JSONDecodeError:
        data[key] = value
    _write_config_or_exit(data, config_path)
    print(f"[green]Updated {key}[/green] in {config_path}")


@app.command()
def truncate(
    transcript: Path = typer.Argument(..., help="JSON array of {role, text} turns"),
    max_messages: int = typer.Option(None, help="Message budget (defaults to config)"),
    max_tokens: int = typer.Option(None, help="Estimated-token budget (defaults to config)"),
    as_json: bool = typer.Option(False, "--json", help="Print the kept turns as JSON"),
) -> None:
    """Apply the context window to a saved transcript and report what survives."""
    cfg = load_config()
    budget_messages = max_messages if max_messages is not None else cfg.max_context_messages
    budget_tokens = max_tokens if max_tokens is not None else cfg.max_estimated_tokens
    turns = _load_turns(transcript)
    kept = truncate_transcript(turns, budget_messages, budget_tokens)
    if as_json:
        typer.echo(json.dumps([{"role": turn.role, "text": turn.text} for turn in kept], indent=2))
        return
    print(f"[bold]Turns:[/bold] {len(turns)} -> {len(kept)} (dropped {len(turns) - len(kept)})")
    print(f"[bold]Estimated tokens kept:[/bold] {estimate_turns_tokens(kept)}")
    print(f"[bold]Budgets:[/bold] messages={budget_messages} tokens={budget_tokens}")


@app.command()
def identity(
    session_db_id: int = typer.Argument(..., help="Session row id"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Resolve (or mint and persist) a session's memory-session id."""
    store = SqliteSessionStore(db_path or DEFAULT_DB_PATH)
    try:
        memory_session_id, minted = resolve_memory_session_id(store, session_db_id)
    finally:
        store.close()
    status = "generated" if minted else "restored"
    print(f"{memory_session_id} [dim]({status})[/dim]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
