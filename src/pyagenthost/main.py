from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .app_context import AppContext
from .context.assembler import ContextAssembler
from .errors import AgentHostError, ConfigParseError
from .events.store import EventStore
from .permissions.models import parse_mode
from .pipeline.execution import ToolCallRequest
from .util.log import configure_logging

app = typer.Typer(add_completion=False, help="pyagenthost: tool execution core for local coding agents.")
console = Console()

DEFAULT_LOG_LEVEL = "INFO"


@app.callback()
def _setup() -> None:
    # Configured before any command loads settings; _build applies the configured level.
    configure_logging(DEFAULT_LOG_LEVEL)


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser().resolve()
    if not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be an existing directory, got: {cwd}")
    return cwd


def _build(cwd: Path, session: str | None, mode: str | None, yes: bool, settings: Path | None) -> AppContext:
    try:
        parsed_mode = parse_mode(mode) if mode else None
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    try:
        ctx = AppContext.from_env(cwd, session, mode=parsed_mode, auto_approve=yes, settings_path=settings)
    except ConfigParseError as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(code=2) from e
    if ctx.settings.log_level != DEFAULT_LOG_LEVEL:
        configure_logging(ctx.settings.log_level)
    return ctx


@app.command()
def call(
    tool: str = typer.Argument(..., help="Tool name, e.g. Read or Bash."),
    params: str = typer.Option("{}", "--params", help="Tool parameters as a JSON object."),
    mode: str = typer.Option(None, "--mode", help="Permission mode: default, auto_edit, plan or yolo."),
    yes: bool = typer.Option(False, "--yes", help="Approve calls that would ask for confirmation."),
    session: str = typer.Option(None, "--session", help="Session id to append to (default creates new)."),
    cwd: Path = typer.Option(None, "--cwd", help="Project root. Defaults to current directory."),
    settings: Path = typer.Option(None, "--settings", help="Extra settings file, highest priority."),
):
    """Run one tool call through the full pipeline."""
    try:
        args = json.loads(params)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--params is not valid JSON: {e}") from e
    if not isinstance(args, dict):
        raise typer.BadParameter("--params must be a JSON object")

    ctx = _build(_resolve_cwd(cwd), session, mode, yes, settings)

    async def _run():
        try:
            return await ctx.pipeline.execute(ToolCallRequest(tool_name=tool, params=args, session_id=ctx.session_id))
        finally:
            await ctx.close()

    result = asyncio.run(_run())
    style = "green" if result.success else "red"
    title = f"{tool}  [dim]{ctx.session_id}[/dim]"
    console.print(Panel(result.display_content or result.llm_content, title=title, border_style=style))
    if result.error is not None:
        console.print(f"[{style}]error[/{style}] {result.error.type}: {result.error.message}")
        raise typer.Exit(code=1)


@app.command()
def context(
    session: str = typer.Argument(..., help="Session id."),
    system: str = typer.Option("", "--system", help="System prompt to count into the token total."),
    as_json: bool = typer.Option(False, "--json", help="Print the layered context as JSON."),
):
    """Print the layered context rebuilt from a session log."""
    store = EventStore.open(session)
    layered = ContextAssembler().assemble_layered(store.iter_events(), system=system)
    if layered is None:
        console.print(f"[yellow]No events for session {session}[/yellow]")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(layered.to_dict(), ensure_ascii=False, indent=2, default=str))
        return

    meta = layered.metadata
    console.print(
        Panel.fit(
            f"session: {layered.session.session_id}\ncwd: {layered.session.cwd}\n"
            f"messages: {len(layered.conversation.messages)}\ntool calls: {len(layered.tool.recent_calls)}\n"
            f"tokens: ~{meta.total_tokens}",
            title="Context",
        )
    )
    if layered.conversation.summary:
        console.print(Panel(layered.conversation.summary, title="Summary", border_style="magenta"))

    table = Table("id", "tool", "status", "error")
    for c in layered.tool.recent_calls:
        table.add_row(c.id, c.name, c.status, (c.error or {}).get("type", ""))
    console.print(table)


@app.command()
def sessions():
    """List session logs, newest first."""
    ids = EventStore.list_sessions()
    if not ids:
        console.print("No sessions found.")
        return
    table = Table("session", "events", "modified")
    for sid in ids:
        store = EventStore.open(sid)
        mtime = datetime.fromtimestamp(store.path.stat().st_mtime).strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(sid, str(len(store.iter_events())), mtime)
    console.print(table)


@app.command()
def compact(
    session: str = typer.Argument(..., help="Session id."),
    force: bool = typer.Option(False, "--force", help="Compact even below the token threshold."),
    cwd: Path = typer.Option(None, "--cwd", help="Project root. Defaults to current directory."),
):
    """Append a summary to a session when it is over its token threshold."""
    if session not in EventStore.list_sessions():
        console.print(f"[red]Unknown session:[/red] {session}")
        raise typer.Exit(code=1)
    ctx = _build(_resolve_cwd(cwd), session, None, False, None)
    try:
        result = asyncio.run(ctx.compactor.maybe_compact(force=force))
    except AgentHostError as e:
        console.print(f"[red]Compaction failed:[/red] {e}")
        raise typer.Exit(code=1) from e
    if result is None:
        console.print("Nothing to compact.")
        return
    console.print(
        Panel.fit(
            f"summary message: {result.summary_message_id}\ncutoff: {result.cutoff_message_id}\n"
            f"tokens before: {result.tokens_before}",
            title="Compacted",
        )
    )


if __name__ == "__main__":
    app()
