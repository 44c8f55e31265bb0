"""Pilot CLI: chat with the booking assistant, inspect tools, serve the HTTP API."""

from __future__ import annotations

import dataclasses
import json
import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import load_model_config, load_orchestrator_config, load_plugin_config
from .models.resolve import resolve_provider
from .orchestrator.loop import ChatOrchestrator, LoopState, TurnOutcome
from .plugins import build_from_spec
from .prompts import build_system_prompt
from .storage import create_session_store
from .tools.booking_catalog import BOOKING_CATALOG
from .tools.catalog import ToolCatalog, load_catalog_file
from .tools.mock_booking import create_mock_booking_executor

console = Console()

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    show_default=True,
    help="Log level for library logging.",
)
def cli(log_level: str):
    """✈ Pilot: tool-calling booking assistant"""
    load_dotenv()
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_catalog(catalog_path: str | None) -> ToolCatalog:
    if not catalog_path:
        return BOOKING_CATALOG
    try:
        return load_catalog_file(catalog_path)
    except (OSError, ValueError) as err:
        console.print(f"[red]✗ Could not load tool catalog {catalog_path}: {err}[/red]")
        sys.exit(1)


def _build_orchestrator(
    *,
    model: str | None,
    api_key: str | None,
    catalog_path: str | None,
    emit_provider_note: bool = True,
) -> ChatOrchestrator:
    """Wire config, store, provider, executor and catalog into an orchestrator."""
    try:
        orchestrator_config = load_orchestrator_config()
        model_config = load_model_config()
        plugin_config = load_plugin_config()
    except ValueError as err:
        console.print(f"[red]✗ {err}[/red]")
        sys.exit(1)

    if model:
        model_config = dataclasses.replace(model_config, model=model)
    catalog = _load_catalog(catalog_path or model_config.catalog_path)
    store = create_session_store(orchestrator_config)

    try:
        result = resolve_provider(
            model_config=model_config,
            orchestrator_config=orchestrator_config,
            plugin_config=plugin_config,
            store=store,
            default_system_prompt=lambda: build_system_prompt(catalog, timezone=model_config.timezone),
            api_key=api_key,
        )
        if plugin_config.tool_executor:
            executor = build_from_spec(plugin_config.tool_executor, required_method="execute", catalog=catalog)
        else:
            executor = create_mock_booking_executor()
    except ValueError as err:
        console.print(f"[red]✗ {err}[/red]")
        sys.exit(1)

    if emit_provider_note and result.provider_note:
        console.print(f"  [dim]Using {result.resolved_model} via {result.provider_note}[/dim]")

    return ChatOrchestrator(result.provider, executor, catalog, orchestrator_config)


def _print_outcome(outcome: TurnOutcome, *, show_tools: bool) -> None:
    if show_tools:
        for record in outcome.executions:
            status = "[red]error[/red]" if record.result.is_error else "[green]ok[/green]"
            ran = "" if record.executed else " [dim](not executed)[/dim]"
            console.print(f"  [dim]⚙ {record.tool_call.name}[/dim] {status}{ran}")
    color = "cyan" if outcome.state is LoopState.DONE else "yellow"
    console.print(f"[bold {color}]pilot>[/bold {color}] {outcome.text}")


def _outcome_json(outcome: TurnOutcome) -> dict:
    return {
        "session_id": outcome.session_id,
        "text": outcome.text,
        "state": outcome.state.value,
        "rounds": outcome.rounds,
        "stop_reason": outcome.stop_reason,
        "error": outcome.error,
        "tool_calls": [
            {
                "name": r.tool_call.name,
                "arguments": r.tool_call.arguments,
                "executed": r.executed,
                "is_error": r.result.is_error,
                "result": r.result.result,
            }
            for r in outcome.executions
        ],
        "events": [dataclasses.asdict(event) for event in outcome.events],
    }


_model_option = click.option("--model", "-m", default=None, help="Model identifier (overrides PILOT_MODEL)")
_api_key_option = click.option("--api-key", default=None, help="API key (overrides .env)")
_catalog_option = click.option(
    "--catalog",
    "catalog_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML tool catalog (defaults to the built-in booking tools)",
)


@cli.command()
@_model_option
@_api_key_option
@_catalog_option
@click.option("--session-id", default=None, help="Resume or name a session (default: random)")
@click.option("--show-tools/--no-show-tools", default=True, show_default=True, help="Print tool calls as they happen.")
def chat(model: str | None, api_key: str | None, catalog_path: str | None, session_id: str | None, show_tools: bool):
    """Interactive chat session. Type /reset to start over, /exit to quit."""
    orchestrator = _build_orchestrator(model=model, api_key=api_key, catalog_path=catalog_path)
    session_id = session_id or orchestrator.new_session_id()
    console.print(f"\n[cyan]✈ Pilot chat[/cyan]  [dim]session {session_id}[/dim]\n")

    with orchestrator:
        while True:
            try:
                message = console.input("[bold]you>[/bold] ").strip()
            except (EOFError, KeyboardInterrupt):
                console.print()
                break
            if not message:
                continue
            if message in ("/exit", "/quit"):
                break
            if message == "/reset":
                orchestrator.clear_session(session_id)
                session_id = orchestrator.new_session_id()
                console.print(f"[dim]New session {session_id}[/dim]")
                continue
            outcome = orchestrator.run_turn(session_id, message)
            _print_outcome(outcome, show_tools=show_tools)


@cli.command()
@click.argument("message")
@_model_option
@_api_key_option
@_catalog_option
@click.option("--session-id", default=None, help="Session to continue (default: new session)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full turn outcome as JSON.")
def ask(
    message: str,
    model: str | None,
    api_key: str | None,
    catalog_path: str | None,
    session_id: str | None,
    as_json: bool,
):
    """Send one message and print the reply."""
    orchestrator = _build_orchestrator(
        model=model, api_key=api_key, catalog_path=catalog_path, emit_provider_note=not as_json
    )
    with orchestrator:
        outcome = orchestrator.run_turn(session_id or orchestrator.new_session_id(), message)

    if as_json:
        click.echo(json.dumps(_outcome_json(outcome), indent=2, ensure_ascii=False))
    else:
        _print_outcome(outcome, show_tools=True)

    if outcome.state in (LoopState.FAILED, LoopState.TIMED_OUT):
        sys.exit(1)


@cli.command()
@_catalog_option
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON schemas instead of a table.")
def tools(catalog_path: str | None, as_json: bool):
    """List the tools the assistant can call."""
    catalog = _load_catalog(catalog_path)
    if as_json:
        click.echo(json.dumps(catalog.to_json_schemas(), indent=2, ensure_ascii=False))
        return

    table = Table(title=f"Tools ({len(catalog)})")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Required")
    table.add_column("Description")
    for tool in catalog:
        table.add_row(tool.name, ", ".join(tool.parameters.required) or "-", tool.description)
    console.print(table)


@cli.command()
@_model_option
@_api_key_option
@_catalog_option
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind host.")
@click.option("--port", default=8080, type=int, show_default=True, help="Bind port.")
def serve(model: str | None, api_key: str | None, catalog_path: str | None, host: str, port: int):
    """Serve the chat HTTP API with uvicorn."""
    import uvicorn

    from .server.app import create_app

    orchestrator = _build_orchestrator(model=model, api_key=api_key, catalog_path=catalog_path)
    app = create_app(orchestrator)
    console.print(f"\n[cyan]✈ Pilot API[/cyan] on http://{host}:{port}/api/chat\n")
    with orchestrator:
        uvicorn.run(app, host=host, port=port, log_level=logging.getLevelName(logging.getLogger().level).lower())


if __name__ == "__main__":
    cli()
