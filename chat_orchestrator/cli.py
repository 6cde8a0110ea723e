"""
chat-orchestrator CLI.

Commands:
- chat: interactive local chat against the in-process agent
- serve: run the HTTP API

Usage:
    chat-orchestrator chat --user-id demo-user
    chat-orchestrator chat --user-id demo-user --no-stream --provider gemini
    chat-orchestrator serve --port 8080

Chat commands: 'exit' to quit, 'new' for a fresh session, 'history' to list
the session's messages, 'clear' to clear the screen.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from chat_orchestrator.config import Settings
from chat_orchestrator.errors import OrchestratorError
from chat_orchestrator.logging_config import setup_logging
from chat_orchestrator.models import Action
from chat_orchestrator.runtime import Runtime
from chat_orchestrator.shell.agent import ChatRequest
from chat_orchestrator.shell.streaming import StreamEventType

console = Console()


def _settings(provider: Optional[str]) -> Settings:
    settings = Settings.from_env()
    if provider:
        settings = dataclasses.replace(settings, model_provider=provider)
    return settings


def _print_action(action: Action) -> None:
    payload = json.dumps(action.to_dict()["payload"], default=str)
    console.print(f"[magenta]⚡ {action.type}[/magenta] [dim]{payload}[/dim]")


@click.group()
def cli():
    """Chat orchestrator - conversational agent layer for the workout app."""
    pass


# =============================================================================
# CHAT
# =============================================================================

@cli.command("chat")
@click.option("--user-id", required=True, help="User to chat as")
@click.option("--session-id", default=None, help="Resume an existing session")
@click.option("--stream/--no-stream", default=True, help="Stream reply chunks as they arrive")
@click.option("--provider", type=click.Choice(["rules", "gemini"]), default=None,
              help="Model provider (default: MODEL_PROVIDER or rules)")
def chat(user_id: str, session_id: Optional[str], stream: bool, provider: Optional[str]):
    """Interactive chat loop."""
    settings = _settings(provider)
    setup_logging(settings)

    with Runtime(settings) as runtime:
        runtime.bridge.subscribe(_print_action)
        console.print(Panel(f"💬 Chatting as: {user_id} ({runtime.provider.name})", style="bold green"))
        console.print("Commands: 'exit' to quit, 'new' for a new session, 'history', 'clear'\n")

        while True:
            try:
                message = Prompt.ask("[green]You[/green]")
            except (KeyboardInterrupt, EOFError):
                break

            command = message.strip().lower()
            if command == "exit":
                break
            if command == "clear":
                console.clear()
                continue
            if command == "new":
                session_id = None
                console.print("[dim]Next message starts a new session[/dim]")
                continue
            if command == "history":
                _show_history(runtime, session_id)
                continue

            request = ChatRequest(user_id=user_id, message=message, session_id=session_id, streaming=stream)
            try:
                if stream:
                    session_id = _stream_reply(runtime, request) or session_id
                else:
                    response = runtime.run(runtime.agent.handle_message(request))
                    session_id = response.session_id
                    console.print(f"[cyan]Coach[/cyan]: {response.message}")
            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted[/yellow]")
            except OrchestratorError as e:
                console.print(f"[red]{e.code}: {e.message}[/red]")

    console.print("[dim]Bye[/dim]")


def _stream_reply(runtime: Runtime, request: ChatRequest) -> Optional[str]:
    response = runtime.run(runtime.agent.stream_message(request))
    session_id = None
    console.print("[cyan]Coach[/cyan]: ", end="")
    events = runtime.iterate(response)
    try:
        for event in events:
            if event.type is StreamEventType.CHUNK:
                console.print(event.text, end="", markup=False, highlight=False)
            elif event.type is StreamEventType.DONE:
                session_id = event.data.get("sessionId")
            else:
                console.print(f"\n[red]{event.error.code}: {event.error.message}[/red]")
    finally:
        events.close()
        console.print()
    return session_id


def _show_history(runtime: Runtime, session_id: Optional[str]) -> None:
    if not session_id:
        console.print("[dim]No session yet[/dim]")
        return
    messages = runtime.run(runtime.sessions.get_history(session_id))
    table = Table(title=f"Session {session_id}")
    table.add_column("#", style="dim")
    table.add_column("Role", style="cyan")
    table.add_column("Content", style="white")
    table.add_column("Tools", style="magenta")
    for m in messages:
        content = m.content + (" [interrupted]" if m.interrupted else "")
        table.add_row(str(m.seq), m.role.value, content, ", ".join(c.name for c in m.tool_calls))
    console.print(table)


# =============================================================================
# SERVE
# =============================================================================

@cli.command("serve")
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8080, type=int, help="Port")
@click.option("--provider", type=click.Choice(["rules", "gemini"]), default=None)
def serve(host: str, port: int, provider: Optional[str]):
    """Run the HTTP API."""
    from chat_orchestrator.server import create_app

    settings = _settings(provider)
    setup_logging(settings)
    try:
        runtime = Runtime(settings).start()
    except Exception as e:
        click.echo(click.style(f"✗ Failed to start: {e}", fg="red"), err=True)
        sys.exit(1)
    try:
        create_app(runtime).run(host=host, port=port, threaded=True)
    finally:
        runtime.close()


if __name__ == "__main__":
    cli()
