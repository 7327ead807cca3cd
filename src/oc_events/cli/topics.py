"""Topic registry commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from oc_events.cli.common import echo_json
from oc_events.cli.common import fail
from oc_events.cli.common import get_bus
from oc_events.cli.common import handle_errors

app = typer.Typer(help="Manage topics", no_args_is_help=True)


@app.command(name="list")
def list_topics() -> None:
    """List topics."""
    with handle_errors():
        rows = get_bus().list_topics()
    echo_json(rows)


@app.command(name="show")
def show_topic(name: str = typer.Argument(..., help="Topic name")) -> None:
    """Show one topic."""
    with handle_errors():
        topic = get_bus().get_topic(name)
    if topic is None:
        fail(f"Topic not found: {name}")
    echo_json(topic)


@app.command(name="create")
def create_topic(
    name: str = typer.Argument(..., help="Topic name"),
    prompt: str = typer.Option(..., "--prompt", help="System prompt"),
    description: Optional[str] = typer.Option(None, "--description", help="Topic description"),
) -> None:
    """Create a topic with an inline prompt."""
    with handle_errors():
        topic = get_bus().upsert_topic(name, system_prompt=prompt, description=description)
    echo_json(topic)


@app.command(name="set-prompt")
def set_prompt(
    name: str = typer.Argument(..., help="Topic name"),
    prompt_file: Path = typer.Option(..., "--prompt-file", help="Path to prompt file"),
    description: Optional[str] = typer.Option(None, "--description", help="Topic description"),
) -> None:
    """Create or update a topic prompt from a file."""
    try:
        prompt = prompt_file.read_text(encoding="utf-8")
    except OSError as e:
        fail(f"Cannot read prompt file {prompt_file}: {e}")
    with handle_errors():
        topic = get_bus().upsert_topic(name, system_prompt=prompt, description=description)
    echo_json(topic)
