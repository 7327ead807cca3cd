"""Saved context commands.

The saved context is the "current scope" used when a command is run without
explicit ``--org``/``--workspace``/``--project``/``--repo`` flags.
"""

from __future__ import annotations

from typing import Optional

import typer

from oc_events.cli.common import echo_json
from oc_events.cli.common import get_bus
from oc_events.cli.common import handle_errors
from oc_events.cli.common import org_option
from oc_events.cli.common import project_option
from oc_events.cli.common import repo_option
from oc_events.cli.common import resolve
from oc_events.cli.common import workspace_option

app = typer.Typer(help="Manage the saved scope context", no_args_is_help=True)


@app.command(name="show")
def show_context(
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
) -> None:
    """Show the saved context and the scope it resolves to."""
    with handle_errors():
        bus = get_bus()
        saved = bus.get_saved_context()
        effective = resolve(bus, org, workspace, project, repo)
    echo_json({"saved": saved.as_dict(), "effective": effective.as_dict()})


@app.command(name="set")
def set_context(
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
) -> None:
    """Update the saved context.

    Omitted fields keep their saved value; 'none' clears a field.
    """
    with handle_errors():
        saved = get_bus().save_context(org=org, workspace=workspace, project=project, repo=repo)
    echo_json(saved.as_dict())


@app.command(name="clear")
def clear_context() -> None:
    """Remove the saved context."""
    with handle_errors():
        get_bus().clear_context()
    echo_json({"cleared": True})
