"""Watch command: poll a topic and print claimed events as they arrive."""

from __future__ import annotations

import threading
from datetime import datetime
from datetime import timezone
from typing import Optional

import typer

from oc_events.bus import ClaimedEvent
from oc_events.cli.common import fail
from oc_events.cli.common import get_bus
from oc_events.cli.common import get_settings
from oc_events.cli.common import handle_errors
from oc_events.cli.common import include_unscoped_option
from oc_events.cli.common import level_option
from oc_events.cli.common import org_option
from oc_events.cli.common import project_option
from oc_events.cli.common import repo_option
from oc_events.cli.common import resolve
from oc_events.cli.common import workspace_option
from oc_events.poll import PollGuard
from oc_events.poll import watch as run_watch


def render_event(claimed: ClaimedEvent) -> str:
    """Format a claimed event for terminal output."""
    event = claimed.event
    created = datetime.fromtimestamp(event.created_at / 1000, tz=timezone.utc).isoformat()
    lines = ["", "=" * 80, "NEW EVENT RECEIVED", "=" * 80]
    if claimed.system_prompt:
        lines += ["", claimed.system_prompt, ""]
    lines += [
        f"Topic: {event.topic}",
        f"Event ID: {event.id}",
        f"Source: {event.source}",
        f"Status: {event.status}",
        f"Created: {created}",
    ]
    if event.correlation_id:
        lines.append(f"Correlation ID: {event.correlation_id}")
    if event.metadata:
        lines += ["", "Metadata:", event.metadata]
    lines += ["", "Body:", event.body, "-" * 80]
    return "\n".join(lines)


def watch(
    topic: Optional[str] = typer.Argument(None, help="Event topic (default: poll.topic)"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent identifier (default: poll.agent)"),
    interval: Optional[int] = typer.Option(None, "--interval", min=0, help="Poll interval in milliseconds"),
    max_events: int = typer.Option(0, "--max-events", min=0, help="Exit after this many events (0 = run forever)"),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """Watch for new events and display them in real-time."""
    settings = get_settings()
    topic = topic or settings.poll.topic
    agent = agent or settings.poll.agent
    if not topic:
        fail("A topic is required (argument or OC_EVENTS_POLL_TOPIC)")
    if not agent:
        fail("An agent is required (--agent or OC_EVENTS_POLL_AGENT)")
    interval_ms = settings.poll.interval_ms if interval is None else interval

    with handle_errors():
        bus = get_bus(settings)
        scope = resolve(bus, org, workspace, project, repo)

    typer.echo("=" * 80)
    typer.echo(f"Watching topic: {topic} (polling every {interval_ms}ms)")
    typer.echo(f"Agent: {agent}")
    typer.echo("Press Ctrl+C to stop")
    typer.echo("=" * 80)

    stop = threading.Event()
    handled = 0

    def poll() -> ClaimedEvent | None:
        return bus.claim_next(topic, agent, scope, level, include_unscoped)

    def on_event(claimed: ClaimedEvent) -> None:
        nonlocal handled
        typer.echo(render_event(claimed))
        handled += 1
        if max_events and handled >= max_events:
            stop.set()

    guard = PollGuard(interval_ms)
    try:
        with handle_errors():
            run_watch(poll, on_event, guard, stop)
    except KeyboardInterrupt:
        stop.set()
        typer.echo("\nStopped watching")
