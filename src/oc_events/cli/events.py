"""Event commands: publish, claim, reply and query.

Commands:
- push: Publish an event in the resolved scope
- pull: Claim the next pending event for a topic
- handoff: Claim the next pending event addressed to an agent
- reply: Finish an event and publish a reply on the same topic
- status: Set an event's status
- show / thread / list: Read events
- query / search: Mention, tool-name and full-text lookups
- cleanup / reindex: Maintenance
"""

from __future__ import annotations

from typing import Optional

import typer

from oc_events.cli.common import echo_json
from oc_events.cli.common import fail
from oc_events.cli.common import get_bus
from oc_events.cli.common import handle_errors
from oc_events.cli.common import include_unscoped_option
from oc_events.cli.common import level_option
from oc_events.cli.common import org_option
from oc_events.cli.common import project_option
from oc_events.cli.common import repo_option
from oc_events.cli.common import resolve
from oc_events.cli.common import scope_filter
from oc_events.cli.common import workspace_option
from oc_events.db.events import DEFAULT_SOURCE
from oc_events.db.events import EventStatus


def _all_scopes_option():
    return typer.Option(False, "--all-scopes", help="Do not filter by scope")


def push(
    topic: str = typer.Argument(..., help="Event topic"),
    body: str = typer.Option(..., "--body", help="Event body"),
    meta: Optional[str] = typer.Option(None, "--meta", help="Metadata JSON"),
    correlation_id: Optional[str] = typer.Option(None, "--correlation-id", help="Correlation id"),
    parent_id: Optional[str] = typer.Option(None, "--parent-id", help="Parent event id"),
    source: str = typer.Option(DEFAULT_SOURCE, "--source", help="Event source"),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
) -> None:
    """Publish an event."""
    with handle_errors():
        bus = get_bus()
        scope = resolve(bus, org, workspace, project, repo)
        event = bus.publish(
            topic=topic,
            body=body,
            scope=scope,
            metadata=meta,
            correlation_id=correlation_id,
            parent_id=parent_id,
            source=source,
        )
    echo_json(event)


def pull(
    topic: str = typer.Argument(..., help="Event topic"),
    agent: str = typer.Option(..., "--agent", help="Agent identifier"),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """Claim the next pending event for a topic.

    Prints the claimed event (with the topic's system prompt) as JSON, or an
    empty line when nothing is pending.
    """
    with handle_errors():
        bus = get_bus()
        scope = resolve(bus, org, workspace, project, repo)
        claimed = bus.claim_next(topic, agent, scope, level, include_unscoped)
    if claimed is None:
        typer.echo("")
        return
    echo_json(claimed)


def handoff(
    topic: str = typer.Argument(..., help="Event topic"),
    agent: str = typer.Option(..., "--agent", help="Agent identifier"),
    recipient: Optional[str] = typer.Option(None, "--for", help="Recipient to match (default: the agent)"),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """Claim the next pending event addressed to an agent.

    An event is addressed to the recipient when its metadata names it under
    handoff.to_agent / handoff.to / to_agent / to, or when its body contains
    @recipient.
    """
    with handle_errors():
        bus = get_bus()
        scope = resolve(bus, org, workspace, project, repo)
        claimed = bus.claim_next_handoff(topic, agent, recipient or agent, scope, level, include_unscoped)
    if claimed is None:
        typer.echo("")
        return
    echo_json(claimed)


def reply(
    event_id: str = typer.Argument(..., metavar="ID", help="Event id"),
    status: str = typer.Option(..., "--status", help="completed or failed"),
    body: str = typer.Option(..., "--body", help="Reply body"),
    meta: Optional[str] = typer.Option(None, "--meta", help="Metadata JSON"),
    source: str = typer.Option(DEFAULT_SOURCE, "--source", help="Event source"),
) -> None:
    """Reply to an event with a new event and update its status."""
    with handle_errors():
        event = get_bus().reply(event_id, status, body, metadata=meta, source=source)
    echo_json(event)


def set_status(
    event_id: str = typer.Argument(..., metavar="ID", help="Event id"),
    new_status: str = typer.Option(..., "--set", help="pending|processing|completed|failed"),
) -> None:
    """Update event status."""
    with handle_errors():
        updated = get_bus().update_status(event_id, EventStatus.parse(new_status))
    if updated is None:
        fail(f"Event not found: {event_id}")
    echo_json(updated)


def show(event_id: str = typer.Argument(..., metavar="ID", help="Event id")) -> None:
    """Show one event."""
    with handle_errors():
        event = get_bus().get_event(event_id)
    if event is None:
        fail(f"Event not found: {event_id}")
    echo_json(event)


def thread(event_id: str = typer.Argument(..., metavar="ID", help="Event id")) -> None:
    """Show an event followed by its parents up to the root."""
    with handle_errors():
        chain = get_bus().thread(event_id)
    echo_json(chain)


def list_cmd(
    topic: Optional[str] = typer.Option(None, "--topic", help="Only this topic"),
    status: Optional[str] = typer.Option(None, "--status", help="Only this status"),
    limit: int = typer.Option(50, "--limit", min=1, help="Maximum rows"),
    all_scopes: bool = _all_scopes_option(),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """List recent events, newest first."""
    with handle_errors():
        bus = get_bus()
        condition = scope_filter(bus, org, workspace, project, repo, level, include_unscoped, all_scopes)
        rows = bus.list_events(condition, topic=topic, status=status, limit=limit)
    echo_json(rows)


def query(
    mention: Optional[str] = typer.Option(None, "--mention", help="Mention to filter (with or without @)"),
    tool: Optional[str] = typer.Option(None, "--tool", help="Tool name to filter"),
    all_scopes: bool = _all_scopes_option(),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """Query events by mention or tool."""
    if not mention and not tool:
        echo_json([])
        return
    with handle_errors():
        bus = get_bus()
        condition = scope_filter(bus, org, workspace, project, repo, level, include_unscoped, all_scopes)
        if mention:
            rows = bus.find_by_mention(mention, condition)
        else:
            rows = bus.find_by_tool(tool, condition)
    echo_json(rows)


def search(
    text: str = typer.Argument(..., metavar="QUERY", help="Search query"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum rows"),
    all_scopes: bool = _all_scopes_option(),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """Full-text search event bodies."""
    with handle_errors():
        bus = get_bus()
        condition = scope_filter(bus, org, workspace, project, repo, level, include_unscoped, all_scopes)
        rows = bus.search(text, condition, limit)
    echo_json(rows)


def cleanup(
    completed_days: float = typer.Option(30, "--completed-days", help="Completed/failed retention days"),
    pending_days: float = typer.Option(7, "--pending-days", help="Pending retention days"),
    scoped: bool = typer.Option(False, "--scoped", help="Only remove events in the resolved scope"),
    org: Optional[str] = org_option(),
    workspace: Optional[str] = workspace_option(),
    project: Optional[str] = project_option(),
    repo: Optional[str] = repo_option(),
    level: Optional[str] = level_option(),
    include_unscoped: bool = include_unscoped_option(),
) -> None:
    """Remove old events."""
    with handle_errors():
        bus = get_bus()
        scope = resolve(bus, org, workspace, project, repo) if scoped else None
        removed = bus.cleanup(
            completed_retention_days=completed_days,
            pending_retention_days=pending_days,
            scope=scope,
            level=level,
            include_unscoped=include_unscoped,
        )
    echo_json({"removed": removed})


def reindex(event_id: Optional[str] = typer.Argument(None, metavar="[ID]", help="Only this event")) -> None:
    """Rebuild mention, tool-call and search indexes."""
    with handle_errors():
        count = get_bus().reindex(event_id)
    echo_json({"reindexed": count})
