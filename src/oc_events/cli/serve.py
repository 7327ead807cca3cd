"""Serve command: run the webhook relay with uvicorn."""

from __future__ import annotations

from typing import Optional

import typer

from oc_events.cli.common import fail
from oc_events.cli.common import get_settings
from oc_events.cli.common import handle_errors
from oc_events.context import StaticRepoProbe


def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Host to bind (default: webhook.host)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on (default: webhook.port)"),
    log_level: str = typer.Option("info", "--log-level", help="Uvicorn log level"),
) -> None:
    """Start the webhook relay.

    Each configured route (OC_EVENTS_WEBHOOK_ROUTES or [webhook.routes])
    publishes POST /<route> bodies to its topic.
    """
    import uvicorn

    from oc_events.bus import EventBus
    from oc_events.webhook import create_app

    settings = get_settings()
    if host:
        settings.webhook.host = host
    if port:
        settings.webhook.port = port
    if not settings.webhook.routes:
        fail("No webhook routes configured (set OC_EVENTS_WEBHOOK_ROUTES, e.g. github=ci-events)")

    with handle_errors():
        # No ambient repo detection for relayed events
        bus = EventBus.from_settings(settings, repo_probe=StaticRepoProbe(None))
        app = create_app(bus, settings.webhook)

    typer.echo(f"Starting webhook relay on {settings.webhook.host}:{settings.webhook.port}")
    for route, topic in sorted(settings.webhook.routes.items()):
        typer.echo(f"  POST /{route} -> {topic}")
    if not settings.webhook.secret:
        typer.secho("  Warning: no webhook secret configured", fg=typer.colors.YELLOW)

    uvicorn.run(app, host=settings.webhook.host, port=settings.webhook.port, log_level=log_level)
