"""Main CLI entry point for oc-events.

Usage:
    oc-events push <topic> --body ...      # Publish an event
    oc-events pull <topic> --agent ...     # Claim the next pending event
    oc-events handoff <topic> --agent ...  # Claim the next event addressed to an agent
    oc-events reply <id> --status ...      # Finish an event and reply
    oc-events watch <topic> --agent ...    # Poll and print events
    oc-events serve                        # Start the webhook relay
    oc-events context show                 # Show saved and effective scope
    oc-events config show                  # Show effective configuration
    oc-events --help                       # Show help
"""

import typer

from oc_events import __version__
from oc_events.cli import events
from oc_events.cli.common import configure_logging
from oc_events.cli.common import get_settings
from oc_events.cli.common import handle_errors
from oc_events.cli.context import app as context_app
from oc_events.cli.serve import serve
from oc_events.cli.topics import app as topics_app
from oc_events.cli.watch import watch

app = typer.Typer(
    name="oc-events",
    help="Local-first event bus for agents",
    no_args_is_help=True,
)

config_app = typer.Typer(help="Configuration management", no_args_is_help=True)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"oc-events {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    with handle_errors():
        settings = get_settings()
    configure_logging(settings.log_level)


@config_app.command(name="show")
def config_show() -> None:
    """Show effective configuration with sources.

    Displays the merged configuration from file, environment variables,
    and defaults, indicating where each value comes from.
    """
    from oc_events.config import get_effective_config_display

    settings = get_settings()
    entries = get_effective_config_display(settings)

    typer.echo(f"Config file: {settings.config_path}")
    typer.echo(f"  {'exists' if settings.config_path.exists() else 'not found'}")
    typer.echo("")
    typer.echo("Effective configuration:")
    typer.echo("-" * 50)

    for key, value, source in entries:
        source_indicator = {
            "file": typer.style("[file]", fg=typer.colors.CYAN),
            "env": typer.style("[env]", fg=typer.colors.YELLOW),
            "default": typer.style("[default]", fg=typer.colors.WHITE, dim=True),
        }.get(source, f"[{source}]")
        typer.echo(f"  {key}: {value} {source_indicator}")


# Event commands
app.command(name="push")(events.push)
app.command(name="pull")(events.pull)
app.command(name="handoff")(events.handoff)
app.command(name="reply")(events.reply)
app.command(name="status")(events.set_status)
app.command(name="show")(events.show)
app.command(name="thread")(events.thread)
app.command(name="list")(events.list_cmd)
app.command(name="query")(events.query)
app.command(name="search")(events.search)
app.command(name="cleanup")(events.cleanup)
app.command(name="reindex")(events.reindex)

# Long-running commands
app.command(name="watch")(watch)
app.command(name="serve")(serve)

app.add_typer(topics_app, name="topics")
app.add_typer(context_app, name="context")
app.add_typer(config_app, name="config")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
