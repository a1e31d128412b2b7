"""CLI entry point for the docmigrate change log runner."""

from typing import Annotated

import typer
from rich.console import Console

from docmigrate.cli.commands.migrate import history, new, run, status, unlock

# Version from pyproject.toml
__version__ = "0.1.0"

# Create main app
app = typer.Typer(
    name="docmigrate",
    help="Apply versioned change sets to MongoDB exactly once",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run")(run)
app.command("status")(status)
app.command("history")(history)
app.command("unlock")(unlock)
app.command("new")(new)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"docmigrate version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """
    docmigrate CLI.

    [bold]Quick Start:[/bold]

        # Apply pending change sets
        docmigrate run -d mydb -p myproject.changelogs

        # Is a migration running somewhere?
        docmigrate status -d mydb

        # Show the change log
        docmigrate history -d mydb

        # Scaffold a change log module
        docmigrate new add_user_indexes --dir myproject/changelogs

    [bold]Environment Variables:[/bold]

        DOCMIGRATE_MONGODB           - MongoDB URI
        DOCMIGRATE_MONGODB_DATABASE  - Target database
        DOCMIGRATE_SCAN_PACKAGES     - Comma separated change log packages
        DOCMIGRATE_ENVIRONMENT       - Active environment tag
    """


if __name__ == "__main__":
    app()
