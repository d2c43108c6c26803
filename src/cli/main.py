"""
TableStore CLI

Entry point for the table store command-line interface.

Usage:
    tablestore keys new
    tablestore keys partition-key 2024-01-01T12:03:00Z --minutes 5
    tablestore purge LogEvent "Level eq 'Debug'"
    tablestore --help
"""

import atexit

import typer

from src.cli.commands.keys import keys_app
from src.cli.commands.purge import purge_command
from src.common.telemetry import init_telemetry, shutdown_telemetry

# Initialize OpenTelemetry at CLI startup
init_telemetry(service_name="tablestore-cli")
atexit.register(shutdown_telemetry)

app = typer.Typer(
    name="tablestore",
    help="TableStore - repository tooling for partitioned table storage",
    no_args_is_help=True,
)

# Register commands
app.command(name="purge", help="Delete every entity matching a filter")(purge_command)

# Register subcommand groups
app.add_typer(keys_app, name="keys", help="Generate row keys, partition keys and range filters")


@app.command()
def version() -> None:
    """Show version information."""
    from src import __version__

    typer.echo(f"tablestore version {__version__}")


if __name__ == "__main__":
    app()
