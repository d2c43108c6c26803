"""
Keys command - Generate keys and partition range filters.

Usage:
    # New ULID row key
    tablestore keys new

    # Reverse-chronological row key for a timestamp
    tablestore keys row-key 2024-01-01T12:03:00Z

    # Partition key for a timestamp, rounded to 15 minute buckets
    tablestore keys partition-key 2024-01-01T12:03:00Z --minutes 15

    # Filter for partitions between two timestamps
    tablestore keys range 2024-01-01T00:00:00Z 2024-01-02T00:00:00Z

    # Filter for one calendar day in a time zone
    tablestore keys day 2024-01-01 --tz America/Chicago
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import typer
from rich.console import Console

from src.exceptions import InvalidArgumentError
from src.tables.keys import (
    generate_partition_key,
    generate_partition_key_query,
    generate_partition_key_range_query,
    generate_row_key,
    new_id,
)

console = Console()

keys_app = typer.Typer(
    name="keys",
    help="Generate row keys, partition keys and range filters",
    no_args_is_help=True,
)


def _parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Error:[/red] '{value}' is not an ISO-8601 timestamp")
        raise typer.Exit(1) from None


@keys_app.command("new")
def keys_new() -> None:
    """Print a new time-ordered unique id."""
    typer.echo(new_id())


@keys_app.command("row-key")
def keys_row_key(
    timestamp: Annotated[str, typer.Argument(help="ISO-8601 timestamp (naive = UTC)")],
) -> None:
    """Print a row key that sorts newest first."""
    typer.echo(generate_row_key(_parse_timestamp(timestamp)))


@keys_app.command("partition-key")
def keys_partition_key(
    timestamp: Annotated[str, typer.Argument(help="ISO-8601 timestamp (naive = UTC)")],
    minutes: Annotated[
        int,
        typer.Option("--minutes", "-m", help="Bucket size in minutes"),
    ] = 5,
) -> None:
    """Print the reverse-chronological partition key for a timestamp."""
    try:
        key = generate_partition_key(_parse_timestamp(timestamp), timedelta(minutes=minutes))
    except InvalidArgumentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None
    typer.echo(key)


@keys_app.command("range")
def keys_range(
    start: Annotated[str, typer.Argument(help="Inclusive start, ISO-8601")],
    end: Annotated[str, typer.Argument(help="Exclusive end, ISO-8601")],
) -> None:
    """Print a PartitionKey filter covering [start, end)."""
    try:
        query = generate_partition_key_range_query(
            _parse_timestamp(start), _parse_timestamp(end)
        )
    except InvalidArgumentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None
    typer.echo(query)


@keys_app.command("day")
def keys_day(
    day: Annotated[str, typer.Argument(help="Calendar date, YYYY-MM-DD")],
    tz: Annotated[
        str | None,
        typer.Option("--tz", help="IANA time zone of the day (default UTC)"),
    ] = None,
) -> None:
    """Print a PartitionKey filter covering one calendar day."""
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        console.print(f"[red]Error:[/red] '{day}' is not a YYYY-MM-DD date")
        raise typer.Exit(1) from None

    zone = None
    if tz:
        try:
            zone = ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            console.print(f"[red]Error:[/red] Unknown time zone '{tz}'")
            raise typer.Exit(1) from None

    typer.echo(generate_partition_key_query(parsed, zone))
