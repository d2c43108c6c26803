"""
Purge command - Delete every entity matching a filter.

Usage:
    # Uses TABLESTORE_BACKEND / TABLESTORE_CONNECTION_STRING
    tablestore purge LogEvent "PartitionKey lt '2516981900999999999'"

    # Skip the confirmation prompt
    tablestore purge LogEvent "Level eq 'Debug'" --yes
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

import typer
from rich.console import Console

from src.common.storage import StorageConfig, TableServiceProvider
from src.exceptions import TableStoreError
from src.tables.batch import delete_where
from src.tables.entity import TableEntityBase
from src.tables.filters import parse_filter
from src.tables.repository import RepositoryHooks

logger = logging.getLogger(__name__)

console = Console()


class GenericEntity(TableEntityBase):
    """Schema-less entity; every stored property is kept as an extra field."""


def _build_provider() -> TableServiceProvider:
    return TableServiceProvider(StorageConfig())


def purge_command(
    table: Annotated[str, typer.Argument(help="Table name")],
    filter: Annotated[str, typer.Argument(help="Filter, e.g. \"Level eq 'Debug'\"")],
    page_size: Annotated[
        int | None,
        typer.Option("--page-size", help="Entities fetched per page"),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Delete every entity in TABLE matching FILTER, one page at a time."""
    try:
        # validate locally before touching storage
        parse_filter(filter)
    except TableStoreError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    if not yes and not typer.confirm(f"Delete all entities in '{table}' matching {filter}?"):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(0)

    try:
        deleted = asyncio.run(_purge_async(table, filter, page_size))
    except TableStoreError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from None

    console.print(f"[green]Deleted {deleted} entities from {table}[/green]")


async def _purge_async(table: str, filter: str, page_size: int | None) -> int:
    async with _build_provider() as provider:
        repository = provider.repository(
            GenericEntity, hooks=RepositoryHooks(table_name=lambda: table)
        )
        return await delete_where(repository, filter, page_size=page_size)
