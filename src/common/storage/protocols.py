"""
Storage Client Protocol Definitions

Uses typing.Protocol for duck-typed interface definitions.
No inheritance required - any class implementing these methods qualifies.

The table repository talks to the storage service only through these two
protocols. Records are flat dicts keyed by storage column names; reads also
carry the service-assigned "Timestamp" and "ETag".
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.tables.entity import OperationKind, Page

# Service limit on actions per transaction
MAX_TRANSACTION_ACTIONS = 100

Record = dict[str, Any]
TransactionAction = tuple["OperationKind", Record]


@runtime_checkable
class TableClient(Protocol):
    """
    Operations against a single table.

    Azure implementation wraps azure.data.tables.aio.TableClient.
    In-memory implementation backs unit tests.
    """

    @property
    def table_name(self) -> str:
        """Name of the table this client is bound to."""
        ...

    async def get_entity(self, partition_key: str, row_key: str) -> Record | None:
        """Fetch one entity. Returns None if it does not exist."""
        ...

    async def insert_entity(self, record: Record) -> None:
        """
        Insert a new entity.

        Raises:
            ConflictError: If an entity with the same keys exists
        """
        ...

    async def upsert_entity(self, record: Record) -> None:
        """Insert or replace an entity."""
        ...

    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        """Delete an entity. Deleting a missing entity is not an error."""
        ...

    def query_entities(
        self,
        filter: str | None = None,
        page_size: int | None = None,
        continuation_token: str | None = None,
    ) -> AsyncIterator[Page[Record]]:
        """
        Lazily yield server pages for a filter.

        Args:
            filter: Server-native filter string, None for all entities
            page_size: Page size hint; the server may return fewer
            continuation_token: Resume from a token of an earlier page
        """
        ...

    async def submit_transaction(self, actions: Sequence[TransactionAction]) -> None:
        """
        Apply all actions atomically.

        Raises:
            InvalidArgumentError: More than 100 actions, or actions spanning
                more than one PartitionKey
            TransactionError: The service rejected the transaction
        """
        ...


@runtime_checkable
class TableServiceClient(Protocol):
    """Account-level client that hands out table clients."""

    async def get_or_create_table(self, table_name: str) -> TableClient:
        """Return a client for the table, creating the table if needed."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        ...
