"""
Table Repository

Generic CRUD, query and paging against one table per entity type.

    repository = TableRepository(service_client, Item)
    item = await repository.create(Item(name="Widget"))
    found = await repository.find(item.row_key, item.partition_key)
    page = await repository.find_page(field("name") == "Widget", page_size=50)

Key assignment, table naming and post-save behaviour can be customized either
by subclassing (override `new_row_key`, `before_save`, `after_save`,
`get_table_name`) or by passing a `RepositoryHooks` instance.

Writes do not send an ETag precondition, so concurrent writers of the same
entity overwrite each other (last writer wins).
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Generic

from src.common.storage.protocols import Record, TableClient, TableServiceClient
from src.common.telemetry import get_tracer, record_exception
from src.exceptions import (
    InvalidArgumentError,
    StorageTransportError,
    TableInitializationError,
)
from src.tables.entity import (
    PARTITION_KEY,
    ROW_KEY,
    OperationKind,
    Page,
    TableEntityBase,
    TEntity,
    validate_key,
)
from src.tables.filters import Filter, render_filter
from src.tables.keys import new_id

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,62}$")


def assign_keys(entity: TableEntityBase, new_row_key: Callable[[], str] = new_id) -> None:
    """
    Fill in missing keys: RowKey from `new_row_key`, PartitionKey from RowKey.

    Keys that are already set are left alone, so calling this twice is the
    same as calling it once.
    """
    if not entity.row_key or not entity.row_key.strip():
        entity.row_key = new_row_key()
    if not entity.partition_key or not entity.partition_key.strip():
        entity.partition_key = entity.row_key


@dataclass
class RepositoryHooks(Generic[TEntity]):
    """
    Per-entity-type customization without subclassing.

    Each hook replaces the repository's default behaviour when set.

    Attributes:
        table_name: Returns the table name (default: entity class name)
        new_row_key: Returns a new RowKey (default: ULID)
        before_save: Mutates an entity before it is written
        after_save: Receives the re-read entity after a successful write
    """

    table_name: Callable[[], str] | None = None
    new_row_key: Callable[[], str] | None = None
    before_save: Callable[[TEntity], None] | None = None
    after_save: Callable[[TEntity], None] | None = None


class TableRepository(Generic[TEntity]):
    """
    Repository for entities of one type, stored in one table.

    The table is created lazily on first use. Initialization runs once per
    repository instance; concurrent first callers share the same attempt and
    its outcome, including failure. Use a new instance to retry a failed
    initialization.
    """

    def __init__(
        self,
        service_client: TableServiceClient,
        entity_type: type[TEntity],
        hooks: RepositoryHooks[TEntity] | None = None,
        table_prefix: str = "",
        page_size: int | None = None,
    ):
        """
        Initialize repository.

        Args:
            service_client: Storage service client
            entity_type: TableEntityBase subclass stored by this repository
            hooks: Optional hook overrides
            table_prefix: Prefix added to the default table name
            page_size: Default page size hint for queries
        """
        if service_client is None:
            raise InvalidArgumentError("service_client", "is required")
        if not isinstance(entity_type, type) or not issubclass(entity_type, TableEntityBase):
            raise InvalidArgumentError("entity_type", "must be a TableEntityBase subclass")
        if page_size is not None and page_size <= 0:
            raise InvalidArgumentError("page_size", "must be greater than zero")

        self.service_client = service_client
        self.entity_type = entity_type
        self.hooks: RepositoryHooks[TEntity] = hooks or RepositoryHooks()
        self.table_prefix = table_prefix
        self.page_size = page_size
        self._client_task: asyncio.Future[TableClient] | None = None

    # =========================================================================
    # Extension points
    # =========================================================================

    def new_row_key(self) -> str:
        """New RowKey for entities saved without one."""
        if self.hooks.new_row_key is not None:
            return self.hooks.new_row_key()
        return new_id()

    def before_save(self, entity: TEntity) -> None:
        """Called before every write except deletes; assigns missing keys by default."""
        if self.hooks.before_save is not None:
            self.hooks.before_save(entity)
            return
        assign_keys(entity, self.new_row_key)

    def after_save(self, entity: TEntity) -> None:
        """Called with the re-read entity after save/create/update."""
        if self.hooks.after_save is not None:
            self.hooks.after_save(entity)

    def get_table_name(self) -> str:
        if self.hooks.table_name is not None:
            return self.hooks.table_name()
        return f"{self.table_prefix}{self.entity_type.__name__}"

    @property
    def table_name(self) -> str:
        return self.get_table_name()

    # =========================================================================
    # Table handle
    # =========================================================================

    async def get_client(self) -> TableClient:
        """
        Table client, creating the table on first use.

        Raises:
            TableInitializationError: If the table could not be created
        """
        if self._client_task is None:
            self._client_task = asyncio.ensure_future(self._initialize_table())
            self._client_task.add_done_callback(_retrieve_exception)
        # shield: a cancelled caller must not cancel the shared initialization
        return await asyncio.shield(self._client_task)

    async def _initialize_table(self) -> TableClient:
        table_name = self.get_table_name()
        if not _TABLE_NAME_PATTERN.match(table_name or ""):
            raise InvalidArgumentError(
                "table_name",
                f"'{table_name}' must be 3-63 alphanumeric characters starting with a letter",
            )

        with tracer.start_as_current_span("table.initialize") as span:
            span.set_attribute("table.name", table_name)
            try:
                client = await self.service_client.get_or_create_table(table_name)
            except Exception as e:
                record_exception(e, span)
                logger.error(f"Failed to initialize table {table_name}: {e}")
                raise TableInitializationError(table_name, str(e)) from e

        logger.debug(f"Table {table_name} ready")
        return client

    # =========================================================================
    # Queries
    # =========================================================================

    async def find(self, row_key: str, partition_key: str) -> TEntity | None:
        """
        Point lookup by key pair.

        Returns:
            The entity, or None if it does not exist
        """
        validate_key(ROW_KEY, row_key)
        validate_key(PARTITION_KEY, partition_key)

        client = await self.get_client()
        with tracer.start_as_current_span("table.find") as span:
            span.set_attribute("table.name", client.table_name)
            record = await client.get_entity(partition_key, row_key)
            span.set_attribute("table.found", record is not None)

        logger.debug(
            f"Response from 'find' on {client.table_name}: "
            f"{'found' if record is not None else 'not found'}"
        )
        return self._to_entity(record) if record is not None else None

    async def iter_pages(
        self,
        filter: Filter | None = None,
        continuation_token: str | None = None,
        page_size: int | None = None,
    ) -> AsyncIterator[Page[TEntity]]:
        """Lazily yield server pages of entities, following continuation tokens."""
        query = self._render(filter)
        size = self._page_size(page_size)

        client = await self.get_client()
        pages = client.query_entities(
            filter=query, page_size=size, continuation_token=continuation_token
        )
        async with aclosing(pages):
            async for page in pages:
                yield Page([self._to_entity(r) for r in page.items], page.continuation_token)

    async def find_all(self, filter: Filter | None = None) -> list[TEntity]:
        """
        All entities matching the filter, across every page.

        No client-side limit is applied; use a selective filter.
        """
        results: list[TEntity] = []
        with tracer.start_as_current_span("table.find_all") as span:
            span.set_attribute("table.name", self.table_name)
            pages = self.iter_pages(filter)
            async with aclosing(pages):
                async for page in pages:
                    results.extend(page.items)
            span.set_attribute("table.results", len(results))
        return results

    async def find_page(
        self,
        filter: Filter | None = None,
        continuation_token: str | None = None,
        page_size: int | None = None,
    ) -> Page[TEntity]:
        """
        Exactly one server page.

        The server decides page boundaries; the page may hold fewer than
        `page_size` entities even when more results exist.
        """
        with tracer.start_as_current_span("table.find_page") as span:
            span.set_attribute("table.name", self.table_name)
            span.set_attribute("table.resumed", continuation_token is not None)
            pages = self.iter_pages(filter, continuation_token, page_size)
            async with aclosing(pages):
                async for page in pages:
                    span.set_attribute("table.results", len(page.items))
                    return page
        return Page([])

    async def find_one(self, filter: Filter | None = None) -> TEntity | None:
        """
        First entity matching the filter, or None.

        Requests single-entity pages so the server never materializes more
        than one result.
        """
        with tracer.start_as_current_span("table.find_one") as span:
            span.set_attribute("table.name", self.table_name)
            pages = self.iter_pages(filter, page_size=1)
            async with aclosing(pages):
                async for page in pages:
                    if page.items:
                        return page.items[0]
        return None

    # =========================================================================
    # Writes
    # =========================================================================

    async def save(self, entity: TEntity) -> TEntity:
        """
        Insert or replace the entity.

        Returns:
            The entity as re-read from the table, with Timestamp and ETag set
        """
        record = self._prepare(entity)
        client = await self.get_client()
        with tracer.start_as_current_span("table.save") as span:
            span.set_attribute("table.name", client.table_name)
            await client.upsert_entity(record)
            return await self._reload(client, record, "save")

    async def create(self, entity: TEntity) -> TEntity:
        """
        Insert a new entity.

        Raises:
            ConflictError: If an entity with the same keys already exists
        """
        record = self._prepare(entity)
        client = await self.get_client()
        with tracer.start_as_current_span("table.create") as span:
            span.set_attribute("table.name", client.table_name)
            try:
                await client.insert_entity(record)
            except Exception as e:
                record_exception(e, span)
                raise
            return await self._reload(client, record, "create")

    async def update(self, entity: TEntity) -> TEntity:
        """Same as save(): insert or replace. Check existence first if it matters."""
        return await self.save(entity)

    async def delete(self, entity: TEntity) -> None:
        """Delete the entity. A missing entity is not an error."""
        if entity is None:
            raise InvalidArgumentError("entity", "is required")
        await self.delete_by_key(entity.row_key, entity.partition_key)

    async def delete_by_key(self, row_key: str, partition_key: str) -> None:
        """Delete by key pair. A missing entity is not an error."""
        validate_key(ROW_KEY, row_key)
        validate_key(PARTITION_KEY, partition_key)

        client = await self.get_client()
        with tracer.start_as_current_span("table.delete") as span:
            span.set_attribute("table.name", client.table_name)
            await client.delete_entity(partition_key, row_key)
        logger.debug(f"Response from 'delete' on {client.table_name}: ok")

    async def batch(
        self,
        entities: Iterable[TEntity],
        operation: OperationKind = OperationKind.ADD,
    ) -> int:
        """
        Submit entities as single-partition transactions of at most 100.

        Returns:
            Number of entities in successfully committed transactions
        """
        from src.tables.batch import submit_batch

        return await submit_batch(self, entities, operation)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _prepare(self, entity: TEntity) -> Record:
        if entity is None:
            raise InvalidArgumentError("entity", "is required")
        if not isinstance(entity, TableEntityBase):
            raise InvalidArgumentError("entity", "must be a TableEntityBase instance")
        self.before_save(entity)
        validate_key(ROW_KEY, entity.row_key)
        validate_key(PARTITION_KEY, entity.partition_key)
        return entity.to_record()

    async def _reload(self, client: TableClient, record: Record, operation: str) -> TEntity:
        stored = await client.get_entity(record[PARTITION_KEY], record[ROW_KEY])
        if stored is None:
            raise StorageTransportError(
                "get_entity", f"entity missing right after '{operation}'", status_code=404
            )
        logger.debug(f"Response from '{operation}' on {client.table_name}: ok")

        result = self._to_entity(stored)
        self.after_save(result)
        return result

    def _to_entity(self, record: Record) -> TEntity:
        return self.entity_type.model_validate(record)

    def _render(self, filter: Filter | None) -> str | None:
        return render_filter(filter, self.entity_type.storage_name)

    def _page_size(self, page_size: int | None) -> int | None:
        if page_size is not None and page_size <= 0:
            raise InvalidArgumentError("page_size", "must be greater than zero")
        return page_size or self.page_size


def _retrieve_exception(task: asyncio.Future[TableClient]) -> None:
    # Marks a failure as retrieved when every waiter was cancelled
    if not task.cancelled():
        task.exception()
