"""
Batch Operations

Transactional batch writes and pagination-driven bulk delete.

The service accepts transactions of at most 100 actions, all within one
PartitionKey. `submit_batch` groups entities by PartitionKey, splits each
group into chunks of 100 and submits the chunks one after another. Each chunk
is atomic; the batch as a whole is not. When a chunk fails, earlier chunks
stay committed and the error propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING, TypeVar

from src.common.storage.protocols import MAX_TRANSACTION_ACTIONS, Record
from src.common.telemetry import get_table_metrics, get_tracer, record_exception
from src.exceptions import InvalidArgumentError, TransactionError
from src.tables.entity import PARTITION_KEY, ROW_KEY, OperationKind, TEntity, validate_key
from src.tables.filters import Filter

if TYPE_CHECKING:
    from src.tables.repository import TableRepository

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")


def group_by_partition(entities: Iterable[TEntity]) -> dict[str, list[TEntity]]:
    """Group entities by PartitionKey, keeping first-seen order of groups and members."""
    groups: dict[str, list[TEntity]] = {}
    for entity in entities:
        groups.setdefault(entity.partition_key, []).append(entity)
    return groups


def chunked(items: Sequence[T], size: int = MAX_TRANSACTION_ACTIONS) -> Iterator[Sequence[T]]:
    """Consecutive slices of at most `size` items."""
    if size <= 0:
        raise InvalidArgumentError("size", "must be greater than zero")
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _action_record(entity: TEntity, operation: OperationKind) -> Record:
    if operation is OperationKind.DELETE:
        return {PARTITION_KEY: entity.partition_key, ROW_KEY: entity.row_key}
    return entity.to_record()


async def submit_batch(
    repository: TableRepository[TEntity],
    entities: Iterable[TEntity],
    operation: OperationKind = OperationKind.ADD,
) -> int:
    """
    Submit entities as single-partition transactions.

    Args:
        repository: Repository owning the target table
        entities: Entities to write or delete
        operation: Action applied to every entity

    Returns:
        Number of entities in committed transactions; 0 for empty input

    Raises:
        InvalidArgumentError: Missing input or invalid keys (before any I/O)
        TransactionError: A chunk was rejected; earlier chunks stay committed
    """
    if entities is None:
        raise InvalidArgumentError("entities", "is required")
    operation = OperationKind(operation)
    items = list(entities)
    if not items:
        return 0

    if operation is not OperationKind.DELETE:
        for entity in items:
            repository.before_save(entity)
    for entity in items:
        validate_key(PARTITION_KEY, entity.partition_key)
        validate_key(ROW_KEY, entity.row_key)

    groups = group_by_partition(items)
    client = await repository.get_client()
    metrics = get_table_metrics()
    committed = 0
    chunk_index = 0

    with tracer.start_as_current_span("table.batch") as span:
        span.set_attribute("table.name", client.table_name)
        span.set_attribute("table.operation", operation.value)
        span.set_attribute("table.batch.entities", len(items))
        span.set_attribute("table.batch.partitions", len(groups))

        for partition_key, group in groups.items():
            for chunk in chunked(group):
                actions = [(operation, _action_record(entity, operation)) for entity in chunk]
                try:
                    await client.submit_transaction(actions)
                except Exception as e:
                    if isinstance(e, TransactionError):
                        e.chunk_index = chunk_index
                        e.committed = committed
                    metrics.record_transaction(
                        client.table_name, operation.value, len(chunk), success=False
                    )
                    record_exception(e, span)
                    logger.error(
                        f"Transaction on {client.table_name}/{partition_key} failed after "
                        f"{committed} of {len(items)} entities were committed: {e}"
                    )
                    raise
                metrics.record_transaction(
                    client.table_name, operation.value, len(chunk), success=True
                )
                committed += len(chunk)
                chunk_index += 1
                logger.debug(
                    f"Committed {len(chunk)} '{operation.value}' actions "
                    f"on {client.table_name}/{partition_key}"
                )

        span.set_attribute("table.batch.committed", committed)

    return committed


async def create_batch(repository: TableRepository[TEntity], entities: Iterable[TEntity]) -> int:
    """Insert entities; a chunk fails if any of its entities already exists."""
    return await submit_batch(repository, entities, OperationKind.ADD)


async def update_batch(repository: TableRepository[TEntity], entities: Iterable[TEntity]) -> int:
    """Replace existing entities; a chunk fails if any of its entities is missing."""
    return await submit_batch(repository, entities, OperationKind.UPDATE_REPLACE)


async def save_batch(repository: TableRepository[TEntity], entities: Iterable[TEntity]) -> int:
    """Insert or replace entities."""
    return await submit_batch(repository, entities, OperationKind.UPSERT_REPLACE)


async def delete_batch(repository: TableRepository[TEntity], entities: Iterable[TEntity]) -> int:
    """Delete entities; a chunk fails if any of its entities is missing."""
    return await submit_batch(repository, entities, OperationKind.DELETE)


async def delete_where(
    repository: TableRepository[TEntity],
    filter: Filter,
    page_size: int | None = None,
) -> int:
    """
    Delete every entity matching a filter.

    Reads one page at a time and deletes it in batch before fetching the next,
    so memory stays bounded by one page. A page that matched nothing ends the
    loop even if the server handed back a continuation token.

    Not atomic: entities written concurrently may survive, and a failure
    leaves earlier pages deleted.

    Returns:
        Number of entities deleted
    """
    if filter is None or (isinstance(filter, str) and not filter.strip()):
        raise InvalidArgumentError("filter", "bulk delete requires a filter")

    metrics = get_table_metrics()
    deleted = 0
    token: str | None = None

    with tracer.start_as_current_span("table.delete_where") as span:
        span.set_attribute("table.name", repository.table_name)
        while True:
            page = await repository.find_page(filter, continuation_token=token, page_size=page_size)
            metrics.record_delete_page(repository.table_name)
            if not page.items:
                break
            deleted += await submit_batch(repository, page.items, OperationKind.DELETE)
            token = page.continuation_token
            if token is None:
                break
        span.set_attribute("table.deleted", deleted)

    logger.info(f"Deleted {deleted} entities from {repository.table_name}")
    return deleted
