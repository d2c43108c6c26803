"""
Azure Table Storage Backend

Adapts azure.data.tables.aio to the TableClient/TableServiceClient protocols.

SDK exceptions are translated at this boundary:
- ResourceExistsError on insert -> ConflictError
- ResourceNotFoundError on read -> None
- TableTransactionError -> TransactionError
- any other AzureError -> StorageTransportError

Idempotent calls (table creation, reads, upserts, deletes) are retried on
connection-level failures. Inserts and transactions are not retried.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, TypeVar

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.data.tables import EdmType, EntityProperty, TableTransactionError, UpdateMode
from azure.data.tables.aio import TableClient as SdkTableClient
from azure.data.tables.aio import TableServiceClient as SdkTableServiceClient

from src.common.resilience import RetryConfig, retry_with_backoff
from src.common.storage.protocols import Record, TransactionAction
from src.common.storage.validation import check_transaction
from src.exceptions import (
    ConflictError,
    InvalidArgumentError,
    StorageTransportError,
    TransactionError,
)
from src.tables.entity import ETAG, PARTITION_KEY, ROW_KEY, TIMESTAMP, OperationKind, Page

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures where the request may never have reached the service
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (ServiceRequestError, ServiceResponseError)

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

# OperationKind -> (SDK transaction verb, kwargs)
_TRANSACTION_VERBS: dict[OperationKind, tuple[str, dict[str, Any]]] = {
    OperationKind.ADD: ("create", {}),
    OperationKind.UPDATE_MERGE: ("update", {"mode": UpdateMode.MERGE}),
    OperationKind.UPDATE_REPLACE: ("update", {"mode": UpdateMode.REPLACE}),
    OperationKind.UPSERT_MERGE: ("upsert", {"mode": UpdateMode.MERGE}),
    OperationKind.UPSERT_REPLACE: ("upsert", {"mode": UpdateMode.REPLACE}),
    OperationKind.DELETE: ("delete", {}),
}


def _status_code(error: AzureError) -> int | None:
    if isinstance(error, HttpResponseError):
        return error.status_code
    return None


def _transport_error(operation: str, error: AzureError) -> StorageTransportError:
    return StorageTransportError(operation, str(error), status_code=_status_code(error))


def to_sdk_entity(record: Record) -> dict[str, Any]:
    """Storage record -> SDK entity; ints outside Int32 are sent as Edm.Int64."""
    entity: dict[str, Any] = {}
    for name, value in record.items():
        if name in (TIMESTAMP, ETAG):
            continue
        if isinstance(value, int) and not isinstance(value, bool):
            if not _INT32_MIN <= value <= _INT32_MAX:
                value = EntityProperty(value, EdmType.INT64)
        entity[name] = value
    return entity


def from_sdk_entity(entity: Any) -> Record:
    """SDK TableEntity -> storage record with Timestamp and ETag from metadata."""
    record: Record = {}
    for name, value in dict(entity).items():
        if isinstance(value, EntityProperty):
            value = value.value
        record[name] = value

    metadata = getattr(entity, "metadata", None) or {}
    record[TIMESTAMP] = metadata.get("timestamp")
    record[ETAG] = metadata.get("etag")
    return record


def encode_continuation_token(token: Any) -> str | None:
    """SDK continuation token (dict) -> opaque string."""
    if not token:
        return None
    return json.dumps(token, sort_keys=True)


def decode_continuation_token(token: str | None) -> Any:
    if token is None:
        return None
    try:
        return json.loads(token)
    except ValueError as e:
        raise InvalidArgumentError("continuation_token", "malformed token") from e


class AzureTableClient:
    """TableClient backed by azure.data.tables.aio.TableClient."""

    def __init__(self, client: SdkTableClient, retry: RetryConfig | None = None):
        self._client = client
        self._retry = retry or RetryConfig(max_attempts=1)

    @property
    def table_name(self) -> str:
        return self._client.table_name

    async def _call(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args,
        retry: bool = True,
        **kwargs,
    ) -> T:
        config = self._retry if retry else RetryConfig(max_attempts=1)
        try:
            return await retry_with_backoff(func, *args, config=config, **kwargs)
        except (ResourceExistsError, ResourceNotFoundError, TableTransactionError):
            # translated by the caller
            raise
        except AzureError as e:
            logger.error(f"Storage call '{operation}' on {self.table_name} failed: {e}")
            raise _transport_error(operation, e) from e

    async def get_entity(self, partition_key: str, row_key: str) -> Record | None:
        try:
            entity = await self._call(
                "get_entity",
                self._client.get_entity,
                partition_key=partition_key,
                row_key=row_key,
            )
        except ResourceNotFoundError:
            return None
        return from_sdk_entity(entity)

    async def insert_entity(self, record: Record) -> None:
        try:
            await self._call(
                "insert_entity", self._client.create_entity, entity=to_sdk_entity(record), retry=False
            )
        except ResourceExistsError as e:
            raise ConflictError(self.table_name, record[PARTITION_KEY], record[ROW_KEY]) from e

    async def upsert_entity(self, record: Record) -> None:
        await self._call(
            "upsert_entity",
            self._client.upsert_entity,
            entity=to_sdk_entity(record),
            mode=UpdateMode.REPLACE,
        )

    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        try:
            await self._call(
                "delete_entity",
                self._client.delete_entity,
                partition_key=partition_key,
                row_key=row_key,
            )
        except ResourceNotFoundError:
            logger.debug(f"Delete of missing entity {partition_key}/{row_key} ignored")

    async def query_entities(
        self,
        filter: str | None = None,
        page_size: int | None = None,
        continuation_token: str | None = None,
    ) -> AsyncIterator[Page[Record]]:
        if page_size is not None and page_size <= 0:
            raise InvalidArgumentError("page_size", "must be greater than zero")
        token = decode_continuation_token(continuation_token)

        if filter:
            paged = self._client.query_entities(query_filter=filter, results_per_page=page_size)
        else:
            paged = self._client.list_entities(results_per_page=page_size)
        pages = paged.by_page(continuation_token=token)

        while True:
            try:
                page = await anext(pages)
                items = [from_sdk_entity(entity) async for entity in page]
            except StopAsyncIteration:
                return
            except AzureError as e:
                logger.error(f"Query on {self.table_name} failed: {e}")
                raise _transport_error("query_entities", e) from e

            yield Page(items, encode_continuation_token(pages.continuation_token))

    async def submit_transaction(self, actions: Sequence[TransactionAction]) -> None:
        partition_key = check_transaction(actions)

        operations = []
        for operation, record in actions:
            verb, options = _TRANSACTION_VERBS[OperationKind(operation)]
            entity = to_sdk_entity(record)
            operations.append((verb, entity, options) if options else (verb, entity))

        try:
            await self._call(
                "submit_transaction", self._client.submit_transaction, operations, retry=False
            )
        except TableTransactionError as e:
            raise TransactionError(
                self.table_name, partition_key, e.message or str(e), getattr(e, "index", None)
            ) from e

    async def close(self) -> None:
        await self._client.close()


class AzureTableServiceClient:
    """
    TableServiceClient backed by azure.data.tables.aio.TableServiceClient.

    Usage:
        async with AzureTableServiceClient.from_connection_string(conn_str) as service:
            table = await service.get_or_create_table("Items")
    """

    def __init__(self, service: SdkTableServiceClient, retry: RetryConfig | None = None):
        self._service = service
        self._retry = retry or RetryConfig(max_attempts=1)
        self._tables: dict[str, AzureTableClient] = {}

    @classmethod
    def from_connection_string(
        cls,
        connection_string: str,
        retry: RetryConfig | None = None,
    ) -> AzureTableServiceClient:
        return cls(SdkTableServiceClient.from_connection_string(conn_str=connection_string), retry)

    async def get_or_create_table(self, table_name: str) -> AzureTableClient:
        if table_name in self._tables:
            return self._tables[table_name]
        try:
            client = await retry_with_backoff(
                self._service.create_table_if_not_exists, table_name, config=self._retry
            )
        except AzureError as e:
            raise _transport_error("create_table", e) from e

        logger.info(f"Table {table_name} ready")
        table = AzureTableClient(client, self._retry)
        self._tables[table_name] = table
        return table

    async def close(self) -> None:
        for table in self._tables.values():
            await table.close()
        self._tables.clear()
        await self._service.close()

    async def __aenter__(self) -> AzureTableServiceClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def retry_config(max_attempts: int, base_delay: float) -> RetryConfig:
    """RetryConfig for connection-level storage failures."""
    return RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        retryable_exceptions=CONNECTION_ERRORS,
    )
