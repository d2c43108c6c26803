"""
In-Memory Table Storage

Dict-based table service for unit testing.
Implements the same protocols as the Azure backend, including server-side
filters, paging with continuation tokens and atomic transactions.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections import Counter
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime
from itertools import count

from src.common.storage.protocols import Record, TransactionAction
from src.common.storage.validation import check_transaction
from src.exceptions import ConflictError, InvalidArgumentError, TransactionError
from src.tables.entity import ETAG, PARTITION_KEY, ROW_KEY, TIMESTAMP, OperationKind, Page
from src.tables.filters import Expression, parse_filter

logger = logging.getLogger(__name__)

# Largest page the service returns, whatever the caller asks for
SERVER_MAX_PAGE_SIZE = 1000

_Key = tuple[str, str]


class InMemoryTableClient:
    """
    In-memory implementation of TableClient.

    Perfect for unit tests - no storage account required. Entities are kept
    sorted by (PartitionKey, RowKey) like the real service, and every call
    yields to the event loop once so task cancellation behaves as it would
    around network I/O.
    """

    def __init__(
        self,
        table_name: str,
        max_page_size: int = SERVER_MAX_PAGE_SIZE,
        latency: float = 0.0,
    ):
        self._table_name = table_name
        self._rows: dict[_Key, Record] = {}
        self._max_page_size = max_page_size
        self._latency = latency
        self._versions = count(1)
        self.calls: Counter[str] = Counter()
        self.transactions: list[list[TransactionAction]] = []

    @property
    def table_name(self) -> str:
        return self._table_name

    def __len__(self) -> int:
        return len(self._rows)

    def records(self) -> list[Record]:
        """Snapshot of all stored records in key order."""
        return [dict(self._rows[key]) for key in sorted(self._rows)]

    def clear(self) -> None:
        """Remove all entities and call history (useful for test setup/teardown)."""
        self._rows.clear()
        self.calls.clear()
        self.transactions.clear()

    async def get_entity(self, partition_key: str, row_key: str) -> Record | None:
        await self._io("get_entity")
        record = self._rows.get((partition_key, row_key))
        return dict(record) if record is not None else None

    async def insert_entity(self, record: Record) -> None:
        await self._io("insert_entity")
        key = _key_of(record)
        if key in self._rows:
            raise ConflictError(self._table_name, *key)
        self._rows[key] = self._stamp(record)

    async def upsert_entity(self, record: Record) -> None:
        await self._io("upsert_entity")
        self._rows[_key_of(record)] = self._stamp(record)

    async def delete_entity(self, partition_key: str, row_key: str) -> None:
        await self._io("delete_entity")
        self._rows.pop((partition_key, row_key), None)

    async def query_entities(
        self,
        filter: str | None = None,
        page_size: int | None = None,
        continuation_token: str | None = None,
    ) -> AsyncIterator[Page[Record]]:
        if page_size is not None and page_size <= 0:
            raise InvalidArgumentError("page_size", "must be greater than zero")
        predicate = parse_filter(filter) if filter else None
        limit = min(page_size or self._max_page_size, self._max_page_size)
        start = _decode_token(continuation_token) if continuation_token else None

        while True:
            await self._io("query_entities")
            matches = self._scan(predicate, start, limit + 1)
            items, rest = matches[:limit], matches[limit:]
            token = _encode_token(_key_of(rest[0])) if rest else None
            yield Page(items, token)
            if token is None:
                return
            start = _key_of(rest[0])

    async def submit_transaction(self, actions: Sequence[TransactionAction]) -> None:
        await self._io("submit_transaction")
        partition_key = check_transaction(actions)

        # apply to a copy so a rejected transaction leaves no trace
        staged = dict(self._rows)
        for index, (operation, record) in enumerate(actions):
            key = _key_of(record)
            exists = key in staged
            if operation is OperationKind.ADD:
                if exists:
                    raise TransactionError(
                        self._table_name, partition_key, "entity already exists", index
                    )
                staged[key] = self._stamp(record)
            elif operation is OperationKind.DELETE:
                if not exists:
                    raise TransactionError(
                        self._table_name, partition_key, "entity not found", index
                    )
                del staged[key]
            elif operation in (OperationKind.UPDATE_REPLACE, OperationKind.UPDATE_MERGE):
                if not exists:
                    raise TransactionError(
                        self._table_name, partition_key, "entity not found", index
                    )
                staged[key] = self._write(staged.get(key), record, operation)
            else:
                staged[key] = self._write(staged.get(key), record, operation)

        self._rows = staged
        self.transactions.append(list(actions))
        logger.debug(
            f"Committed transaction of {len(actions)} actions "
            f"on {self._table_name}/{partition_key}"
        )

    def _write(self, current: Record | None, record: Record, operation: OperationKind) -> Record:
        merge = operation in (OperationKind.UPDATE_MERGE, OperationKind.UPSERT_MERGE)
        if merge and current is not None:
            merged = {k: v for k, v in current.items() if k not in (TIMESTAMP, ETAG)}
            merged.update(record)
            return self._stamp(merged)
        return self._stamp(record)

    def _stamp(self, record: Record) -> Record:
        stored = {k: v for k, v in record.items() if k not in (TIMESTAMP, ETAG)}
        now = datetime.now(UTC)
        stored[TIMESTAMP] = now
        stored[ETAG] = f'W/"datetime\'{now.isoformat()}\'-{next(self._versions)}"'
        return stored

    def _scan(self, predicate: Expression | None, start: _Key | None, limit: int) -> list[Record]:
        results: list[Record] = []
        for key in sorted(self._rows):
            if start is not None and key < start:
                continue
            record = self._rows[key]
            if predicate is None or predicate.evaluate(record):
                results.append(dict(record))
                if len(results) >= limit:
                    break
        return results

    async def _io(self, operation: str) -> None:
        self.calls[operation] += 1
        await asyncio.sleep(self._latency)


class InMemoryTableServiceClient:
    """
    In-memory implementation of TableServiceClient.

    Tables are created on first use and live as long as the client.
    """

    def __init__(self, max_page_size: int = SERVER_MAX_PAGE_SIZE, latency: float = 0.0):
        self._tables: dict[str, InMemoryTableClient] = {}
        self._max_page_size = max_page_size
        self._latency = latency
        self.create_calls: Counter[str] = Counter()

    async def get_or_create_table(self, table_name: str) -> InMemoryTableClient:
        self.create_calls[table_name] += 1
        await asyncio.sleep(self._latency)
        if table_name not in self._tables:
            self._tables[table_name] = InMemoryTableClient(
                table_name, max_page_size=self._max_page_size, latency=self._latency
            )
            logger.debug(f"Created in-memory table {table_name}")
        return self._tables[table_name]

    def table(self, table_name: str) -> InMemoryTableClient | None:
        """Direct access to a table for assertions in tests."""
        return self._tables.get(table_name)

    async def close(self) -> None:
        return None

    def clear(self) -> None:
        """Drop all tables."""
        self._tables.clear()
        self.create_calls.clear()


def _key_of(record: Record) -> _Key:
    partition_key = record.get(PARTITION_KEY)
    row_key = record.get(ROW_KEY)
    if not partition_key or not row_key:
        raise InvalidArgumentError("record", "PartitionKey and RowKey are required")
    return partition_key, row_key


def _encode_token(key: _Key) -> str:
    payload = json.dumps({"NextPartitionKey": key[0], "NextRowKey": key[1]})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def _decode_token(token: str) -> _Key:
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        return payload["NextPartitionKey"], payload["NextRowKey"]
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidArgumentError("continuation_token", "malformed token") from e
