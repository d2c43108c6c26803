"""
Table Entity Model

Base model for entities stored in a partitioned table, the page container
returned by paged queries, and the transaction action kinds.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from src.exceptions import InvalidArgumentError

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
TIMESTAMP = "Timestamp"
ETAG = "ETag"

# Service limit for PartitionKey and RowKey, in UTF-8 bytes
MAX_KEY_BYTES = 1024

_DISALLOWED_KEY_CHARS = re.compile(r"[/\\#?\x00-\x1f\x7f-\x9f]")


class OperationKind(str, Enum):
    """Action applied to every entity of a batch transaction."""

    ADD = "add"
    UPDATE_MERGE = "update_merge"
    UPDATE_REPLACE = "update_replace"
    UPSERT_MERGE = "upsert_merge"
    UPSERT_REPLACE = "upsert_replace"
    DELETE = "delete"


class TableEntityBase(BaseModel):
    """
    Base class for table entities.

    An entity is addressed by (PartitionKey, RowKey). Timestamp and ETag are
    assigned by the storage service and are never written by the client.
    Subclasses add their own flat fields:

        class Item(TableEntityBase):
            name: str
            price: float = 0.0
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    SYSTEM_FIELDS: ClassVar[frozenset[str]] = frozenset({"timestamp", "etag"})

    partition_key: str = Field(default="", alias=PARTITION_KEY)
    row_key: str = Field(default="", alias=ROW_KEY)
    timestamp: datetime | None = Field(default=None, alias=TIMESTAMP)
    etag: str | None = Field(default=None, alias=ETAG)

    def to_record(self) -> dict[str, Any]:
        """Flat storage record keyed by storage names, without service fields."""
        return self.model_dump(by_alias=True, exclude=set(self.SYSTEM_FIELDS))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> TableEntityBase:
        """Build an entity from a storage record (including Timestamp/ETag)."""
        return cls.model_validate(dict(record))

    @classmethod
    def storage_name(cls, name: str) -> str:
        """Resolve a Python attribute name to its storage column name."""
        info = cls.model_fields.get(name)
        if info is not None and info.alias:
            return info.alias
        return name


TEntity = TypeVar("TEntity", bound=TableEntityBase)
T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """
    One server page of query results.

    `continuation_token` is present iff more results may exist; an empty
    token is normalized to None.
    """

    items: list[T] = field(default_factory=list)
    continuation_token: str | None = None

    def __post_init__(self) -> None:
        if not self.continuation_token:
            object.__setattr__(self, "continuation_token", None)

    @property
    def has_more(self) -> bool:
        return self.continuation_token is not None

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def validate_key(name: str, value: str | None) -> str:
    """
    Check a PartitionKey/RowKey value before it is sent to the service.

    Raises:
        InvalidArgumentError: If the key is empty, too long or contains
            characters the service rejects
    """
    if value is None or not str(value).strip():
        raise InvalidArgumentError(name, "must be a non-empty string")
    if len(value.encode("utf-8")) > MAX_KEY_BYTES:
        raise InvalidArgumentError(name, f"exceeds {MAX_KEY_BYTES} bytes")
    if _DISALLOWED_KEY_CHARS.search(value):
        raise InvalidArgumentError(name, "contains '/', '\\', '#', '?' or control characters")
    return value
