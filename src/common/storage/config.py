"""
Storage Configuration

Configuration-driven backend selection with environment variable support.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.exceptions import InvalidArgumentError, MissingConfigError


class StorageConfig(BaseSettings):
    """
    Configuration for the table storage backend.

    Supports environment variables with TABLESTORE_ prefix:
    - TABLESTORE_BACKEND: "azure" or "memory"
    - TABLESTORE_CONNECTION_STRING: connection string, or the name of one
    - TABLESTORE_CONNECTION_STRINGS__<NAME>: named connection strings
    - TABLESTORE_TABLE_PREFIX: prefix for default table names
    - TABLESTORE_PAGE_SIZE: default page size hint for queries
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Backend selection
    backend: Literal["azure", "memory"] = Field(
        default="memory",
        description="Storage backend: azure (storage account) or memory (tests)",
    )

    # Azure Table Storage settings
    connection_string: str | None = Field(
        default=None,
        description="Connection string, or the name of a configured connection string",
    )
    connection_strings: dict[str, str] = Field(
        default_factory=dict,
        description="Named connection strings",
    )

    # Repository defaults
    table_prefix: str = Field(
        default="",
        description="Prefix added to default table names",
    )
    page_size: int | None = Field(
        default=None,
        gt=0,
        description="Default page size hint for queries (None = server default)",
    )

    # Retry settings for connection-level failures
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per idempotent storage call",
    )
    retry_base_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Initial backoff delay in seconds",
    )


def is_connection_string(value: str) -> bool:
    """A value with ';' or '=' past its first character is taken as a connection string."""
    return any(value.find(c) > 0 for c in (";", "="))


def resolve_connection_string(
    name_or_value: str | None,
    config: StorageConfig | None = None,
) -> str:
    """
    Resolve a connection string from a literal value or a configured name.

    Lookup order for a name: the config's named connection strings
    (case-insensitive), then an environment variable of that name.

    Raises:
        InvalidArgumentError: If `name_or_value` is empty
        MissingConfigError: If the name cannot be resolved
    """
    if name_or_value is None or not name_or_value.strip():
        raise InvalidArgumentError("name_or_value", "must be a connection string or a name")

    if is_connection_string(name_or_value):
        return name_or_value

    config = config or StorageConfig()
    wanted = name_or_value.lower()
    for name, value in config.connection_strings.items():
        if name.lower() == wanted and value and value.strip():
            return value

    value = os.environ.get(name_or_value)
    if value and value.strip():
        return value

    raise MissingConfigError(
        name_or_value,
        f"Set TABLESTORE_CONNECTION_STRINGS__{name_or_value} or the {name_or_value} "
        "environment variable",
    )
