"""
Table Store Exception Hierarchy

Structured exception types for the table repository and its storage backends.
All package-specific exceptions inherit from TableStoreError.

Usage:
    from src.exceptions import ConflictError, TableStoreError

    try:
        await repository.create(entity)
    except ConflictError:
        logger.info("Entity already exists")

Lookups that find nothing return None instead of raising, and cancellation is
reported as the native asyncio.CancelledError, never wrapped.
"""

from __future__ import annotations


class TableStoreError(Exception):
    """
    Base exception for all table store errors.

    Attributes:
        message: Human-readable error description
        code: Optional machine-readable error code for programmatic handling
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# Argument Errors
# =============================================================================


class InvalidArgumentError(TableStoreError, ValueError):
    """A required argument is missing or malformed. Raised before any I/O."""

    def __init__(self, argument: str, reason: str) -> None:
        super().__init__(
            f"Invalid argument '{argument}': {reason}",
            code="INVALID_ARGUMENT",
        )
        self.argument = argument
        self.reason = reason


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(TableStoreError):
    """Base class for configuration-related errors."""

    pass


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, field: str, hint: str | None = None) -> None:
        message = f"Missing required configuration: '{field}'"
        if hint:
            message += f". {hint}"
        super().__init__(message, code="CONFIG_MISSING")
        self.field = field


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(TableStoreError):
    """Base class for storage/repository errors."""

    pass


class ConflictError(StorageError):
    """An insert collided with an entity that already has the same keys."""

    def __init__(self, table: str, partition_key: str, row_key: str) -> None:
        super().__init__(
            f"Entity already exists in '{table}': "
            f"PartitionKey='{partition_key}', RowKey='{row_key}'",
            code="STORAGE_CONFLICT",
        )
        self.table = table
        self.partition_key = partition_key
        self.row_key = row_key


class StorageTransportError(StorageError):
    """The storage service call failed (network, throttling, service error)."""

    def __init__(self, operation: str, reason: str, status_code: int | None = None) -> None:
        super().__init__(
            f"Storage call '{operation}' failed: {reason}",
            code="STORAGE_TRANSPORT",
        )
        self.operation = operation
        self.reason = reason
        self.status_code = status_code


class TableInitializationError(StorageError):
    """Creating or opening the table handle failed."""

    def __init__(self, table: str, reason: str) -> None:
        super().__init__(
            f"Failed to initialize table '{table}': {reason}",
            code="STORAGE_INIT",
        )
        self.table = table
        self.reason = reason


class TransactionError(StorageError):
    """
    The storage service rejected a transaction.

    The service rolls back the whole transaction. `failed_index` is the
    position of the offending action inside the transaction, when known.
    When raised from a batch, `chunk_index` is the position of the failed
    transaction and `committed` the number of entities committed before it.
    """

    chunk_index: int | None = None
    committed: int | None = None

    def __init__(
        self,
        table: str,
        partition_key: str,
        reason: str,
        failed_index: int | None = None,
    ) -> None:
        super().__init__(
            f"Transaction on '{table}' (PartitionKey='{partition_key}') failed: {reason}",
            code="STORAGE_TRANSACTION",
        )
        self.table = table
        self.partition_key = partition_key
        self.reason = reason
        self.failed_index = failed_index
