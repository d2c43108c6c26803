"""
Storage Abstraction Layer

Protocol-based storage clients for partitioned table storage.
Supports Azure Table Storage (production) and in-memory (tests) backends.

Usage:
    from src.common.storage import StorageConfig, TableServiceProvider

    async with TableServiceProvider(StorageConfig(backend="memory")) as provider:
        repo = provider.repository(Item)
"""

from src.common.storage.config import StorageConfig, resolve_connection_string
from src.common.storage.factory import TableServiceProvider, create_service_client
from src.common.storage.memory import InMemoryTableClient, InMemoryTableServiceClient
from src.common.storage.protocols import (
    MAX_TRANSACTION_ACTIONS,
    Record,
    TableClient,
    TableServiceClient,
    TransactionAction,
)

__all__ = [
    # Protocols
    "TableClient",
    "TableServiceClient",
    "Record",
    "TransactionAction",
    "MAX_TRANSACTION_ACTIONS",
    # Config
    "StorageConfig",
    "resolve_connection_string",
    # Factory
    "TableServiceProvider",
    "create_service_client",
    # Backends
    "InMemoryTableClient",
    "InMemoryTableServiceClient",
]
