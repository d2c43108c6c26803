"""
Repository Factory

TableServiceProvider builds the storage service client for the configured
backend and hands out one repository per entity type:

    async with TableServiceProvider(config) as provider:
        items = provider.repository(Item)
        await items.save(Item(name="Widget"))

Supports Azure (storage account) and Memory (tests) backends.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from src.common.storage.config import StorageConfig, resolve_connection_string
from src.common.storage.protocols import TableServiceClient
from src.exceptions import MissingConfigError

if TYPE_CHECKING:
    from src.tables.entity import TEntity
    from src.tables.repository import RepositoryHooks, TableRepository

logger = logging.getLogger(__name__)


def create_service_client(config: StorageConfig | None = None) -> TableServiceClient:
    """
    Create a service client for the configured backend.

    Raises:
        MissingConfigError: Azure backend without a connection string
        ValueError: Unknown backend
    """
    config = config or StorageConfig()

    if config.backend == "memory":
        from src.common.storage.memory import InMemoryTableServiceClient

        return InMemoryTableServiceClient()

    if config.backend == "azure":
        from src.common.storage.azure import AzureTableServiceClient, retry_config

        if not config.connection_string:
            raise MissingConfigError(
                "connection_string",
                "Set TABLESTORE_CONNECTION_STRING to a connection string or its name",
            )
        connection_string = resolve_connection_string(config.connection_string, config)
        return AzureTableServiceClient.from_connection_string(
            connection_string,
            retry=retry_config(config.retry_max_attempts, config.retry_base_delay),
        )

    raise ValueError(f"Unknown storage backend: {config.backend}")


class TableServiceProvider:
    """
    Service client and repository provider with lifecycle management.

    Repositories are created on first request and reused, so each entity type
    gets one repository (and one lazy table initialization) per provider.

    Usage:
        # As context manager (recommended)
        async with TableServiceProvider(config) as provider:
            repo = provider.repository(Item)

        # With an existing service client (tests)
        provider = TableServiceProvider(service_client=InMemoryTableServiceClient())
        await provider.initialize()
        try:
            repo = provider.repository(Item)
        finally:
            await provider.close()
    """

    def __init__(
        self,
        config: StorageConfig | None = None,
        service_client: TableServiceClient | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            config: Storage configuration. If None, reads from environment.
            service_client: Use this client instead of building one from config
        """
        self._config = config or StorageConfig()
        self._service_client = service_client
        self._owns_client = service_client is None
        self._repositories: dict[type, TableRepository[Any]] = {}
        self._initialized = False

    @property
    def config(self) -> StorageConfig:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def service_client(self) -> TableServiceClient:
        if self._service_client is None:
            raise RuntimeError(
                "Provider not initialized. Call initialize() or use as context manager."
            )
        return self._service_client

    async def initialize(self) -> None:
        """Build the service client. No network I/O happens until a table is used."""
        if self._initialized:
            logger.warning("Provider already initialized, skipping re-initialization")
            return

        if self._service_client is None:
            self._service_client = create_service_client(self._config)

        self._initialized = True
        logger.debug(f"TableServiceProvider initialized with backend: {self._config.backend}")

    def repository(
        self,
        entity_type: type[TEntity],
        hooks: RepositoryHooks[TEntity] | None = None,
    ) -> TableRepository[TEntity]:
        """
        Repository for `entity_type`, created on first request.

        `hooks` only applies when the repository is created.
        """
        from src.tables.repository import TableRepository

        repository = self._repositories.get(entity_type)
        if repository is None:
            repository = TableRepository(
                self.service_client,
                entity_type,
                hooks=hooks,
                table_prefix=self._config.table_prefix,
                page_size=self._config.page_size,
            )
            self._repositories[entity_type] = repository
        return repository

    async def close(self) -> None:
        """Close the service client if this provider created it. Safe to call twice."""
        if not self._initialized:
            return

        if self._owns_client and self._service_client is not None:
            await self._service_client.close()
            self._service_client = None
        self._repositories.clear()
        self._initialized = False
        logger.debug("TableServiceProvider closed")

    async def __aenter__(self) -> TableServiceProvider:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
