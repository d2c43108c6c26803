"""Azure Table Storage backend."""

from src.common.storage.azure.client import (
    AzureTableClient,
    AzureTableServiceClient,
    retry_config,
)

__all__ = [
    "AzureTableClient",
    "AzureTableServiceClient",
    "retry_config",
]
