"""
In-Memory Storage Backend

For unit tests only - no storage account required.
"""

from src.common.storage.memory.client import (
    InMemoryTableClient,
    InMemoryTableServiceClient,
)

__all__ = [
    "InMemoryTableClient",
    "InMemoryTableServiceClient",
]
