"""
Pytest configuration for unit tests.

Disables telemetry and provides in-memory storage fixtures.
"""

import os

import pytest

# Disable telemetry before src modules create their tracers at import time
# so get_tracer() returns NoOpTracer instead of a real tracer
os.environ["TABLESTORE_TELEMETRY_ENABLED"] = "false"

from src.common.storage.memory import InMemoryTableServiceClient  # noqa: E402


def pytest_configure(config):
    """Configure telemetry for unit tests."""
    os.environ["TABLESTORE_TELEMETRY_ENABLED"] = "false"


@pytest.fixture
def service() -> InMemoryTableServiceClient:
    """Create a fresh in-memory table service."""
    return InMemoryTableServiceClient()


@pytest.fixture
def small_page_service() -> InMemoryTableServiceClient:
    """In-memory service that never returns more than 10 entities per page."""
    return InMemoryTableServiceClient(max_page_size=10)
