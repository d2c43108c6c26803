"""
Unit tests for TableRepository over the in-memory backend.
"""

from __future__ import annotations

import asyncio
import gc

import pytest

from src.common.storage.memory import InMemoryTableServiceClient
from src.exceptions import (
    ConflictError,
    InvalidArgumentError,
    TableInitializationError,
)
from src.tables.entity import TableEntityBase
from src.tables.filters import field
from src.tables.repository import RepositoryHooks, TableRepository, assign_keys


class Item(TableEntityBase):
    """Test entity."""

    name: str = ""
    category: str = "general"
    price: float = 0.0


@pytest.fixture
def repo(service: InMemoryTableServiceClient) -> TableRepository[Item]:
    return TableRepository(service, Item)


async def seed(repo: TableRepository[Item], count: int, category: str = "general") -> list[Item]:
    items = []
    for i in range(count):
        items.append(
            await repo.create(
                Item(partition_key="p1", row_key=f"r{i:04d}", name=f"item-{i}", category=category)
            )
        )
    return items


# =============================================================================
# Keys and hooks
# =============================================================================


class TestKeys:
    """Tests for key assignment before writes."""

    @pytest.mark.asyncio
    async def test_save_assigns_missing_keys(self, repo: TableRepository[Item]):
        saved = await repo.save(Item(name="Widget"))

        assert len(saved.row_key) == 26
        assert saved.partition_key == saved.row_key
        assert saved.etag
        assert saved.timestamp is not None

    @pytest.mark.asyncio
    async def test_existing_keys_are_kept(self, repo: TableRepository[Item]):
        saved = await repo.save(Item(partition_key="p", row_key="r", name="Widget"))
        assert (saved.partition_key, saved.row_key) == ("p", "r")

    def test_assign_keys_is_idempotent(self):
        entity = Item(name="Widget")
        assign_keys(entity)
        keys = (entity.partition_key, entity.row_key)
        assign_keys(entity)
        assert (entity.partition_key, entity.row_key) == keys

    def test_blank_keys_are_replaced(self):
        entity = Item(partition_key="  ", row_key=" ")
        assign_keys(entity, lambda: "generated")
        assert (entity.partition_key, entity.row_key) == ("generated", "generated")

    @pytest.mark.asyncio
    async def test_hooks_override_defaults(self, service: InMemoryTableServiceClient):
        saved_entities: list[Item] = []
        hooks = RepositoryHooks(
            table_name=lambda: "Products",
            new_row_key=lambda: "fixed-key",
            after_save=saved_entities.append,
        )
        repo = TableRepository(service, Item, hooks=hooks)

        saved = await repo.save(Item(name="Widget"))

        assert saved.row_key == "fixed-key"
        assert saved_entities == [saved]
        assert service.table("Products") is not None

    @pytest.mark.asyncio
    async def test_subclass_overrides(self, service: InMemoryTableServiceClient):
        class CategoryRepository(TableRepository[Item]):
            def before_save(self, entity: Item) -> None:
                if not entity.partition_key:
                    entity.partition_key = entity.category
                super().before_save(entity)

        repo = CategoryRepository(service, Item)
        saved = await repo.save(Item(name="Widget", category="tools"))

        assert saved.partition_key == "tools"
        assert saved.row_key != "tools"

    @pytest.mark.asyncio
    async def test_table_prefix(self, service: InMemoryTableServiceClient):
        repo = TableRepository(service, Item, table_prefix="Test")
        await repo.save(Item(name="Widget"))
        assert repo.table_name == "TestItem"
        assert service.table("TestItem") is not None


# =============================================================================
# CRUD
# =============================================================================


class TestCrud:
    """Tests for point reads and writes."""

    @pytest.mark.asyncio
    async def test_create_then_find(self, repo: TableRepository[Item]):
        created = await repo.create(Item(name="Widget", category="tools", price=9.5))

        found = await repo.find(created.row_key, created.partition_key)

        assert found is not None
        assert found.name == "Widget"
        assert found.category == "tools"
        assert found.price == 9.5

    @pytest.mark.asyncio
    async def test_create_conflict(self, repo: TableRepository[Item]):
        await repo.create(Item(partition_key="p", row_key="r"))
        with pytest.raises(ConflictError):
            await repo.create(Item(partition_key="p", row_key="r"))

    @pytest.mark.asyncio
    async def test_save_replaces(self, repo: TableRepository[Item]):
        await repo.save(Item(partition_key="p", row_key="r", name="first", color="red"))
        await repo.save(Item(partition_key="p", row_key="r", name="second"))

        found = await repo.find("r", "p")
        assert found.name == "second"
        assert "color" not in (found.model_extra or {})

    @pytest.mark.asyncio
    async def test_update_upserts(self, repo: TableRepository[Item]):
        updated = await repo.update(Item(partition_key="p", row_key="r", name="new"))
        assert updated.name == "new"

    @pytest.mark.asyncio
    async def test_extra_properties_round_trip(self, repo: TableRepository[Item]):
        saved = await repo.save(Item(partition_key="p", row_key="r", color="red"))
        assert saved.model_extra["color"] == "red"

    @pytest.mark.asyncio
    async def test_find_missing_returns_none(self, repo: TableRepository[Item]):
        assert await repo.find("missing", "p") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("row_key,partition_key", [("", "p"), ("r", ""), ("r", None)])
    async def test_find_requires_keys(
        self, repo: TableRepository[Item], service: InMemoryTableServiceClient, row_key, partition_key
    ):
        with pytest.raises(InvalidArgumentError):
            await repo.find(row_key, partition_key)
        # rejected before the table was touched
        assert service.create_calls == {}

    @pytest.mark.asyncio
    async def test_invalid_key_characters(self, repo: TableRepository[Item]):
        with pytest.raises(InvalidArgumentError):
            await repo.save(Item(partition_key="a/b", row_key="r"))

    @pytest.mark.asyncio
    async def test_save_requires_entity(self, repo: TableRepository[Item]):
        with pytest.raises(InvalidArgumentError):
            await repo.save(None)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_delete_entity(self, repo: TableRepository[Item]):
        saved = await repo.save(Item(name="Widget"))
        await repo.delete(saved)
        assert await repo.find(saved.row_key, saved.partition_key) is None

    @pytest.mark.asyncio
    async def test_delete_by_key_missing_is_silent(self, repo: TableRepository[Item]):
        await repo.delete_by_key("missing", "p")

    @pytest.mark.asyncio
    async def test_delete_requires_keys(self, repo: TableRepository[Item]):
        with pytest.raises(InvalidArgumentError):
            await repo.delete_by_key("", "p")
        with pytest.raises(InvalidArgumentError):
            await repo.delete(None)  # type: ignore[arg-type]


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    """Tests for find_all, find_page and find_one."""

    @pytest.mark.asyncio
    async def test_find_all_without_filter(self, repo: TableRepository[Item]):
        await seed(repo, 5)
        assert len(await repo.find_all()) == 5

    @pytest.mark.asyncio
    async def test_find_all_with_expression(self, repo: TableRepository[Item]):
        await seed(repo, 3, category="books")
        await repo.create(Item(partition_key="p2", row_key="x", category="tools"))

        books = await repo.find_all(field("category") == "books")
        assert len(books) == 3
        assert all(item.category == "books" for item in books)

    @pytest.mark.asyncio
    async def test_attribute_names_resolve_to_storage_names(self, repo: TableRepository[Item]):
        await seed(repo, 2)
        await repo.create(Item(partition_key="p2", row_key="x"))

        found = await repo.find_all(field("partition_key") == "p2")
        assert [item.row_key for item in found] == ["x"]

    @pytest.mark.asyncio
    async def test_find_all_with_raw_string(self, repo: TableRepository[Item]):
        await seed(repo, 4)
        found = await repo.find_all("RowKey ge 'r0002'")
        assert [item.row_key for item in found] == ["r0002", "r0003"]

    @pytest.mark.asyncio
    async def test_find_all_spans_pages(self, small_page_service: InMemoryTableServiceClient):
        repo = TableRepository(small_page_service, Item)
        await seed(repo, 25)
        assert len(await repo.find_all()) == 25

    @pytest.mark.asyncio
    async def test_find_page_follows_tokens(self, small_page_service: InMemoryTableServiceClient):
        repo = TableRepository(small_page_service, Item)
        await seed(repo, 25)

        seen: list[str] = []
        sizes: list[int] = []
        token = None
        while True:
            page = await repo.find_page(continuation_token=token, page_size=10)
            seen.extend(item.row_key for item in page)
            sizes.append(len(page))
            token = page.continuation_token
            if token is None:
                break

        assert sizes == [10, 10, 5]
        assert len(set(seen)) == 25

    @pytest.mark.asyncio
    async def test_find_page_on_empty_table(self, repo: TableRepository[Item]):
        page = await repo.find_page()
        assert page.items == []
        assert page.continuation_token is None
        assert not page.has_more

    @pytest.mark.asyncio
    async def test_find_page_rejects_bad_page_size(self, repo: TableRepository[Item]):
        with pytest.raises(InvalidArgumentError):
            await repo.find_page(page_size=0)

    @pytest.mark.asyncio
    async def test_find_one_requests_single_item_page(
        self, repo: TableRepository[Item], service: InMemoryTableServiceClient
    ):
        await seed(repo, 20)
        table = service.table("Item")
        table.calls.clear()

        found = await repo.find_one(field("name") == "item-0")

        assert found is not None
        assert found.row_key == "r0000"
        assert table.calls["query_entities"] == 1

    @pytest.mark.asyncio
    async def test_find_one_no_match(self, repo: TableRepository[Item]):
        await seed(repo, 3)
        assert await repo.find_one(field("name") == "nope") is None


# =============================================================================
# Lazy initialization
# =============================================================================


class FailingService:
    """Service whose table creation always fails."""

    def __init__(self, delay: float = 0.0):
        self.calls = 0
        self.delay = delay

    async def get_or_create_table(self, table_name: str):
        self.calls += 1
        await asyncio.sleep(self.delay)
        raise ConnectionError("storage unreachable")

    async def close(self) -> None:
        return None


class TestInitialization:
    """Tests for lazy, once-only table initialization."""

    @pytest.mark.asyncio
    async def test_no_table_until_first_use(self, service: InMemoryTableServiceClient):
        repo = TableRepository(service, Item)
        assert service.create_calls == {}
        await repo.find_all()
        assert service.create_calls["Item"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_first_callers_share_initialization(self):
        service = InMemoryTableServiceClient(latency=0.01)
        repo = TableRepository(service, Item)

        await asyncio.gather(*(repo.find(f"r{i}", "p") for i in range(10)))

        assert service.create_calls["Item"] == 1

    @pytest.mark.asyncio
    async def test_failure_is_memoized(self):
        service = FailingService()
        repo = TableRepository(service, Item)

        with pytest.raises(TableInitializationError) as first:
            await repo.find("r", "p")
        with pytest.raises(TableInitializationError):
            await repo.find_all()

        assert service.calls == 1
        assert isinstance(first.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_new_instance_retries(self):
        service = FailingService()
        for _ in range(2):
            with pytest.raises(TableInitializationError):
                await TableRepository(service, Item).find("r", "p")
        assert service.calls == 2

    @pytest.mark.asyncio
    async def test_invalid_table_name(self, service: InMemoryTableServiceClient):
        repo = TableRepository(service, Item, hooks=RepositoryHooks(table_name=lambda: "bad-name"))
        with pytest.raises(InvalidArgumentError):
            await repo.find_all()
        assert service.create_calls == {}

    def test_constructor_validation(self, service: InMemoryTableServiceClient):
        with pytest.raises(InvalidArgumentError):
            TableRepository(None, Item)  # type: ignore[arg-type]
        with pytest.raises(InvalidArgumentError):
            TableRepository(service, dict)  # type: ignore[arg-type]
        with pytest.raises(InvalidArgumentError):
            TableRepository(service, Item, page_size=0)


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Cancellation surfaces as asyncio.CancelledError, never wrapped."""

    @pytest.mark.asyncio
    async def test_cancel_during_initialization(self):
        service = InMemoryTableServiceClient(latency=0.05)
        repo = TableRepository(service, Item)

        task = asyncio.create_task(repo.find("r", "p"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        # shared initialization kept running for other callers
        assert await repo.find("r", "p") is None
        assert service.create_calls["Item"] == 1

    @pytest.mark.asyncio
    async def test_failed_initialization_with_no_waiters_is_not_reported(self):
        loop = asyncio.get_running_loop()
        reported: list[dict] = []
        previous = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            repo = TableRepository(FailingService(delay=0.02), Item)
            caller = asyncio.create_task(repo.find("r", "p"))
            await asyncio.sleep(0.005)
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller

            shared = repo._client_task
            await asyncio.wait([shared])
            assert shared.done() and not shared.cancelled()

            del repo, caller, shared
            gc.collect()
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(previous)

        assert [c for c in reported if "never retrieved" in c.get("message", "")] == []

    @pytest.mark.asyncio
    async def test_cancel_before_write_reaches_storage(self):
        service = InMemoryTableServiceClient(latency=0.05)
        repo = TableRepository(service, Item)
        await repo.get_client()

        task = asyncio.create_task(repo.save(Item(partition_key="p", row_key="r")))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(service.table("Item")) == 0
