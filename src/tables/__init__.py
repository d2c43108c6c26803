"""
Tables

Repository, entity model, filters and key generation for partitioned table
storage.

Usage:
    from src.tables import TableEntityBase, TableRepository, field

    class Item(TableEntityBase):
        name: str

    repository = TableRepository(service_client, Item)
    await repository.save(Item(name="Widget"))
    items = await repository.find_all(field("name") == "Widget")
"""

from src.tables.batch import (
    create_batch,
    delete_batch,
    delete_where,
    save_batch,
    submit_batch,
    update_batch,
)
from src.tables.entity import OperationKind, Page, TableEntityBase
from src.tables.filters import Expression, Filter, field, parse_filter, render_filter
from src.tables.keys import (
    generate_partition_key,
    generate_partition_key_query,
    generate_partition_key_range_query,
    generate_row_key,
    new_id,
    round_timestamp,
    to_reverse_chronological,
)
from src.tables.repository import RepositoryHooks, TableRepository, assign_keys

__all__ = [
    # Model
    "TableEntityBase",
    "OperationKind",
    "Page",
    # Repository
    "TableRepository",
    "RepositoryHooks",
    "assign_keys",
    # Batch
    "submit_batch",
    "create_batch",
    "update_batch",
    "save_batch",
    "delete_batch",
    "delete_where",
    # Filters
    "Expression",
    "Filter",
    "field",
    "parse_filter",
    "render_filter",
    # Keys
    "new_id",
    "generate_row_key",
    "generate_partition_key",
    "generate_partition_key_range_query",
    "generate_partition_key_query",
    "round_timestamp",
    "to_reverse_chronological",
]
