"""
Transaction Validation

Checks shared by every backend before a transaction is sent.
"""

from __future__ import annotations

from collections.abc import Sequence

from src.common.storage.protocols import MAX_TRANSACTION_ACTIONS, TransactionAction
from src.exceptions import InvalidArgumentError
from src.tables.entity import PARTITION_KEY, ROW_KEY


def check_transaction(actions: Sequence[TransactionAction]) -> str:
    """
    Validate a transaction and return its PartitionKey.

    Raises:
        InvalidArgumentError: Empty, more than 100 actions, more than one
            PartitionKey, a missing key or the same entity twice
    """
    if not actions:
        raise InvalidArgumentError("actions", "a transaction needs at least one action")
    if len(actions) > MAX_TRANSACTION_ACTIONS:
        raise InvalidArgumentError(
            "actions",
            f"{len(actions)} actions exceed the limit of {MAX_TRANSACTION_ACTIONS}",
        )

    partition_keys = {record.get(PARTITION_KEY) for _, record in actions}
    if len(partition_keys) != 1:
        raise InvalidArgumentError("actions", "all actions must share one PartitionKey")
    partition_key = partition_keys.pop()
    if not partition_key:
        raise InvalidArgumentError(PARTITION_KEY, "must be a non-empty string")

    seen: set[str] = set()
    for _, record in actions:
        row_key = record.get(ROW_KEY)
        if not row_key:
            raise InvalidArgumentError(ROW_KEY, "must be a non-empty string")
        if row_key in seen:
            raise InvalidArgumentError("actions", f"RowKey '{row_key}' appears twice")
        seen.add(row_key)

    return partition_key
