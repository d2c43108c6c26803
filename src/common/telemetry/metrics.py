"""
Table Store Metrics.

Counters for batch writes and bulk deletes.
"""

from __future__ import annotations

from src.common.telemetry.setup import get_meter


class TableMetrics:
    """
    Metrics for table repository batch operations.

    Tracks:
    - Entities included in committed transactions, by operation
    - Transactions submitted, by outcome
    - Query pages fetched by bulk deletes
    """

    def __init__(self, meter_name: str = "tablestore"):
        self._meter = get_meter(meter_name)

        self._batch_entities = self._meter.create_counter(
            name="tablestore_batch_entities_total",
            description="Entities included in committed transactions",
            unit="1",
        )
        self._transactions = self._meter.create_counter(
            name="tablestore_transactions_total",
            description="Transactions submitted",
            unit="1",
        )
        self._pages = self._meter.create_counter(
            name="tablestore_delete_pages_total",
            description="Query pages processed by bulk deletes",
            unit="1",
        )

    def record_transaction(self, table: str, operation: str, size: int, success: bool) -> None:
        attrs = {"table": table, "operation": operation}
        self._transactions.add(1, {**attrs, "status": "success" if success else "error"})
        if success:
            self._batch_entities.add(size, attrs)

    def record_delete_page(self, table: str) -> None:
        self._pages.add(1, {"table": table})


_table_metrics: TableMetrics | None = None


def get_table_metrics() -> TableMetrics:
    """Shared TableMetrics instance."""
    global _table_metrics
    if _table_metrics is None:
        _table_metrics = TableMetrics()
    return _table_metrics
