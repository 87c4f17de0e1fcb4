"""
Batch persistence of staged records into a version's ``crawl_data`` table
"""

from typing import Any, Dict, List, Mapping, Optional
from core.config import settings
from storage.compiler import PAYLOAD_COLUMN
from storage.data_store import VersionedDataStore, build_row
import logging

logger = logging.getLogger(__name__)


class PostgresLoader:
    """
    Insert records in fixed-size batches, one multi-row INSERT per batch.

    The column set of every batch is the declared schema of the store, so
    records with missing keys get NULL for those columns and records with
    extra keys do not change the statement shape. The full record is kept
    in the payload column.
    """

    def __init__(self, store: VersionedDataStore, batch_size: Optional[int] = None):
        self.store = store
        self.batch_size = batch_size or settings.INSERT_BATCH_SIZE

    def to_rows(
        self,
        records: List[Mapping[str, Any]],
        extra_values: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        rows = []
        for record in records:
            row = build_row(self.store.fields, record, extra_values)
            row[PAYLOAD_COLUMN] = dict(record)
            rows.append(row)
        return rows

    async def load(
        self,
        records: List[Mapping[str, Any]],
        extra_values: Optional[Mapping[str, Any]] = None
    ) -> int:
        """
        Persist ``records``.

        Args:
            records: Deduplicated records
            extra_values: Column values shared by every row (persisted
                request parameters)

        Returns:
            Number of rows inserted
        """
        if not records:
            return 0

        # Coerce everything first so a bad value fails before any batch is written.
        rows = self.to_rows(records, extra_values)

        total_loaded = 0
        for i in range(0, len(rows), self.batch_size):
            batch = rows[i:i + self.batch_size]
            count = await self.store.insert_rows(batch)
            total_loaded += count

            logger.info(f"Batch {i // self.batch_size + 1}: Loaded {count} rows into {self.store.unit_name}")

        return total_loaded
