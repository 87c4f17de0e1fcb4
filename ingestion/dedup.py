"""
Deduplication of extracted records against a version's stored rows.

Two strategies, chosen by the schema:

- Primary fields declared: a record whose primary values are all present
  is kept only if no stored row matches every primary value. A record with
  any primary value missing cannot be checked and is always kept.
- No primary fields: a record is kept only if no stored row carries an
  identical payload.

Within one batch, records collapse on a local key (primary value tuple or
content fingerprint) so the same record is never staged twice.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Mapping, Sequence

from schemas.fields import FieldDefinition

logger = logging.getLogger(__name__)


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def content_fingerprint(record: Mapping[str, Any]) -> str:
    """Stable SHA-256 of a record, independent of key order."""
    return hashlib.sha256(canonical_json(record).encode("utf-8")).hexdigest()


def primary_key_string(record: Mapping[str, Any], primary_fields: Sequence[str]) -> str:
    return "|".join(
        f"{field}:{'' if record.get(field) is None else record.get(field)}"
        for field in primary_fields
    )


class Deduplicator:
    """
    Stage the records of one fetch that are not yet stored.

    Args:
        store: VersionedDataStore (or anything with exists_by_fields /
            exists_by_payload coroutines)
        fields: Field definitions of the store's schema version
    """

    def __init__(self, store, fields: Sequence[FieldDefinition]):
        self.store = store
        self.primary_fields = [f.key for f in fields if f.primary]

    async def deduplicate(self, records: List[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
        if self.primary_fields:
            staged = await self._by_primary_fields(records)
        else:
            staged = await self._by_content(records)

        logger.info(
            f"Deduplication staged {len(staged)} of {len(records)} records "
            f"({'primary: ' + ','.join(self.primary_fields) if self.primary_fields else 'content hash'})"
        )
        return staged

    async def _by_primary_fields(self, records):
        staged: List[Mapping[str, Any]] = []
        seen = set()

        for record in records:
            values = {field: record.get(field) for field in self.primary_fields}

            if any(value is None for value in values.values()):
                # Uniqueness cannot be evaluated without a full key.
                staged.append(record)
                continue

            local_key = primary_key_string(record, self.primary_fields)
            if local_key in seen:
                continue
            seen.add(local_key)

            if not await self.store.exists_by_fields(values):
                staged.append(record)

        return staged

    async def _by_content(self, records):
        staged: Dict[str, Mapping[str, Any]] = {}

        for record in records:
            fingerprint = content_fingerprint(record)
            if fingerprint in staged:
                continue

            if not await self.store.exists_by_payload(record):
                staged[fingerprint] = record

        return list(staged.values())
