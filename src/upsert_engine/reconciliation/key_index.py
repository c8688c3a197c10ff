# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Natural key index built from a snapshot of existing store records."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from ..models.natural_key import is_empty_key, normalize_key
from ..models.record import Record, RecordId

logger = logging.getLogger(__name__)


class ExistingRecordIndex(Mapping[Any, RecordId]):
    """
    Read-only mapping of natural key to surrogate identifier.

    Built once per reconciliation run by :meth:`KeyIndex.build`. The index is a
    snapshot: it is never refreshed, so it must be rebuilt if the store changes
    between building and planning.
    """

    def __init__(self, ids: Dict[Any, RecordId], records: Dict[Any, Record], duplicates: List[Any]) -> None:
        self._ids = ids
        self._records = records
        self.duplicates = tuple(duplicates)

    def __getitem__(self, key: Any) -> RecordId:
        return self._ids[normalize_key(key)]

    def __contains__(self, key: object) -> bool:
        try:
            return normalize_key(key) in self._ids
        except TypeError:
            return False

    def __iter__(self) -> Iterator[Any]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def record_for(self, key: Any) -> Optional[Record]:
        """Return the snapshot record that won ``key``, or None."""
        return self._records.get(normalize_key(key))

    def __repr__(self) -> str:
        return f"ExistingRecordIndex(size={len(self._ids)}, duplicates={len(self.duplicates)})"


class KeyIndex:
    """Builder for :class:`ExistingRecordIndex`."""

    @staticmethod
    def build(existing_records: Iterable[Record]) -> ExistingRecordIndex:
        """
        Index existing records by natural key in a single pass.

        On a duplicate key the first occurrence wins; the key is logged and listed
        in :attr:`ExistingRecordIndex.duplicates`. Records without an identifier or
        with an empty natural key cannot be matched and are skipped with a warning.

        :param existing_records: Records read from the store, carrying key and id.
        :type existing_records: Iterable[~upsert_engine.models.record.Record]
        :return: The index.
        :rtype: ExistingRecordIndex
        """
        ids: Dict[Any, RecordId] = {}
        records: Dict[Any, Record] = {}
        duplicates: List[Any] = []
        for record in existing_records:
            if record.id is None or is_empty_key(record.key):
                logger.warning("Skipping unmatchable snapshot record (key=%r, id=%r)", record.key, record.id)
                continue
            key = normalize_key(record.key)
            if key in ids:
                logger.warning(
                    "Duplicate natural key %r in snapshot: keeping %s, ignoring %s", key, ids[key], record.id
                )
                duplicates.append(key)
                continue
            ids[key] = record.id
            records[key] = record
        logger.debug("Built key index with %d keys (%d duplicates)", len(ids), len(duplicates))
        return ExistingRecordIndex(ids, records, duplicates)


__all__ = ["KeyIndex", "ExistingRecordIndex"]
