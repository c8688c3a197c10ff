# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Record store contract consumed by the upsert engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..core.results import StoreOutcome
from ..models.record import Record, RecordId

FieldUpdate = Tuple[RecordId, Dict[str, Any]]


class RecordStore(ABC):
    """
    Abstract keyed record collection.

    Implementations must:

    - return one :class:`~upsert_engine.core.results.StoreOutcome` per submitted
      record from :meth:`batch_create` and :meth:`batch_update`, in submission order;
    - report per-record business-rule failures as rejected outcomes, never by raising;
    - raise :class:`~upsert_engine.core.errors.StoreUnavailable` when the store cannot
      be reached, times out, or aborts the request. Retries, if any, happen before
      raising.
    """

    @abstractmethod
    def query(
        self,
        table: str,
        filter: Optional[Any] = None,
        *,
        key_fields: Union[str, Sequence[str]],
        id_field: Optional[str] = None,
    ) -> List[Record]:
        """
        Snapshot read of ``table``.

        :param table: Table to read.
        :type table: str
        :param filter: Mapping of field to value (equality, joined with AND) or a
            store-native filter expression.
        :param key_fields: Field name(s) forming the natural key of returned records.
        :type key_fields: str | list[str]
        :param id_field: Field holding the surrogate identifier; store default when omitted.
        :type id_field: str | None
        :return: Records carrying key and id.
        :rtype: list[~upsert_engine.models.record.Record]
        """

    @abstractmethod
    def batch_create(self, table: str, records: Sequence[Record]) -> List[StoreOutcome]:
        """Create ``records`` in one round-trip; outcomes carry the assigned ids."""

    @abstractmethod
    def batch_update(self, table: str, updates: Sequence[FieldUpdate]) -> List[StoreOutcome]:
        """Apply ``(id, fields)`` updates in one round-trip."""

    def close(self) -> None:
        """Release resources held by the store. Safe to call multiple times."""

    def __enter__(self) -> "RecordStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["RecordStore", "FieldUpdate"]
