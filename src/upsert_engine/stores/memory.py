# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Dictionary-backed record store for tests, examples and dry runs."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..core import error_codes as ec
from ..core.errors import RecordRejected, StoreUnavailable, ValidationError
from ..core.results import StoreOutcome
from ..models.record import Record
from .base import FieldUpdate, RecordStore

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
RejectRule = Callable[[str, Row], bool]


@dataclass
class _Rule:
    predicate: RejectRule
    reason: str


class InMemoryRecordStore(RecordStore):
    """
    In-process :class:`~upsert_engine.stores.base.RecordStore`.

    Rows are kept per table in insertion order and keyed by a generated GUID string.
    Rejection rules and outage simulation make partial failure and connectivity
    loss reproducible.

    :param id_field: Field name under which each row stores its own identifier.
    :type id_field: str

    Example::

        store = InMemoryRecordStore()
        store.seed("accounts", [{"name": "Doe"}])
        store.add_rule(lambda table, row: row.get("name") == "", "name is required")
        store.fail_next(1)  # the next store call raises StoreUnavailable
    """

    def __init__(self, id_field: str = "id") -> None:
        self.id_field = id_field
        self._tables: Dict[str, Dict[str, Row]] = {}
        self._rules: List[_Rule] = []
        self._failures_pending = 0
        self.available = True
        self.calls: List[str] = []

    # ------------------------------------------------------------ test hooks

    def seed(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[str]:
        """
        Insert ``rows`` directly, bypassing rules and call counting.

        Rows that already carry :attr:`id_field` keep their identifier. Returns the ids.
        """
        return [self._insert(table, dict(row), row.get(self.id_field)) for row in rows]

    def add_rule(self, predicate: RejectRule, reason: str) -> None:
        """Reject any created or updated row for which ``predicate(table, row)`` is true."""
        self._rules.append(_Rule(predicate, reason))

    def fail_next(self, count: int = 1) -> None:
        """Make the next ``count`` store calls raise StoreUnavailable."""
        self._failures_pending += count

    def rows(self, table: str) -> List[Row]:
        """Copies of the rows in ``table``, in insertion order."""
        return [dict(r) for r in self._tables.get(table, {}).values()]

    def get(self, table: str, record_id: str) -> Optional[Row]:
        row = self._tables.get(table, {}).get(record_id)
        return dict(row) if row is not None else None

    # ------------------------------------------------------------- contract

    def query(
        self,
        table: str,
        filter: Optional[Any] = None,
        *,
        key_fields: Union[str, Sequence[str]],
        id_field: Optional[str] = None,
    ) -> List[Record]:
        self._enter("query")
        predicate = _predicate(filter)
        id_field = id_field or self.id_field
        return [
            Record.from_row(table, row, key_fields=key_fields, id_field=id_field)
            for row in self.rows(table)
            if predicate(row)
        ]

    def batch_create(self, table: str, records: Sequence[Record]) -> List[StoreOutcome]:
        self._enter("batch_create")
        outcomes = []
        for record in records:
            row = record.to_dict()
            reason = self._rejection(table, row)
            if reason is not None:
                outcomes.append(StoreOutcome.rejected(RecordRejected(reason, subcode=ec.REJECTED_BY_STORE)))
                continue
            outcomes.append(StoreOutcome.success(self._insert(table, row)))
        return outcomes

    def batch_update(self, table: str, updates: Sequence[FieldUpdate]) -> List[StoreOutcome]:
        self._enter("batch_update")
        rows = self._tables.setdefault(table, {})
        outcomes = []
        for record_id, fields in updates:
            current = rows.get(record_id)
            if current is None:
                outcomes.append(
                    StoreOutcome.rejected(
                        RecordRejected(f"{table}({record_id}) not found", subcode=ec.REJECTED_NOT_FOUND, status_code=404)
                    )
                )
                continue
            merged = {**current, **fields, self.id_field: record_id}
            reason = self._rejection(table, merged)
            if reason is not None:
                outcomes.append(StoreOutcome.rejected(RecordRejected(reason, subcode=ec.REJECTED_BY_STORE)))
                continue
            rows[record_id] = merged
            outcomes.append(StoreOutcome.success(record_id))
        return outcomes

    # ------------------------------------------------------------- internals

    def _enter(self, operation: str) -> None:
        if self._failures_pending > 0:
            self._failures_pending -= 1
            raise StoreUnavailable(f"{operation}: store unreachable", subcode=ec.STORE_CONNECTION_FAILED)
        if not self.available:
            raise StoreUnavailable(f"{operation}: store unreachable", subcode=ec.STORE_CONNECTION_FAILED)
        self.calls.append(operation)

    def _insert(self, table: str, row: Row, record_id: Optional[str] = None) -> str:
        record_id = record_id or str(uuid.uuid4())
        row[self.id_field] = record_id
        self._tables.setdefault(table, {})[record_id] = row
        return record_id

    def _rejection(self, table: str, row: Row) -> Optional[str]:
        for rule in self._rules:
            if rule.predicate(table, row):
                logger.debug("Row rejected in %s: %s", table, rule.reason)
                return rule.reason
        return None


def _predicate(filter: Optional[Any]) -> Callable[[Row], bool]:
    if filter is None:
        return lambda row: True
    if callable(filter):
        return filter
    if isinstance(filter, Mapping):
        expected = dict(filter)
        return lambda row: all(row.get(k) == v for k, v in expected.items())
    raise ValidationError(
        "InMemoryRecordStore filters must be a mapping or a callable",
        subcode=ec.VALIDATION_FILTER_UNSUPPORTED,
        details={"filter_type": type(filter).__name__},
    )


__all__ = ["InMemoryRecordStore"]
