# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Result types for store calls and reconciliation runs.

- :class:`StoreOutcome`: one per record submitted to ``batch_create``/``batch_update``.
- :class:`RecordOutcome`: one per input record of a reconciliation run.
- :class:`BatchResult`: ordered collection of :class:`RecordOutcome`.

Example::

    result = client.reconcile("accounts", incoming, key_fields="name")
    for outcome in result:
        if outcome.success:
            print(outcome.key, outcome.action.value, outcome.id)
        else:
            print(outcome.key, outcome.error.code, outcome.error.message)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from ..models.plan import PlanAction
from ..models.record import Record, RecordId
from .errors import RecordRejected, StoreUnavailable


@dataclass(frozen=True)
class StoreOutcome:
    """
    Result of one record inside a store batch call.

    Exactly one of ``id`` (create) / ``ok`` (update) or ``error`` is meaningful.

    :param id: Identifier assigned (create) or confirmed (update).
    :type id: :class:`str` | None
    :param error: Rejection reported by the store for this record.
    :type error: ~upsert_engine.core.errors.RecordRejected | None
    """

    id: Optional[RecordId] = None
    error: Optional[RecordRejected] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, record_id: Optional[RecordId] = None) -> "StoreOutcome":
        return cls(id=record_id)

    @classmethod
    def rejected(cls, error: RecordRejected) -> "StoreOutcome":
        return cls(error=error)


@dataclass(frozen=True)
class RecordOutcome:
    """
    Final outcome for one input record.

    :param position: Index of the record in the run's input.
    :type position: :class:`int`
    :param action: The planned action.
    :type action: ~upsert_engine.models.plan.PlanAction
    :param record: The input record.
    :type record: ~upsert_engine.models.record.Record
    :param id: Assigned (CREATE) or confirmed (UPDATE/LINK) identifier on success.
    :type id: :class:`str` | None
    :param error: Failure for this record, if any.
    :type error: ~upsert_engine.core.errors.RecordRejected | ~upsert_engine.core.errors.StoreUnavailable | None
    """

    position: int
    action: PlanAction
    record: Record
    id: Optional[RecordId] = None
    error: Optional[Union[RecordRejected, StoreUnavailable]] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def key(self) -> Any:
        return self.record.key


@dataclass
class BatchResult:
    """
    One :class:`RecordOutcome` per input record, ordered by input position.

    Behaves like a read-only list of outcomes.
    """

    outcomes: List[RecordOutcome] = field(default_factory=list)

    def __iter__(self) -> Iterator[RecordOutcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def __getitem__(self, position: int) -> RecordOutcome:
        return self.outcomes[position]

    @property
    def succeeded(self) -> List[RecordOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[RecordOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def ok(self) -> bool:
        """True when every record succeeded."""
        return not self.failed

    @property
    def ids(self) -> List[Optional[RecordId]]:
        """Identifiers in input order (``None`` for failed records)."""
        return [o.id for o in self.outcomes]

    @property
    def created_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success and o.action is PlanAction.CREATE)

    def summary(self) -> Dict[str, int]:
        """
        Count outcomes.

        :return: ``total``, ``succeeded``, ``failed`` and one successful count per action.
        :rtype: dict[str, int]
        """
        counts = {
            "total": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
        }
        for action in PlanAction:
            counts[action.value] = sum(1 for o in self.outcomes if o.success and o.action is action)
        return counts


__all__ = ["StoreOutcome", "RecordOutcome", "BatchResult"]
