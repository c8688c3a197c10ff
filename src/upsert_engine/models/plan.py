# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Mutation plan models produced by the planner and consumed by the executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from .record import Record, RecordId

LinkFieldResolver = Callable[[Record, RecordId], Dict[str, Any]]


class PlanAction(str, Enum):
    """What the executor does with a record."""

    CREATE = "create"
    UPDATE = "update"
    LINK = "link"


@dataclass
class PlanEntry:
    """
    A single planned mutation.

    :param action: CREATE, UPDATE or LINK.
    :type action: ~upsert_engine.models.plan.PlanAction
    :param record: The incoming record this entry was planned for.
    :type record: ~upsert_engine.models.record.Record
    :param position: Index of ``record`` in the planner's input.
    :type position: int
    :param target_id: Identifier of the existing record for UPDATE/LINK. ``None`` for
        CREATE, and for LINK entries waiting on a CREATE in the same batch.
    :type target_id: str | None
    :param fields: Fields to write. ``None`` for a pending LINK until its target is known.
    :type fields: dict[str, Any] | None
    :param leader: For a pending LINK, the position of the CREATE entry of the same key.
    :type leader: int | None
    """

    action: PlanAction
    record: Record
    position: int
    target_id: Optional[RecordId] = None
    fields: Optional[Dict[str, Any]] = None
    leader: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        """True for a LINK whose target is created in the same batch."""
        return self.action is PlanAction.LINK and self.target_id is None and self.leader is not None

    @property
    def key(self) -> Any:
        return self.record.key


@dataclass
class MutationPlan:
    """
    Ordered list of :class:`PlanEntry`, one per input record, in input order.

    The plan also carries the link field resolver so that pending LINK entries can
    compute their fields once the executor knows the identifier they point at.
    """

    entries: List[PlanEntry] = field(default_factory=list)
    link_field_resolver: Optional[LinkFieldResolver] = None
    table: Optional[str] = None

    def __iter__(self) -> Iterator[PlanEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, position: int) -> PlanEntry:
        return self.entries[position]

    @property
    def creates(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.action is PlanAction.CREATE]

    @property
    def updates(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.action is PlanAction.UPDATE]

    @property
    def links(self) -> List[PlanEntry]:
        return [e for e in self.entries if e.action is PlanAction.LINK]

    def counts(self) -> Dict[str, int]:
        """Return the number of entries per action."""
        return {
            PlanAction.CREATE.value: len(self.creates),
            PlanAction.UPDATE.value: len(self.updates),
            PlanAction.LINK.value: len(self.links),
        }


__all__ = ["PlanAction", "PlanEntry", "MutationPlan", "LinkFieldResolver"]
