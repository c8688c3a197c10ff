# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Classify incoming records into create / update / link entries."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..core.config import ReconcileConfig
from ..models.natural_key import validate_key
from ..models.plan import LinkFieldResolver, MutationPlan, PlanAction, PlanEntry
from ..models.record import Record, RecordId
from .key_index import ExistingRecordIndex

logger = logging.getLogger(__name__)


def all_fields(record: Record, existing_id: RecordId) -> Dict[str, Any]:
    """Default link field resolver: write every field of the incoming record."""
    return record.to_dict()


class ReconciliationPlanner:
    """
    Build a :class:`~upsert_engine.models.plan.MutationPlan` from incoming records.

    Incoming records are grouped by natural key and each group is classified once:

    - key present in the index: every record of the group targets the existing
      identifier. The link field resolver decides what is written. An empty field
      set becomes a no-op LINK when the config's ``no_op_policy`` is ``"skip"``,
      otherwise an UPDATE (always re-upsert).
    - key absent: the first record of the group is a CREATE with all of its fields
      and the others are LINK entries pending on that CREATE.

    :param config: Planning configuration. Defaults to :meth:`ReconcileConfig.from_env`.
    :type config: ~upsert_engine.core.config.ReconcileConfig | None

    Example::

        index = KeyIndex.build(store.query("accounts", key_fields="name", id_field="accountid"))
        plan = ReconciliationPlanner().plan(incoming, index)
        print(plan.counts())  # {"create": 1, "update": 1, "link": 0}
    """

    def __init__(self, config: Optional[ReconcileConfig] = None) -> None:
        self._config = config or ReconcileConfig.from_env()

    def plan(
        self,
        incoming: Sequence[Record],
        index: ExistingRecordIndex,
        link_field_resolver: Optional[LinkFieldResolver] = None,
        *,
        table: Optional[str] = None,
    ) -> MutationPlan:
        """
        Plan one entry per incoming record, in input order.

        :param incoming: Records to reconcile.
        :type incoming: Sequence[~upsert_engine.models.record.Record]
        :param index: Snapshot index of existing records.
        :type index: ~upsert_engine.reconciliation.key_index.ExistingRecordIndex
        :param link_field_resolver: ``(record, existing_id) -> fields`` deciding what to
            write for a match. Defaults to :func:`all_fields`.
        :type link_field_resolver: Callable | None
        :param table: Table name stored on the plan for the executor.
        :type table: str | None
        :return: The mutation plan.
        :rtype: ~upsert_engine.models.plan.MutationPlan
        :raises ~upsert_engine.core.errors.ValidationError: If any record has an empty
            natural key. Nothing is planned in that case.
        """
        resolver = link_field_resolver or all_fields
        incoming = list(incoming)

        keys = self.validate(incoming)

        groups: Dict[Any, List[int]] = {}
        for position, key in enumerate(keys):
            groups.setdefault(key, []).append(position)

        entries: List[Optional[PlanEntry]] = [None] * len(incoming)
        for key, positions in groups.items():
            if key in index:
                existing_id = index[key]
                for position in positions:
                    entries[position] = self._matched_entry(incoming[position], position, existing_id, resolver)
                continue
            leader, *followers = positions
            entries[leader] = PlanEntry(
                action=PlanAction.CREATE,
                record=incoming[leader],
                position=leader,
                fields=incoming[leader].to_dict(),
            )
            for position in followers:
                entries[position] = PlanEntry(
                    action=PlanAction.LINK,
                    record=incoming[position],
                    position=position,
                    leader=leader,
                )

        plan = MutationPlan(entries=list(entries), link_field_resolver=resolver, table=table)
        logger.debug("Planned %d records (%d distinct keys): %s", len(plan), len(groups), plan.counts())
        return plan

    def validate(self, incoming: Sequence[Record]) -> List[Any]:
        """
        Return the normalized natural keys of ``incoming``.

        :raises ~upsert_engine.core.errors.ValidationError: On the first empty or unhashable key.
        """
        return [validate_key(record.key, position=i) for i, record in enumerate(incoming)]

    def _matched_entry(
        self,
        record: Record,
        position: int,
        existing_id: RecordId,
        resolver: LinkFieldResolver,
    ) -> PlanEntry:
        fields = dict(resolver(record, existing_id) or {})
        if not fields and self._config.skip_no_op:
            action = PlanAction.LINK
        else:
            action = PlanAction.UPDATE
        return PlanEntry(action=action, record=record, position=position, target_id=existing_id, fields=fields)


__all__ = ["ReconciliationPlanner", "all_fields"]
