# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Two-phase application of a mutation plan against a record store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..core import error_codes as ec
from ..core.errors import RecordRejected, StoreUnavailable
from ..core.results import BatchResult, RecordOutcome, StoreOutcome
from ..models.plan import MutationPlan, PlanAction, PlanEntry
from ..models.record import Record, RecordId
from ..stores.base import RecordStore
from .planner import all_fields

logger = logging.getLogger(__name__)


class BatchUpsertExecutor:
    """
    Apply a :class:`~upsert_engine.models.plan.MutationPlan` in two bulk phases.

    1. All CREATE entries are submitted in one ``batch_create`` call.
    2. LINK entries pending on a CREATE of the same batch are resolved to the
       identifier that CREATE received.
    3. All UPDATE/LINK entries with fields to write are submitted in one
       ``batch_update`` call. LINK entries with nothing to write are confirmed
       without a store call.

    Per-record rejections are reported in the result and never stop sibling
    records. :class:`~upsert_engine.core.errors.StoreUnavailable` stops the run:
    every record not yet committed is reported failed with that error. Creates
    committed in phase 1 are not rolled back; re-running against the rebuilt
    index is safe.

    :param store: Store the plan is written to.
    :type store: ~upsert_engine.stores.base.RecordStore
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def execute(self, plan: MutationPlan, table: Optional[str] = None) -> BatchResult:
        """
        Execute ``plan`` and return one outcome per planned record, in input order.

        :param plan: Plan produced by the planner.
        :type plan: ~upsert_engine.models.plan.MutationPlan
        :param table: Target table. Defaults to ``plan.table``.
        :type table: str | None
        :return: Outcomes ordered by input position.
        :rtype: ~upsert_engine.core.results.BatchResult
        :raises ValueError: If no table is given and the plan carries none.
        """
        table = table or plan.table
        if not table:
            raise ValueError("table is required to execute a plan")

        outcomes: List[Optional[RecordOutcome]] = [None] * len(plan)
        assigned: Dict[int, RecordId] = {}
        leader_errors: Dict[int, Any] = {}

        # Phase 1: creates
        creates = plan.creates
        if creates:
            logger.debug("Submitting %d creates to %s", len(creates), table)
            submitted = [Record(key=e.record.key, data=dict(e.fields or {}), table=table) for e in creates]
            try:
                results = self._store.batch_create(table, submitted)
                _check_count(results, creates, "batch_create")
            except StoreUnavailable as exc:
                logger.error("Store unavailable during create phase for %s: %s", table, exc.message)
                _record_creates(creates, exc.outcomes, outcomes, assigned, leader_errors)
                return self._abort(plan, outcomes, exc)
            _record_creates(creates, results, outcomes, assigned, leader_errors)

        # Phase 2: resolve links, then updates
        resolver = plan.link_field_resolver or all_fields
        pending: List[Tuple[PlanEntry, RecordId, Dict[str, Any]]] = []
        for entry in plan:
            if outcomes[entry.position] is not None:
                continue
            if entry.is_pending:
                target_id = assigned.get(entry.leader)
                if target_id is None:
                    outcomes[entry.position] = _failure(entry, _leader_failed(entry, leader_errors.get(entry.leader)))
                    continue
                fields = dict(resolver(entry.record, target_id) or {})
            else:
                target_id = entry.target_id
                fields = dict(entry.fields or {})
            if entry.action is PlanAction.LINK and not fields:
                outcomes[entry.position] = _success(entry, target_id)
                continue
            pending.append((entry, target_id, fields))

        if pending:
            logger.debug("Submitting %d updates to %s", len(pending), table)
            try:
                results = self._store.batch_update(table, [(target_id, fields) for _, target_id, fields in pending])
                _check_count(results, pending, "batch_update")
            except StoreUnavailable as exc:
                logger.error("Store unavailable during update phase for %s: %s", table, exc.message)
                _record_updates(pending, exc.outcomes, outcomes)
                return self._abort(plan, outcomes, exc)
            _record_updates(pending, results, outcomes)

        result = BatchResult(outcomes=list(outcomes))
        logger.info("Reconciled %d records into %s: %s", len(result), table, result.summary())
        return result

    @staticmethod
    def _abort(plan: MutationPlan, outcomes: List[Optional[RecordOutcome]], error: StoreUnavailable) -> BatchResult:
        for entry in plan:
            if outcomes[entry.position] is None:
                outcomes[entry.position] = _failure(entry, error)
        return BatchResult(outcomes=list(outcomes))


def _check_count(results: Sequence[StoreOutcome], submitted: Sequence[Any], operation: str) -> None:
    if len(results) != len(submitted):
        raise StoreUnavailable(
            f"{operation} returned {len(results)} results for {len(submitted)} records",
            subcode=ec.STORE_RESULT_COUNT_MISMATCH,
            details={"expected": len(submitted), "received": len(results)},
        )


def _record_creates(
    creates: Sequence[PlanEntry],
    results: Sequence[StoreOutcome],
    outcomes: List[Optional[RecordOutcome]],
    assigned: Dict[int, RecordId],
    leader_errors: Dict[int, Any],
) -> None:
    """Fill outcomes for the leading ``len(results)`` creates; the rest stay open."""
    for entry, res in zip(creates, results):
        if res.ok and res.id:
            assigned[entry.position] = res.id
            outcomes[entry.position] = _success(entry, res.id)
        else:
            error = res.error or RecordRejected(
                "Store did not return an identifier for the created record",
                subcode=ec.REJECTED_BY_STORE,
            )
            leader_errors[entry.position] = error
            logger.warning("Create rejected for key %r: %s", entry.key, error.message)
            outcomes[entry.position] = _failure(entry, error)


def _record_updates(
    pending: Sequence[Tuple[PlanEntry, RecordId, Dict[str, Any]]],
    results: Sequence[StoreOutcome],
    outcomes: List[Optional[RecordOutcome]],
) -> None:
    for (entry, target_id, _), res in zip(pending, results):
        if res.ok:
            outcomes[entry.position] = _success(entry, target_id)
        else:
            logger.warning("Update rejected for key %r (%s): %s", entry.key, target_id, res.error.message)
            outcomes[entry.position] = _failure(entry, res.error)


def _leader_failed(entry: PlanEntry, leader_error: Any) -> RecordRejected:
    reason = getattr(leader_error, "message", None) or "create failed"
    return RecordRejected(
        f"Record for key {entry.key!r} was not created: {reason}",
        subcode=ec.REJECTED_LEADER_FAILED,
        details={"leader": entry.leader},
    )


def _success(entry: PlanEntry, record_id: Optional[RecordId]) -> RecordOutcome:
    return RecordOutcome(position=entry.position, action=entry.action, record=entry.record, id=record_id)


def _failure(entry: PlanEntry, error: Any) -> RecordOutcome:
    return RecordOutcome(position=entry.position, action=entry.action, record=entry.record, error=error)


__all__ = ["BatchUpsertExecutor"]
