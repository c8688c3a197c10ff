# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Link field resolvers and parent linking.

Resolvers decide which fields are written when an incoming record matches an
existing one. :func:`link_to_parents` builds on the engine to attach child
records (e.g. contacts) to parent records (e.g. accounts) found or created by
natural key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..core import error_codes as ec
from ..core.config import NO_OP_SKIP, ReconcileConfig
from ..core.errors import RecordRejected, StoreUnavailable, ValidationError
from ..core.results import BatchResult, RecordOutcome
from ..models.plan import LinkFieldResolver, MutationPlan, PlanAction, PlanEntry
from ..models.record import Record, RecordId
from .executor import BatchUpsertExecutor
from .key_index import ExistingRecordIndex
from .planner import ReconciliationPlanner, all_fields

if TYPE_CHECKING:
    from ..client import UpsertClient

logger = logging.getLogger(__name__)

_MISSING = object()


def no_fields(record: Record, existing_id: RecordId) -> Dict[str, Any]:
    """Resolver that writes nothing; combine with ``no_op_policy="skip"`` to only match."""
    return {}


def changed_fields(index: ExistingRecordIndex) -> LinkFieldResolver:
    """
    Build a resolver writing only the fields whose value differs from the snapshot.

    :param index: Index the plan is built against; its snapshot records are compared.
    :type index: ~upsert_engine.reconciliation.key_index.ExistingRecordIndex
    """

    def resolve(record: Record, existing_id: RecordId) -> Dict[str, Any]:
        current = index.record_for(record.key)
        if current is None:
            return record.to_dict()
        return {k: v for k, v in record.items() if current.get(k, _MISSING) != v}

    return resolve


def foreign_key(
    field_name: str,
    value_of: Callable[[Record], Any],
    index: Optional[ExistingRecordIndex] = None,
) -> LinkFieldResolver:
    """
    Build a resolver that writes one foreign key, only when it differs.

    :param field_name: Foreign key field, e.g. ``"parentcustomerid"``.
    :type field_name: str
    :param value_of: Computes the desired foreign key value from the incoming record.
    :param index: When given, the current value is read from the snapshot record;
        otherwise from the incoming record itself.
    :type index: ~upsert_engine.reconciliation.key_index.ExistingRecordIndex | None
    """

    def resolve(record: Record, existing_id: RecordId) -> Dict[str, Any]:
        desired = value_of(record)
        current_record = index.record_for(record.key) if index is not None else record
        current = current_record.get(field_name) if current_record is not None else None
        if current == desired:
            return {}
        return {field_name: desired}

    return resolve


@dataclass
class LinkResult:
    """
    Outcome of :func:`link_to_parents`.

    :param parents: Reconciliation result for the derived parent records, one per child.
    :type parents: ~upsert_engine.core.results.BatchResult
    :param children: One outcome per child; ``id`` is the child's identifier.
    :type children: ~upsert_engine.core.results.BatchResult
    :param parent_ids: Parent identifier per child (``None`` where the parent failed).
    :type parent_ids: list[str | None]
    """

    parents: BatchResult
    children: BatchResult
    parent_ids: List[Optional[RecordId]] = field(default_factory=list)

    @property
    def created_parents(self) -> int:
        return self.parents.created_count

    @property
    def ok(self) -> bool:
        return self.parents.ok and self.children.ok


def _parent_data(key: Any, key_fields: Union[str, Sequence[str]]) -> Dict[str, Any]:
    if isinstance(key_fields, str):
        return {key_fields: key}
    if len(key_fields) == 1:
        return {key_fields[0]: key}
    return dict(zip(key_fields, key))


def link_to_parents(
    client: "UpsertClient",
    children: Sequence[Record],
    *,
    child_table: str,
    parent_table: str,
    parent_key_fields: Union[str, Sequence[str]],
    parent_key_of: Callable[[Record], Any],
    link_field: str,
    parent_fields_of: Optional[Callable[[Record], Mapping[str, Any]]] = None,
    parent_filter: Optional[Any] = None,
    parent_id_field: Optional[str] = None,
    link_value_of: Optional[Callable[[RecordId], Any]] = None,
) -> LinkResult:
    """
    Attach every child to the parent named by its natural key, creating missing parents.

    Existing parents are matched without being written; one parent is created per
    distinct missing key. Each child whose ``link_field`` differs from its parent's
    identifier is then updated in a single batch.

    :param client: Client whose store holds both tables.
    :param children: Existing child records (must carry ``id``).
    :param child_table: Table of the children.
    :param parent_table: Table of the parents.
    :param parent_key_fields: Parent field(s) forming the natural key.
    :param parent_key_of: Derives the parent natural key from a child.
    :param link_field: Child field holding the parent identifier.
    :param parent_fields_of: Optional payload for created parents; defaults to the key fields.
    :param parent_filter: Optional filter for the parent snapshot query.
    :param parent_id_field: Parent identifier field, store default when omitted.
    :param link_value_of: Converts a parent identifier into the value written to
        ``link_field``, e.g. an ``@odata.bind`` reference. Defaults to the identifier.
    :return: Parent and child results.
    :rtype: LinkResult
    :raises ~upsert_engine.core.errors.ValidationError: If a child has no identifier or
        maps to an empty parent key. Nothing is written in that case.

    Example::

        result = link_to_parents(
            client,
            contacts,
            child_table="contacts",
            parent_table="accounts",
            parent_key_fields="name",
            parent_key_of=lambda c: c["lastname"],
            link_field="accountid",
        )
        print(result.created_parents)
    """
    children = list(children)
    for position, child in enumerate(children):
        if child.id is None:
            raise ValidationError(
                f"Child record at position {position} has no identifier",
                subcode=ec.VALIDATION_MISSING_IDENTIFIER,
                details={"position": position},
            )

    parents = []
    for child in children:
        key = parent_key_of(child)
        data = dict(parent_fields_of(child)) if parent_fields_of else _parent_data(key, parent_key_fields)
        parents.append(Record(key=key, data=data, table=parent_table))

    planner = ReconciliationPlanner(ReconcileConfig(no_op_policy=NO_OP_SKIP))
    planner.validate(parents)
    index = client.build_index(parent_table, key_fields=parent_key_fields, filter=parent_filter, id_field=parent_id_field)
    parent_plan = planner.plan(parents, index, no_fields, table=parent_table)
    parent_result = client.execute(parent_plan)
    parent_ids = [o.id if o.success else None for o in parent_result]

    # Children whose parent resolved are planned as updates (or no-op links)
    entries: List[PlanEntry] = []
    origin: List[int] = []
    for position, (child, parent_id) in enumerate(zip(children, parent_ids)):
        if parent_id is None:
            continue
        value = link_value_of(parent_id) if link_value_of else parent_id
        fields = {} if child.get(link_field) == value else {link_field: value}
        action = PlanAction.UPDATE if fields else PlanAction.LINK
        entries.append(PlanEntry(action=action, record=child, position=len(entries), target_id=child.id, fields=fields))
        origin.append(position)

    child_plan = MutationPlan(entries=entries, link_field_resolver=all_fields, table=child_table)
    partial = BatchUpsertExecutor(client.store).execute(child_plan) if entries else BatchResult()

    outcomes: List[Optional[RecordOutcome]] = [None] * len(children)
    for position, outcome in zip(origin, partial):
        outcomes[position] = RecordOutcome(
            position=position, action=outcome.action, record=outcome.record, id=outcome.id, error=outcome.error
        )
    for position, child in enumerate(children):
        if outcomes[position] is None:
            parent_error = parent_result[position].error
            if not isinstance(parent_error, StoreUnavailable):
                reason = getattr(parent_error, "message", "parent not resolved")
                parent_error = RecordRejected(
                    f"Parent {parents[position].key!r} unavailable: {reason}",
                    subcode=ec.REJECTED_LEADER_FAILED,
                    details={"parent_position": position},
                )
            outcomes[position] = RecordOutcome(
                position=position, action=PlanAction.LINK, record=child, error=parent_error
            )

    child_result = BatchResult(outcomes=list(outcomes))
    logger.info(
        "Linked %d %s to %s: %d parents created, %d children failed",
        len(children),
        child_table,
        parent_table,
        parent_result.created_count,
        len(child_result.failed),
    )
    return LinkResult(parents=parent_result, children=child_result, parent_ids=parent_ids)


__all__ = ["no_fields", "changed_fields", "foreign_key", "link_to_parents", "LinkResult"]
