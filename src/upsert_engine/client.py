# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence, Union

import pandas as pd

from .core.config import ReconcileConfig
from .core.results import BatchResult
from .models.plan import LinkFieldResolver, MutationPlan
from .models.record import Record
from .reconciliation.executor import BatchUpsertExecutor
from .reconciliation.key_index import ExistingRecordIndex, KeyIndex
from .reconciliation.linking import LinkResult, link_to_parents
from .reconciliation.planner import ReconciliationPlanner
from .stores.base import RecordStore
from .utils._pandas import batch_result_to_dataframe, records_from_dataframe

logger = logging.getLogger(__name__)


class UpsertClient:
    """
    High-level entry point for natural-key reconciliation against a record store.

    A run is synchronous and sequential: one snapshot query builds the key index,
    the planner classifies the incoming records, and the executor applies the plan
    in two bulk store calls (creates, then updates/links).

    **Context Manager Support**:
        Closing the client closes its store::

            with UpsertClient(WebApiRecordStore(base_url, credential)) as client:
                result = client.reconcile("accounts", incoming, key_fields="name")

    :param store: Record store to reconcile against.
    :type store: ~upsert_engine.stores.base.RecordStore
    :param config: Planning configuration. Defaults to :meth:`ReconcileConfig.from_env`.
    :type config: ~upsert_engine.core.config.ReconcileConfig | None

    Example:
        Upsert accounts by name::

            from upsert_engine.client import UpsertClient
            from upsert_engine.models.record import Record
            from upsert_engine.stores.memory import InMemoryRecordStore

            client = UpsertClient(InMemoryRecordStore())
            incoming = [Record(key="Contoso", data={"name": "Contoso", "city": "Redmond"})]
            result = client.reconcile("accounts", incoming, key_fields="name")
            print(result.summary())
    """

    def __init__(self, store: RecordStore, config: Optional[ReconcileConfig] = None) -> None:
        self.store = store
        self._config = config or ReconcileConfig.from_env()
        self._planner = ReconciliationPlanner(self._config)
        self._executor = BatchUpsertExecutor(store)

    def __enter__(self) -> "UpsertClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying store. Safe to call multiple times."""
        self.store.close()

    def build_index(
        self,
        table: str,
        *,
        key_fields: Union[str, Sequence[str]],
        filter: Optional[Any] = None,
        id_field: Optional[str] = None,
    ) -> ExistingRecordIndex:
        """
        Query ``table`` once and index the snapshot by natural key.

        :raises ~upsert_engine.core.errors.StoreUnavailable: If the snapshot query fails.
        """
        return KeyIndex.build(self.store.query(table, filter, key_fields=key_fields, id_field=id_field))

    def plan(
        self,
        incoming: Sequence[Record],
        index: ExistingRecordIndex,
        link_field_resolver: Optional[LinkFieldResolver] = None,
        *,
        table: Optional[str] = None,
    ) -> MutationPlan:
        """Classify ``incoming`` against ``index``. See :class:`ReconciliationPlanner`."""
        return self._planner.plan(incoming, index, link_field_resolver, table=table)

    def execute(self, plan: MutationPlan, table: Optional[str] = None) -> BatchResult:
        """Apply ``plan`` to the store. See :class:`BatchUpsertExecutor`."""
        return self._executor.execute(plan, table)

    def reconcile(
        self,
        table: str,
        incoming: Sequence[Record],
        *,
        key_fields: Union[str, Sequence[str]],
        filter: Optional[Any] = None,
        id_field: Optional[str] = None,
        link_field_resolver: Optional[LinkFieldResolver] = None,
        index_resolver: Optional[Callable[[ExistingRecordIndex], LinkFieldResolver]] = None,
    ) -> BatchResult:
        """
        Run a full reconciliation of ``incoming`` into ``table``.

        Incoming records are validated before the snapshot query, so an empty natural
        key fails fast without touching the store.

        :param table: Target table.
        :type table: str
        :param incoming: Records to upsert, each carrying its natural key.
        :type incoming: Sequence[~upsert_engine.models.record.Record]
        :param key_fields: Store field(s) forming the natural key.
        :type key_fields: str | list[str]
        :param filter: Optional filter narrowing the snapshot query.
        :param id_field: Identifier field; store default when omitted.
        :type id_field: str | None
        :param link_field_resolver: What to write for matched records (default: all fields).
        :param index_resolver: Alternative to ``link_field_resolver`` for resolvers that
            need the index, e.g. :func:`~upsert_engine.reconciliation.linking.changed_fields`.
        :return: One outcome per incoming record, in input order.
        :rtype: ~upsert_engine.core.results.BatchResult
        :raises ~upsert_engine.core.errors.ValidationError: If a record has an empty natural key.
        :raises ~upsert_engine.core.errors.StoreUnavailable: If the snapshot query fails.

        Example::

            result = client.reconcile(
                "accounts", incoming, key_fields="name", index_resolver=changed_fields
            )
            for outcome in result.failed:
                print(outcome.key, outcome.error.message)
        """
        incoming = list(incoming)
        self._planner.validate(incoming)
        index = self.build_index(table, key_fields=key_fields, filter=filter, id_field=id_field)
        resolver = index_resolver(index) if index_resolver is not None else link_field_resolver
        plan = self.plan(incoming, index, resolver, table=table)
        logger.info("Reconciling %d records into %s: %s", len(plan), table, plan.counts())
        return self.execute(plan)

    def reconcile_dataframe(
        self,
        table: str,
        df: pd.DataFrame,
        *,
        key_fields: Union[str, Sequence[str]],
        na_as_null: bool = False,
        **kwargs: Any,
    ) -> pd.DataFrame:
        """
        Reconcile the rows of a DataFrame and report the outcome as a DataFrame.

        :param table: Target table.
        :type table: str
        :param df: One row per incoming record; column names are field names.
        :type df: ~pandas.DataFrame
        :param key_fields: Column(s) forming the natural key.
        :type key_fields: str | list[str]
        :param na_as_null: Send missing values as null instead of omitting them.
        :type na_as_null: bool
        :param kwargs: Forwarded to :meth:`reconcile`.
        :return: One row per input row with ``position``, ``key``, ``action``, ``id``,
            ``success``, ``error_code`` and ``error_message``.
        :rtype: ~pandas.DataFrame
        """
        incoming = records_from_dataframe(df, table, key_fields, na_as_null=na_as_null)
        result = self.reconcile(table, incoming, key_fields=key_fields, **kwargs)
        return batch_result_to_dataframe(result)

    def link_to_parents(self, children: Sequence[Record], **kwargs: Any) -> LinkResult:
        """Attach children to parents by natural key. See :func:`~upsert_engine.reconciliation.linking.link_to_parents`."""
        return link_to_parents(self, children, **kwargs)


__all__ = ["UpsertClient"]
