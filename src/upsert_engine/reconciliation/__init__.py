# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Natural-key reconciliation: index, plan, execute.

- :class:`~upsert_engine.reconciliation.key_index.KeyIndex`: snapshot index of existing records.
- :class:`~upsert_engine.reconciliation.planner.ReconciliationPlanner`: create/update/link classification.
- :class:`~upsert_engine.reconciliation.executor.BatchUpsertExecutor`: two-phase application.
"""

from .key_index import ExistingRecordIndex, KeyIndex
from .planner import ReconciliationPlanner
from .executor import BatchUpsertExecutor

__all__ = ["ExistingRecordIndex", "KeyIndex", "ReconciliationPlanner", "BatchUpsertExecutor"]
