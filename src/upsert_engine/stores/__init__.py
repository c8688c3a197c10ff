# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Record store implementations.

- :class:`~upsert_engine.stores.base.RecordStore`: the contract the engine consumes.
- :class:`~upsert_engine.stores.memory.InMemoryRecordStore`: dictionary-backed store.
- :class:`~upsert_engine.stores.webapi.WebApiRecordStore`: OData Web API store.
"""

from .base import RecordStore
from .memory import InMemoryRecordStore
from .webapi import WebApiRecordStore

__all__ = ["RecordStore", "InMemoryRecordStore", "WebApiRecordStore"]
