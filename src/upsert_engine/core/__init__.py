# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Core infrastructure components for the upsert engine.

This module contains the foundational components including configuration,
error types, authentication and the HTTP client used by Web API stores.
Result types live in :mod:`upsert_engine.core.results`.
"""

from .config import ReconcileConfig, StoreConfig
from .errors import (
    UpsertEngineError,
    ValidationError,
    StoreUnavailable,
    RecordRejected,
)

__all__ = [
    "ReconcileConfig",
    "StoreConfig",
    "UpsertEngineError",
    "ValidationError",
    "StoreUnavailable",
    "RecordRejected",
]
