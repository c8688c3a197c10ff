# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Data models and type definitions for the upsert engine.

- :class:`~upsert_engine.models.record.Record`: record value with natural key and dict-like access.
- :class:`~upsert_engine.models.plan.MutationPlan`: ordered plan of create/update/link entries.
- :mod:`~upsert_engine.models.natural_key`: natural key normalization and validation.

Import directly from the specific module files.
"""

__all__ = []
