# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Utilities for the upsert engine.

- :mod:`upsert_engine.utils._pandas`: DataFrame conversion for incoming records and results.
"""

__all__ = []
