# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Wire-level helpers for Web API stores.

Internal: the ``$batch`` codec in :mod:`upsert_engine.data._batch`.
"""

__all__ = []
