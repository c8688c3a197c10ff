# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Natural-key reconciliation and upsert engine.

Match incoming records to existing store records by natural key, then apply a
minimal create/update/link plan in two bulk store calls.
"""

from .__version__ import __version__
from .client import UpsertClient

__all__ = ["__version__", "UpsertClient"]
