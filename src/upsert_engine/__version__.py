# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Version information for upsert-engine."""

__version__ = "0.1.0"
