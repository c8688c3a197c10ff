# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Shared pytest fixtures and configuration for upsert engine tests.

This module provides common test fixtures, mock objects, and configuration
that can be used across all test modules.
"""

import pytest
from unittest.mock import MagicMock

from azure.core.credentials import TokenCredential

from upsert_engine.client import UpsertClient
from upsert_engine.core.config import StoreConfig
from upsert_engine.stores.memory import InMemoryRecordStore


@pytest.fixture
def mock_credential():
    """Mock Azure credential returning a fixed token."""
    credential = MagicMock(spec=TokenCredential)
    credential.get_token.return_value = MagicMock(token="test_token_12345")
    return credential


@pytest.fixture
def test_config():
    """Store configuration with safe defaults for tests."""
    return StoreConfig(http_retries=1, http_backoff=0.0, http_timeout=5)


@pytest.fixture
def sample_base_url():
    """Standard test base URL."""
    return "https://org.example.com"


@pytest.fixture
def store():
    """Empty in-memory store using ``Id`` as the identifier field."""
    return InMemoryRecordStore(id_field="Id")


@pytest.fixture
def client(store):
    """Client bound to the in-memory store."""
    return UpsertClient(store)
