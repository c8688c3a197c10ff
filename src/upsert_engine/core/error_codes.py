# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

TRANSIENT_STATUS = {429, 502, 503, 504}

# Validation subcodes
VALIDATION_EMPTY_NATURAL_KEY = "validation_empty_natural_key"
VALIDATION_UNHASHABLE_NATURAL_KEY = "validation_unhashable_natural_key"
VALIDATION_MISSING_IDENTIFIER = "validation_missing_identifier"
VALIDATION_NO_KEY_FIELDS = "validation_no_key_fields"
VALIDATION_FILTER_UNSUPPORTED = "validation_filter_unsupported"

# Store availability subcodes
STORE_CONNECTION_FAILED = "store_connection_failed"
STORE_TIMEOUT = "store_timeout"
STORE_ABORTED = "store_aborted"
STORE_RESULT_COUNT_MISMATCH = "store_result_count_mismatch"
STORE_RESPONSE_MALFORMED = "store_response_malformed"

# Per-record rejection subcodes
REJECTED_BY_STORE = "rejected_by_store"
REJECTED_NOT_FOUND = "rejected_not_found"
REJECTED_LEADER_FAILED = "rejected_leader_failed"


def http_subcode(status: int) -> str:
    """Return the ``http_<status>`` subcode for an HTTP status code."""
    return f"http_{status}"


def is_transient_status(status: int) -> bool:
    return status in TRANSIENT_STATUS
