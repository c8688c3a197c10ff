# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Structured exceptions raised by the upsert engine.

All errors derive from :class:`UpsertEngineError` and carry a machine-readable
``code``/``subcode`` pair plus a ``details`` dictionary for diagnostics.
"""

from __future__ import annotations

import datetime as _dt
from typing import Any, Dict, List, Optional, Sequence


class UpsertEngineError(Exception):
    """Base structured error for the upsert engine."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        subcode: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        is_transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.status_code = status_code
        self.details = details or {}
        self.source = source or "client"
        self.is_transient = is_transient
        self.timestamp = _dt.datetime.now(_dt.timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "subcode": self.subcode,
            "status_code": self.status_code,
            "details": self.details,
            "source": self.source,
            "is_transient": self.is_transient,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"{self.__class__.__name__}(code={self.code!r}, subcode={self.subcode!r}, message={self.message!r})"


class ValidationError(UpsertEngineError):
    """Malformed input detected before any store call."""

    def __init__(self, message: str, *, subcode: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="validation_error", subcode=subcode, details=details, source="client")


class StoreUnavailable(UpsertEngineError):
    """
    The record store could not be reached, timed out, or aborted the request.

    :param outcomes: Per-record outcomes the store committed before it became
        unavailable, for the leading records of the failed call in submission order.
    :type outcomes: list[~upsert_engine.core.results.StoreOutcome] | None
    """

    def __init__(
        self,
        message: str,
        *,
        subcode: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        outcomes: Optional[Sequence[Any]] = None,
    ):
        super().__init__(
            message,
            code="store_unavailable",
            subcode=subcode,
            status_code=status_code,
            details=details,
            source="store",
            is_transient=True,
        )
        self.outcomes: List[Any] = list(outcomes or [])


class RecordRejected(UpsertEngineError):
    """
    The store refused a single record.

    :param reason: Store-provided reason for the rejection.
    :type reason: :class:`str`
    :param service_error_code: Optional error code reported by the store.
    :type service_error_code: :class:`str` | None
    """

    def __init__(
        self,
        reason: str,
        *,
        subcode: Optional[str] = None,
        status_code: Optional[int] = None,
        service_error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        d = details or {}
        if service_error_code is not None:
            d["service_error_code"] = service_error_code
        super().__init__(
            reason,
            code="record_rejected",
            subcode=subcode,
            status_code=status_code,
            details=d,
            source="store",
        )
        self.reason = reason
        self.service_error_code = service_error_code


__all__ = ["UpsertEngineError", "ValidationError", "StoreUnavailable", "RecordRejected"]
