# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Retrying HTTP transport used by :class:`~upsert_engine.stores.webapi.WebApiRecordStore`.

Network errors are retried with exponential backoff. A POST is only retried when
the connection could not be established: once a ``$batch`` POST may have reached
the service, sending it again could create the same records twice.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

# Methods that may have side effects when replayed after the request was sent.
_NON_REPLAYABLE = frozenset({"post"})


def _can_replay(method: str, exc: requests.exceptions.RequestException) -> bool:
    if (method or "").lower() not in _NON_REPLAYABLE:
        return True
    # ConnectTimeout is a ConnectionError; ReadTimeout is not.
    return isinstance(exc, requests.exceptions.ConnectionError)


class _HttpClient:
    """
    Thin wrapper around :func:`requests.request` (or a session) with retries and timeouts.

    :param retries: Maximum number of attempts for network errors. Default is 5.
    :type retries: :class:`int` | None
    :param backoff: Base delay in seconds between attempts, doubled per attempt. Default is 0.5.
    :type backoff: :class:`float` | None
    :param timeout: Request timeout in seconds. If None, uses per-method defaults.
    :type timeout: :class:`float` | None
    :param session: Optional requests.Session for connection pooling.
    :type session: :class:`requests.Session` | None
    """

    def __init__(
        self,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.max_attempts = retries if retries is not None else 5
        self.base_delay = backoff if backoff is not None else 0.5
        self.default_timeout: Optional[float] = timeout
        self._session = session

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """
        Send one request, retrying network errors that are safe to replay.

        Default timeouts are 120s for POST/DELETE and 10s otherwise. HTTP error
        statuses are returned to the caller unchanged.

        :raises requests.exceptions.RequestException: When attempts are exhausted or
            the error cannot be replayed safely.
        """
        if "timeout" not in kwargs:
            if self.default_timeout is not None:
                kwargs["timeout"] = self.default_timeout
            else:
                kwargs["timeout"] = 120 if (method or "").lower() in ("post", "delete") else 10

        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                if self._session is not None:
                    return self._session.request(method, url, **kwargs)
                return requests.request(method, url, **kwargs)
            except requests.exceptions.RequestException as exc:
                if attempt == attempts - 1 or not _can_replay(method, exc):
                    raise
                delay = self.base_delay * (2**attempt)
                logger.debug("%s %s failed (%s); retrying in %.2fs", method.upper(), url, exc, delay)
                time.sleep(delay)
        raise RuntimeError("Unexpected end of retry loop")

    def close(self) -> None:
        """Close the underlying session, if any. Safe to call multiple times."""
        if self._session is not None:
            self._session.close()
            self._session = None
