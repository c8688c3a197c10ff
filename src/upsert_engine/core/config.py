# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

NO_OP_ALWAYS = "always"
NO_OP_SKIP = "skip"
_NO_OP_POLICIES = (NO_OP_ALWAYS, NO_OP_SKIP)


@dataclass(frozen=True)
class ReconcileConfig:
    """
    Planning behaviour for a reconciliation run.

    :param no_op_policy: What to do when a matched record has nothing to write.
        ``"always"`` (default) submits an update anyway, re-upserting every match.
        ``"skip"`` emits a link entry that is confirmed without a store call.
    :type no_op_policy: str
    """

    no_op_policy: str = NO_OP_ALWAYS

    def __post_init__(self) -> None:
        if self.no_op_policy not in _NO_OP_POLICIES:
            raise ValueError(f"no_op_policy must be one of {_NO_OP_POLICIES}, got {self.no_op_policy!r}")

    @property
    def skip_no_op(self) -> bool:
        return self.no_op_policy == NO_OP_SKIP

    @classmethod
    def from_env(cls) -> "ReconcileConfig":
        """
        Create a configuration instance with default settings.

        :return: Configuration instance with default values.
        :rtype: ~upsert_engine.core.config.ReconcileConfig
        """
        return cls(no_op_policy=NO_OP_ALWAYS)


@dataclass(frozen=True)
class StoreConfig:
    """
    Connection settings for :class:`~upsert_engine.stores.webapi.WebApiRecordStore`.

    :param api_version: Web API version segment (default ``"v9.2"``).
    :type api_version: str
    :param http_retries: Maximum number of attempts for network errors (default: 5).
    :type http_retries: int or None
    :param http_backoff: Base delay in seconds for exponential backoff (default: 0.5).
    :type http_backoff: float or None
    :param http_timeout: Request timeout in seconds (default: method-dependent).
    :type http_timeout: float or None
    :param batch_size: Maximum operations per ``$batch`` request (default: 1000).
    :type batch_size: int
    :param continue_on_error: Send ``Prefer: odata.continue-on-error`` so one failed
        operation does not stop its siblings (default: True).
    :type continue_on_error: bool
    """

    api_version: str = "v9.2"

    # HTTP retry and resilience configuration
    http_retries: Optional[int] = None
    http_backoff: Optional[float] = None
    http_timeout: Optional[float] = None

    batch_size: int = 1000
    continue_on_error: bool = True

    @classmethod
    def from_env(cls) -> "StoreConfig":
        # Environment-free defaults
        return cls(
            api_version="v9.2",
            http_retries=None,  # Will default to 5 in _HttpClient
            http_backoff=None,  # Will default to 0.5 in _HttpClient
            http_timeout=None,  # Will use method-dependent defaults in _HttpClient
            batch_size=1000,
            continue_on_error=True,
        )
