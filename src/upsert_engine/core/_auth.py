# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

from __future__ import annotations

from dataclasses import dataclass

from azure.core.credentials import TokenCredential


@dataclass
class _TokenPair:
    resource: str
    access_token: str


class _AuthManager:
    """Azure Identity-based authentication helper for Web API stores."""

    def __init__(self, credential: TokenCredential) -> None:
        if not isinstance(credential, TokenCredential):
            raise TypeError("credential must implement azure.core.credentials.TokenCredential.")
        self.credential: TokenCredential = credential

    def _acquire_token(self, scope: str) -> _TokenPair:
        """Acquire an access token for the given scope."""
        token = self.credential.get_token(scope)
        return _TokenPair(resource=scope, access_token=token.token)
