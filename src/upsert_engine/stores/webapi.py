# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Record store backed by an OData v4 Web API (Dataverse conventions).

Reads use ``GET /{entity_set}`` with ``$filter`` and follow ``@odata.nextLink``.
Creates and updates are sent as one ``$batch`` request per phase with
``Prefer: odata.continue-on-error`` so a rejected record does not stop its
siblings.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import requests
from azure.core.credentials import TokenCredential

from ..core import error_codes as ec
from ..core._auth import _AuthManager
from ..core._http import _HttpClient
from ..core.config import StoreConfig
from ..core.errors import RecordRejected, StoreUnavailable
from ..core.results import StoreOutcome
from ..data._batch import _BatchOperation, _BatchPartResponse, _decode_batch, _encode_batch, _new_boundary
from ..models.record import Record
from .base import FieldUpdate, RecordStore

logger = logging.getLogger(__name__)

_GUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


def _escape_odata_quotes(value: str) -> str:
    """Escape single quotes for OData queries (by doubling them)."""
    return value.replace("'", "''")


def _odata_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return f"'{_escape_odata_quotes(str(value))}'"


def _build_filter(filter: Optional[Any]) -> Optional[str]:
    """Render a mapping as ``a eq 'x' and b eq 1``; strings pass through unchanged."""
    if filter is None:
        return None
    if isinstance(filter, str):
        return filter
    if isinstance(filter, Mapping):
        return " and ".join(f"{name} eq {_odata_literal(value)}" for name, value in filter.items()) or None
    raise TypeError("filter must be a str, a mapping, or None")


class WebApiRecordStore(RecordStore):
    """
    :class:`~upsert_engine.stores.base.RecordStore` for an OData Web API endpoint.

    ``table`` arguments are entity set names (e.g. ``"accounts"``).

    :param base_url: Environment URL, e.g. ``"https://org.crm.dynamics.com"``.
    :type base_url: str
    :param credential: Azure Identity credential used for bearer tokens.
    :type credential: ~azure.core.credentials.TokenCredential
    :param config: HTTP and batching settings. Defaults to :meth:`StoreConfig.from_env`.
    :type config: ~upsert_engine.core.config.StoreConfig | None
    :param session: Optional session for connection pooling. Closed by :meth:`close`.
    :type session: requests.Session | None

    Example::

        from azure.identity import InteractiveBrowserCredential

        with WebApiRecordStore("https://org.crm.dynamics.com", InteractiveBrowserCredential()) as store:
            accounts = store.query("accounts", {"statecode": 0}, key_fields="name")
    """

    def __init__(
        self,
        base_url: str,
        credential: TokenCredential,
        config: Optional[StoreConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        if not self._base_url:
            raise ValueError("base_url is required.")
        self._auth = _AuthManager(credential)
        self._config = config or StoreConfig.from_env()
        self.api = f"{self._base_url}/api/data/{self._config.api_version}"
        self._http = _HttpClient(
            retries=self._config.http_retries,
            backoff=self._config.http_backoff,
            timeout=self._config.http_timeout,
            session=session,
        )
        # Cache: entity set name -> primary id attribute
        self._primary_id_cache: Dict[str, str] = {}

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------- plumbing

    def _headers(self) -> Dict[str, str]:
        """Build standard OData headers with bearer auth."""
        scope = f"{self._base_url}/.default"
        token = self._auth._acquire_token(scope).access_token
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send a request; transport failures and non-2xx statuses become StoreUnavailable."""
        try:
            r = self._http._request(method, url, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise StoreUnavailable(f"{method.upper()} {url} timed out", subcode=ec.STORE_TIMEOUT) from exc
        except requests.exceptions.RequestException as exc:
            raise StoreUnavailable(
                f"{method.upper()} {url} failed: {exc}", subcode=ec.STORE_CONNECTION_FAILED
            ) from exc
        if not 200 <= r.status_code < 300:
            raise StoreUnavailable(
                f"{method.upper()} {url} returned HTTP {r.status_code}",
                subcode=ec.http_subcode(r.status_code),
                status_code=r.status_code,
                details={
                    "body_excerpt": (r.text or "")[:200],
                    "is_transient": ec.is_transient_status(r.status_code),
                },
            )
        return r

    def _primary_id_attr(self, entity_set: str) -> str:
        """Return the primary key attribute using metadata (cached; fallback ``<logical>id``)."""
        pid = self._primary_id_cache.get(entity_set)
        if pid:
            return pid
        url = f"{self.api}/EntityDefinitions"
        params = {
            "$select": "LogicalName,EntitySetName,PrimaryIdAttribute",
            "$filter": f"EntitySetName eq '{_escape_odata_quotes(entity_set)}'",
        }
        body = self._request("get", url, headers=self._headers(), params=params).json()
        items = body.get("value") if isinstance(body, dict) else None
        if not items:
            raise StoreUnavailable(
                f"Unable to resolve entity set '{entity_set}' from metadata",
                subcode=ec.STORE_RESPONSE_MALFORMED,
                details={"entity_set": entity_set},
            )
        item = items[0]
        pid = item.get("PrimaryIdAttribute") or f"{item.get('LogicalName', entity_set)}id"
        self._primary_id_cache[entity_set] = pid
        return pid

    def _pages(self, url: str, params: Dict[str, Any]) -> Iterable[List[Dict[str, Any]]]:
        headers = self._headers()
        data = self._request("get", url, headers=headers, params=params).json()
        while True:
            items = data.get("value") if isinstance(data, dict) else None
            if isinstance(items, list) and items:
                yield [x for x in items if isinstance(x, dict)]
            next_link = data.get("@odata.nextLink") if isinstance(data, dict) else None
            if not next_link:
                return
            data = self._request("get", next_link, headers=headers).json()

    # ------------------------------------------------------------- contract

    def query(
        self,
        table: str,
        filter: Optional[Any] = None,
        *,
        key_fields: Union[str, Sequence[str]],
        id_field: Optional[str] = None,
    ) -> List[Record]:
        id_field = id_field or self._primary_id_attr(table)
        select = [key_fields] if isinstance(key_fields, str) else list(key_fields)
        params: Dict[str, Any] = {"$select": ",".join(dict.fromkeys([id_field, *select]))}
        expr = _build_filter(filter)
        if expr:
            params["$filter"] = expr
        records: List[Record] = []
        for page in self._pages(f"{self.api}/{table}", params):
            records.extend(Record.from_row(table, row, key_fields=key_fields, id_field=id_field) for row in page)
        logger.debug("Queried %d rows from %s", len(records), table)
        return records

    def batch_create(self, table: str, records: Sequence[Record]) -> List[StoreOutcome]:
        ops = [_BatchOperation("POST", f"{self.api}/{table}", body=record.to_dict()) for record in records]
        return self._run_batch(ops, created=True)

    def batch_update(self, table: str, updates: Sequence[FieldUpdate]) -> List[StoreOutcome]:
        ops = [
            _BatchOperation("PATCH", f"{self.api}/{table}({record_id})", body=dict(fields), headers={"If-Match": "*"})
            for record_id, fields in updates
        ]
        try:
            outcomes = self._run_batch(ops, created=False)
        except StoreUnavailable as exc:
            exc.outcomes = _with_update_ids(exc.outcomes, updates)
            raise
        return _with_update_ids(outcomes, updates)

    # ------------------------------------------------------------- batching

    def _run_batch(self, ops: List[_BatchOperation], *, created: bool) -> List[StoreOutcome]:
        outcomes: List[StoreOutcome] = []
        size = max(1, self._config.batch_size)
        for start in range(0, len(ops), size):
            chunk = ops[start:start + size]
            try:
                parts = self._send_batch(chunk)
            except StoreUnavailable as exc:
                # Earlier chunks are committed; report them with the failure.
                exc.outcomes = outcomes + exc.outcomes
                raise
            if len(parts) > len(chunk):
                raise StoreUnavailable(
                    f"$batch returned {len(parts)} parts for {len(chunk)} operations",
                    subcode=ec.STORE_RESPONSE_MALFORMED,
                    outcomes=outcomes,
                )
            outcomes.extend(_to_outcome(part, created=created) for part in parts)
            if len(parts) < len(chunk):
                # The service stopped processing; everything after the last part was not applied.
                raise StoreUnavailable(
                    f"$batch processed {len(parts)} of {len(chunk)} operations",
                    subcode=ec.STORE_ABORTED,
                    details={"processed": start + len(parts), "total": len(ops)},
                    outcomes=outcomes,
                )
        return outcomes

    def _send_batch(self, ops: List[_BatchOperation]) -> List[_BatchPartResponse]:
        boundary = _new_boundary()
        headers = self._headers()
        headers["Content-Type"] = f"multipart/mixed; boundary={boundary}"
        if self._config.continue_on_error:
            headers["Prefer"] = "odata.continue-on-error"
        r = self._request("post", f"{self.api}/$batch", headers=headers, data=_encode_batch(ops, boundary).encode("utf-8"))
        try:
            return _decode_batch(r.text, r.headers.get("Content-Type"))
        except ValueError as exc:
            raise StoreUnavailable(f"Unreadable $batch response: {exc}", subcode=ec.STORE_RESPONSE_MALFORMED) from exc


def _with_update_ids(outcomes: List[StoreOutcome], updates: Sequence[FieldUpdate]) -> List[StoreOutcome]:
    return [StoreOutcome.success(record_id) if o.ok else o for o, (record_id, _) in zip(outcomes, updates)]


def _to_outcome(part: _BatchPartResponse, *, created: bool) -> StoreOutcome:
    if part.ok:
        if not created:
            return StoreOutcome.success()
        loc = part.header("OData-EntityId") or part.header("Location") or ""
        m = _GUID_RE.search(loc)
        if m:
            return StoreOutcome.success(m.group(0))
        return StoreOutcome.rejected(
            RecordRejected(
                "Create response missing GUID in OData-EntityId/Location headers",
                subcode=ec.REJECTED_BY_STORE,
                status_code=part.status_code,
            )
        )
    code = None
    message = part.reason or f"HTTP {part.status_code}"
    try:
        payload = part.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        code = payload["error"].get("code")
        message = payload["error"].get("message") or message
    subcode = ec.REJECTED_NOT_FOUND if part.status_code == 404 else ec.REJECTED_BY_STORE
    return StoreOutcome.rejected(
        RecordRejected(message, subcode=subcode, status_code=part.status_code, service_error_code=code)
    )


__all__ = ["WebApiRecordStore"]
