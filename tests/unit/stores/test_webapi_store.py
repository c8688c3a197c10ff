# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import json
from unittest.mock import MagicMock, Mock

import pytest
import requests

from upsert_engine.core import error_codes as ec
from upsert_engine.core.config import StoreConfig
from upsert_engine.core.errors import RecordRejected, StoreUnavailable
from upsert_engine.models.record import Record
from upsert_engine.stores.webapi import WebApiRecordStore, _build_filter

from fixtures.test_data import (
    ACCOUNT_DOE_ID,
    ACCOUNT_NEW_ID,
    BATCH_BOUNDARY,
    SAMPLE_ACCOUNTS_RESPONSE,
    SAMPLE_ENTITY_METADATA,
    batch_response_body,
    created_part,
    error_part,
    updated_part,
)


def _json_response(payload, status=200):
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = json.dumps(payload)
    resp.headers = {"Content-Type": "application/json"}
    return resp


def _batch_response(*parts):
    resp = Mock()
    resp.status_code = 200
    resp.text = batch_response_body(*parts)
    resp.headers = {"Content-Type": f"multipart/mixed; boundary={BATCH_BOUNDARY}"}
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def webapi(sample_base_url, mock_credential, test_config, session):
    return WebApiRecordStore(sample_base_url, mock_credential, test_config, session=session)


class TestWebApiQuery:
    """Snapshot queries."""

    def test_query_resolves_primary_id_from_metadata(self, webapi, session):
        session.request.side_effect = [
            _json_response(SAMPLE_ENTITY_METADATA),
            _json_response(SAMPLE_ACCOUNTS_RESPONSE),
        ]
        records = webapi.query("accounts", key_fields="name")

        assert len(records) == 1
        assert records[0].key == "Doe"
        assert records[0].id == ACCOUNT_DOE_ID
        assert "@odata.etag" not in records[0].data
        method, url = session.request.call_args_list[1][0]
        assert method == "get"
        assert url == "https://org.example.com/api/data/v9.2/accounts"
        params = session.request.call_args_list[1][1]["params"]
        assert params["$select"] == "accountid,name"

    def test_primary_id_is_cached(self, webapi, session):
        session.request.side_effect = [
            _json_response(SAMPLE_ENTITY_METADATA),
            _json_response(SAMPLE_ACCOUNTS_RESPONSE),
            _json_response(SAMPLE_ACCOUNTS_RESPONSE),
        ]
        webapi.query("accounts", key_fields="name")
        webapi.query("accounts", key_fields="name")
        assert session.request.call_count == 3

    def test_query_follows_next_link_and_applies_filter(self, webapi, session):
        page1 = {
            "value": [{"accountid": "A1", "name": "Doe"}],
            "@odata.nextLink": "https://org.example.com/api/data/v9.2/accounts?$skiptoken=2",
        }
        page2 = {"value": [{"accountid": "A2", "name": "O'Neil"}]}
        session.request.side_effect = [_json_response(page1), _json_response(page2)]

        records = webapi.query("accounts", {"statecode": 0}, key_fields="name", id_field="accountid")

        assert [r.id for r in records] == ["A1", "A2"]
        first_params = session.request.call_args_list[0][1]["params"]
        assert first_params["$filter"] == "statecode eq 0"
        assert session.request.call_args_list[1][0][1] == page1["@odata.nextLink"]

    def test_query_sends_bearer_token(self, webapi, session, mock_credential):
        session.request.return_value = _json_response({"value": []})
        webapi.query("accounts", key_fields="name", id_field="accountid")
        headers = session.request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer test_token_12345"
        mock_credential.get_token.assert_called_with("https://org.example.com/.default")

    def test_http_error_is_store_unavailable(self, webapi, session):
        session.request.return_value = _json_response({"error": {"message": "down"}}, status=503)
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.query("accounts", key_fields="name", id_field="accountid")
        assert exc_info.value.status_code == 503
        assert exc_info.value.subcode == ec.http_subcode(503)
        assert exc_info.value.details["is_transient"] is True

    def test_timeout_is_store_unavailable(self, webapi, session):
        session.request.side_effect = requests.exceptions.Timeout("slow")
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.query("accounts", key_fields="name", id_field="accountid")
        assert exc_info.value.subcode == ec.STORE_TIMEOUT

    def test_connection_error_is_store_unavailable(self, webapi, session):
        session.request.side_effect = requests.exceptions.ConnectionError("reset")
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.query("accounts", key_fields="name", id_field="accountid")
        assert exc_info.value.subcode == ec.STORE_CONNECTION_FAILED

    def test_unknown_entity_set(self, webapi, session):
        session.request.return_value = _json_response({"value": []})
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.query("widgets", key_fields="name")
        assert exc_info.value.subcode == ec.STORE_RESPONSE_MALFORMED


class TestWebApiBatch:
    """Bulk create and update through $batch."""

    def test_batch_create_parses_ids_and_rejections(self, webapi, session):
        session.request.return_value = _batch_response(
            created_part(ACCOUNT_DOE_ID), error_part(), created_part(ACCOUNT_NEW_ID)
        )
        records = [Record(key=n, data={"name": n}) for n in ("Doe", "Dup", "New")]

        outcomes = webapi.batch_create("accounts", records)

        assert [o.id for o in outcomes] == [ACCOUNT_DOE_ID, None, ACCOUNT_NEW_ID]
        error = outcomes[1].error
        assert isinstance(error, RecordRejected)
        assert error.status_code == 400
        assert error.service_error_code == "0x80040237"
        assert "matching key values" in error.reason
        session.request.assert_called_once()

    def test_batch_request_shape(self, webapi, session):
        session.request.return_value = _batch_response(created_part(ACCOUNT_NEW_ID))
        webapi.batch_create("accounts", [Record(key="New", data={"name": "New"})])

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert method == "post"
        assert url == "https://org.example.com/api/data/v9.2/$batch"
        assert kwargs["headers"]["Content-Type"].startswith("multipart/mixed; boundary=batch_")
        assert kwargs["headers"]["Prefer"] == "odata.continue-on-error"
        body = kwargs["data"].decode("utf-8")
        assert "POST https://org.example.com/api/data/v9.2/accounts HTTP/1.1" in body
        assert '{"name": "New"}' in body

    def test_batch_update_confirms_ids(self, webapi, session):
        session.request.return_value = _batch_response(
            updated_part(), error_part(status=404, reason="Not Found", code="0x80040217", message="Does not exist")
        )
        outcomes = webapi.batch_update("accounts", [("A1", {"city": "Oslo"}), ("A2", {"city": "Rome"})])

        assert outcomes[0].ok
        assert outcomes[0].id == "A1"
        assert outcomes[1].error.subcode == ec.REJECTED_NOT_FOUND
        body = session.request.call_args[1]["data"].decode("utf-8")
        assert "PATCH https://org.example.com/api/data/v9.2/accounts(A1) HTTP/1.1" in body
        assert "If-Match: *" in body

    def test_missing_parts_mean_store_aborted(self, webapi, session):
        session.request.return_value = _batch_response(created_part(ACCOUNT_DOE_ID))
        records = [Record(key=n, data={"name": n}) for n in ("A", "B")]
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.batch_create("accounts", records)
        assert exc_info.value.subcode == ec.STORE_ABORTED

    def test_extra_parts_are_malformed(self, webapi, session):
        session.request.return_value = _batch_response(updated_part(), updated_part())
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.batch_update("accounts", [("A1", {"city": "Oslo"})])
        assert exc_info.value.subcode == ec.STORE_RESPONSE_MALFORMED

    def test_unreadable_response_is_malformed(self, webapi, session):
        resp = _batch_response(updated_part())
        resp.headers = {"Content-Type": "application/json"}
        session.request.return_value = resp
        with pytest.raises(StoreUnavailable) as exc_info:
            webapi.batch_update("accounts", [("A1", {"city": "Oslo"})])
        assert exc_info.value.subcode == ec.STORE_RESPONSE_MALFORMED

    def test_operations_are_chunked_by_batch_size(self, sample_base_url, mock_credential, session):
        store = WebApiRecordStore(
            sample_base_url, mock_credential, StoreConfig(http_retries=1, batch_size=2), session=session
        )
        session.request.side_effect = [
            _batch_response(updated_part(), updated_part()),
            _batch_response(updated_part()),
        ]
        outcomes = store.batch_update("accounts", [("A1", {}), ("A2", {}), ("A3", {})])
        assert [o.id for o in outcomes] == ["A1", "A2", "A3"]
        assert session.request.call_count == 2

    def test_create_without_location_is_rejected(self, webapi, session):
        session.request.return_value = _batch_response(updated_part())
        outcomes = webapi.batch_create("accounts", [Record(key="New", data={"name": "New"})])
        assert isinstance(outcomes[0].error, RecordRejected)


class TestWebApiLifecycle:
    def test_requires_base_url(self, mock_credential):
        with pytest.raises(ValueError):
            WebApiRecordStore("", mock_credential)

    def test_rejects_non_token_credential(self, sample_base_url):
        with pytest.raises(TypeError):
            WebApiRecordStore(sample_base_url, object())

    def test_close_closes_session(self, webapi, session):
        webapi.close()
        webapi.close()
        session.close.assert_called_once()


class TestBuildFilter:
    def test_mapping_literals(self):
        assert _build_filter({"name": "O'Neil", "statecode": 0, "active": True, "parent": None}) == (
            "name eq 'O''Neil' and statecode eq 0 and active eq true and parent eq null"
        )

    def test_string_passthrough_and_none(self):
        assert _build_filter("statecode eq 0") == "statecode eq 0"
        assert _build_filter(None) is None

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            _build_filter(42)


class TestWebApiPartialFailure:
    """Outcomes committed before a failure travel with the StoreUnavailable."""

    @pytest.fixture
    def chunked(self, sample_base_url, mock_credential, session):
        return WebApiRecordStore(
            sample_base_url, mock_credential, StoreConfig(http_retries=1, batch_size=1), session=session
        )

    def test_later_chunk_failure_carries_committed_creates(self, chunked, session):
        session.request.side_effect = [
            _batch_response(created_part(ACCOUNT_DOE_ID)),
            requests.exceptions.ConnectionError("reset"),
        ]
        records = [Record(key=n, data={"name": n}) for n in ("Doe", "New")]

        with pytest.raises(StoreUnavailable) as exc_info:
            chunked.batch_create("accounts", records)

        assert exc_info.value.subcode == ec.STORE_CONNECTION_FAILED
        assert [o.id for o in exc_info.value.outcomes] == [ACCOUNT_DOE_ID]

    def test_aborted_chunk_carries_processed_parts(self, sample_base_url, mock_credential, session):
        store = WebApiRecordStore(sample_base_url, mock_credential, StoreConfig(http_retries=1), session=session)
        session.request.return_value = _batch_response(updated_part())

        with pytest.raises(StoreUnavailable) as exc_info:
            store.batch_update("accounts", [("A1", {"city": "Oslo"}), ("A2", {"city": "Rome"})])

        assert exc_info.value.subcode == ec.STORE_ABORTED
        assert [o.id for o in exc_info.value.outcomes] == ["A1"]

    def test_create_read_timeout_is_sent_once(self, sample_base_url, mock_credential, session):
        store = WebApiRecordStore(
            sample_base_url, mock_credential, StoreConfig(http_retries=3, http_backoff=0.0), session=session
        )
        session.request.side_effect = [
            requests.exceptions.ReadTimeout("slow"),
            _batch_response(created_part(ACCOUNT_NEW_ID)),
        ]

        with pytest.raises(StoreUnavailable) as exc_info:
            store.batch_create("accounts", [Record(key="New", data={"name": "New"})])

        assert exc_info.value.subcode == ec.STORE_TIMEOUT
        assert session.request.call_count == 1
