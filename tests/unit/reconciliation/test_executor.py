# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import unittest
from unittest.mock import MagicMock, Mock

import requests
from azure.core.credentials import TokenCredential

from upsert_engine.core import error_codes as ec
from upsert_engine.core.config import NO_OP_SKIP, ReconcileConfig, StoreConfig
from upsert_engine.core.errors import RecordRejected, StoreUnavailable
from upsert_engine.core.results import StoreOutcome
from upsert_engine.models.plan import PlanAction
from upsert_engine.models.record import Record
from upsert_engine.reconciliation.executor import BatchUpsertExecutor
from upsert_engine.reconciliation.key_index import KeyIndex
from upsert_engine.reconciliation.planner import ReconciliationPlanner
from upsert_engine.stores.base import RecordStore
from upsert_engine.stores.memory import InMemoryRecordStore
from upsert_engine.stores.webapi import WebApiRecordStore

from fixtures.test_data import ACCOUNT_DOE_ID, BATCH_BOUNDARY, batch_response_body, created_part


def _account(name, **fields):
    return Record(key=name, data={"Name": name, **fields})


class TestBatchUpsertExecutor(unittest.TestCase):
    """Two-phase execution against the in-memory store."""

    def setUp(self):
        self.store = InMemoryRecordStore(id_field="Id")
        self.executor = BatchUpsertExecutor(self.store)
        self.planner = ReconciliationPlanner()

    def _plan(self, incoming, resolver=None):
        index = KeyIndex.build(self.store.query("accounts", key_fields="Name", id_field="Id"))
        self.store.calls.clear()
        return self.planner.plan(incoming, index, resolver, table="accounts")

    def test_creates_get_one_id_each(self):
        result = self.executor.execute(self._plan([_account("A"), _account("B"), _account("C")]))
        self.assertTrue(result.ok)
        self.assertEqual(len(set(result.ids)), 3)
        self.assertEqual(self.store.calls, ["batch_create"])
        self.assertEqual(sorted(r["Name"] for r in self.store.rows("accounts")), ["A", "B", "C"])

    def test_partial_create_failure(self):
        self.store.add_rule(lambda table, row: row.get("Name") == "B", "duplicate detection rule")
        result = self.executor.execute(self._plan([_account("A"), _account("B"), _account("C")]))
        self.assertTrue(result[0].success)
        self.assertFalse(result[1].success)
        self.assertTrue(result[2].success)
        self.assertIsInstance(result[1].error, RecordRejected)
        self.assertEqual(result[1].error.reason, "duplicate detection rule")
        self.assertIsNone(result[1].id)

    def test_duplicate_key_link_resolves_to_created_id(self):
        result = self.executor.execute(self._plan([_account("Doe"), _account("Doe", Phone="555")]))
        self.assertEqual(result[0].action, PlanAction.CREATE)
        self.assertEqual(result[1].action, PlanAction.LINK)
        self.assertEqual(result[0].id, result[1].id)
        self.assertEqual(len(self.store.rows("accounts")), 1)
        self.assertEqual(self.store.rows("accounts")[0]["Phone"], "555")
        self.assertEqual(self.store.calls, ["batch_create", "batch_update"])

    def test_link_fails_when_leader_rejected(self):
        self.store.add_rule(lambda table, row: row.get("Name") == "Doe", "blocked")
        result = self.executor.execute(self._plan([_account("Doe"), _account("Doe")]))
        self.assertFalse(result[0].success)
        self.assertFalse(result[1].success)
        self.assertEqual(result[1].error.subcode, ec.REJECTED_LEADER_FAILED)
        self.assertIn("blocked", result[1].error.message)
        self.assertEqual(self.store.calls, ["batch_create"])

    def test_updates_existing_records(self):
        existing = self.store.seed("accounts", [{"Name": "Doe"}])[0]
        result = self.executor.execute(self._plan([_account("Doe", City="Oslo")]))
        self.assertEqual(result[0].action, PlanAction.UPDATE)
        self.assertEqual(result[0].id, existing)
        self.assertEqual(self.store.get("accounts", existing)["City"], "Oslo")
        self.assertEqual(self.store.calls, ["batch_update"])

    def test_update_rejection_does_not_block_siblings(self):
        self.store.seed("accounts", [{"Name": "A"}, {"Name": "B"}])
        self.store.add_rule(lambda table, row: row.get("Rating") == "bad", "invalid rating")
        plan = self._plan([_account("A", Rating="bad"), _account("B", Rating="ok")])
        result = self.executor.execute(plan)
        self.assertFalse(result[0].success)
        self.assertTrue(result[1].success)

    def test_no_op_link_confirmed_without_store_call(self):
        existing = self.store.seed("accounts", [{"Name": "Doe"}])[0]
        planner = ReconciliationPlanner(ReconcileConfig(no_op_policy=NO_OP_SKIP))
        index = KeyIndex.build(self.store.query("accounts", key_fields="Name", id_field="Id"))
        self.store.calls.clear()
        plan = planner.plan([_account("Doe")], index, lambda r, i: {}, table="accounts")
        result = self.executor.execute(plan)
        self.assertTrue(result[0].success)
        self.assertEqual(result[0].id, existing)
        self.assertEqual(self.store.calls, [])

    def test_results_follow_input_order(self):
        self.store.seed("accounts", [{"Name": "B"}])
        result = self.executor.execute(self._plan([_account("A"), _account("B"), _account("C")]))
        self.assertEqual([o.position for o in result], [0, 1, 2])
        self.assertEqual([o.key for o in result], ["A", "B", "C"])
        self.assertEqual(
            [o.action for o in result], [PlanAction.CREATE, PlanAction.UPDATE, PlanAction.CREATE]
        )

    def test_outage_in_create_phase_fails_everything(self):
        self.store.seed("accounts", [{"Name": "B"}])
        plan = self._plan([_account("A"), _account("B")])
        self.store.fail_next(1)
        result = self.executor.execute(plan)
        self.assertEqual(len(result), 2)
        for outcome in result:
            self.assertIsInstance(outcome.error, StoreUnavailable)
        self.assertEqual(self.store.calls, [])

    def test_outage_in_update_phase_keeps_creates(self):
        self.store.seed("accounts", [{"Name": "B"}])
        plan = self._plan([_account("A"), _account("B")])
        original = self.store.batch_update

        def unavailable(table, updates):
            raise StoreUnavailable("connection reset", subcode=ec.STORE_CONNECTION_FAILED)

        self.store.batch_update = unavailable
        try:
            result = self.executor.execute(plan)
        finally:
            self.store.batch_update = original
        self.assertTrue(result[0].success)
        self.assertIsInstance(result[1].error, StoreUnavailable)
        self.assertEqual(len(self.store.rows("accounts")), 2)

    def test_requires_table(self):
        plan = ReconciliationPlanner().plan([_account("A")], KeyIndex.build([]))
        with self.assertRaises(ValueError):
            self.executor.execute(plan)

    def test_empty_plan_makes_no_calls(self):
        result = self.executor.execute(self._plan([]))
        self.assertEqual(len(result), 0)
        self.assertEqual(self.store.calls, [])


class TestExecutorStoreContract(unittest.TestCase):
    """Executor behaviour against a mocked store."""

    def setUp(self):
        self.store = MagicMock(spec=RecordStore)
        self.executor = BatchUpsertExecutor(self.store)

    def test_result_count_mismatch_is_store_unavailable(self):
        self.store.batch_create.return_value = [StoreOutcome.success("id-1")]
        plan = ReconciliationPlanner().plan([_account("A"), _account("B")], KeyIndex.build([]), table="accounts")
        result = self.executor.execute(plan)
        for outcome in result:
            self.assertIsInstance(outcome.error, StoreUnavailable)
            self.assertEqual(outcome.error.subcode, ec.STORE_RESULT_COUNT_MISMATCH)

    def test_create_without_identifier_is_rejected(self):
        self.store.batch_create.return_value = [StoreOutcome.success(None)]
        plan = ReconciliationPlanner().plan([_account("A")], KeyIndex.build([]), table="accounts")
        result = self.executor.execute(plan)
        self.assertIsInstance(result[0].error, RecordRejected)

    def test_pending_link_uses_resolver_with_assigned_id(self):
        self.store.batch_create.return_value = [StoreOutcome.success("new-1")]
        self.store.batch_update.return_value = [StoreOutcome.success("new-1")]
        seen = []

        def resolver(record, existing_id):
            seen.append(existing_id)
            return {"Phone": record["Phone"]}

        incoming = [_account("Doe", Phone="1"), _account("Doe", Phone="2")]
        plan = ReconciliationPlanner().plan(incoming, KeyIndex.build([]), resolver, table="accounts")
        result = self.executor.execute(plan)
        self.assertEqual(seen, ["new-1"])
        self.store.batch_update.assert_called_once_with("accounts", [("new-1", {"Phone": "2"})])
        self.assertEqual(result.ids, ["new-1", "new-1"])

    def test_committed_creates_survive_outage(self):
        self.store.batch_create.side_effect = StoreUnavailable(
            "connection reset", subcode=ec.STORE_CONNECTION_FAILED, outcomes=[StoreOutcome.success("n1")]
        )
        incoming = [_account("A"), _account("B"), _account("A")]
        plan = ReconciliationPlanner().plan(incoming, KeyIndex.build([]), table="accounts")

        result = self.executor.execute(plan)

        self.assertTrue(result[0].success)
        self.assertEqual(result[0].id, "n1")
        self.assertIsInstance(result[1].error, StoreUnavailable)
        self.assertIsInstance(result[2].error, StoreUnavailable)
        self.store.batch_update.assert_not_called()

    def test_committed_updates_survive_outage(self):
        self.store.batch_update.side_effect = StoreUnavailable(
            "aborted", subcode=ec.STORE_ABORTED, outcomes=[StoreOutcome.rejected(RecordRejected("locked"))]
        )
        index = KeyIndex.build([Record(key="X", id="e1"), Record(key="Y", id="e2")])
        plan = ReconciliationPlanner().plan([_account("X"), _account("Y")], index, table="accounts")

        result = self.executor.execute(plan)

        self.assertIsInstance(result[0].error, RecordRejected)
        self.assertIsInstance(result[1].error, StoreUnavailable)

    def test_one_bulk_call_per_phase(self):
        self.store.batch_create.return_value = [StoreOutcome.success("n1"), StoreOutcome.success("n2")]
        self.store.batch_update.return_value = [StoreOutcome.success("e1"), StoreOutcome.success("e2")]
        index = KeyIndex.build([Record(key="X", id="e1"), Record(key="Y", id="e2")])
        incoming = [_account("A"), _account("X"), _account("B"), _account("Y")]
        plan = ReconciliationPlanner().plan(incoming, index, table="accounts")
        result = self.executor.execute(plan)
        self.assertEqual(self.store.batch_create.call_count, 1)
        self.assertEqual(self.store.batch_update.call_count, 1)
        self.assertEqual(result.ids, ["n1", "e1", "n2", "e2"])


class TestExecutorChunkedWebApi(unittest.TestCase):
    """A create phase split over several $batch requests."""

    def setUp(self):
        self.session = MagicMock(spec=requests.Session)
        credential = MagicMock(spec=TokenCredential)
        credential.get_token.return_value = MagicMock(token="test_token_12345")
        self.store = WebApiRecordStore(
            "https://org.example.com", credential, StoreConfig(http_retries=1, batch_size=1), session=self.session
        )
        self.executor = BatchUpsertExecutor(self.store)

    def test_first_chunk_creates_are_reported_committed(self):
        committed = Mock(status_code=200)
        committed.text = batch_response_body(created_part(ACCOUNT_DOE_ID))
        committed.headers = {"Content-Type": f"multipart/mixed; boundary={BATCH_BOUNDARY}"}
        self.session.request.side_effect = [committed, requests.exceptions.ConnectionError("reset")]
        plan = ReconciliationPlanner().plan([_account("A"), _account("B")], KeyIndex.build([]), table="accounts")

        result = self.executor.execute(plan)

        self.assertTrue(result[0].success)
        self.assertEqual(result[0].id, ACCOUNT_DOE_ID)
        self.assertIsInstance(result[1].error, StoreUnavailable)
        self.assertEqual(result.created_count, 1)


if __name__ == "__main__":
    unittest.main()
