#!/usr/bin/env python3
# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Upsert Engine - Quickstart (in-memory)

Walks through the contacts/accounts scenario without any service:
- Reconcile accounts by name (create missing, update existing)
- Re-run the same input to show that nothing is duplicated
- Link contacts to accounts by last name, creating missing accounts
- Show per-record failure reporting with a rejection rule

Usage:
    python examples/basic/quickstart.py
"""

import logging

from upsert_engine import UpsertClient
from upsert_engine.models.record import Record
from upsert_engine.stores.memory import InMemoryRecordStore


def print_result(title, result):
    print(f"\n{title}")
    print("=" * 50)
    for outcome in result:
        status = "ok" if outcome.success else f"failed ({outcome.error.message})"
        print(f"  [{outcome.position}] {outcome.key!r:<12} {outcome.action.value:<7} {outcome.id} {status}")
    print(f"  summary: {result.summary()}")


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    store = InMemoryRecordStore(id_field="Id")
    store.seed("accounts", [{"Name": "Doe", "Id": "A1", "City": "Oslo"}])

    with UpsertClient(store) as client:
        incoming = [
            Record(key="Doe", data={"Name": "Doe", "City": "Bergen"}),
            Record(key="Jane", data={"Name": "Jane", "City": "Rome"}),
            Record(key="Jane", data={"Name": "Jane", "Phone": "555-0100"}),
        ]
        print_result("First run", client.reconcile("accounts", incoming, key_fields="Name"))
        print_result("Second run (idempotent)", client.reconcile("accounts", incoming, key_fields="Name"))

        store.seed("contacts", [{"LastName": "Doe"}, {"LastName": "Smith"}, {"LastName": ""}])
        contacts = [c for c in store.query("contacts", key_fields="LastName") if c.key]
        linked = client.link_to_parents(
            contacts,
            child_table="contacts",
            parent_table="accounts",
            parent_key_fields="Name",
            parent_key_of=lambda c: c["LastName"],
            link_field="AccountId",
        )
        print_result("Parent accounts", linked.parents)
        print_result("Linked contacts", linked.children)

        store.add_rule(lambda table, row: row.get("City") == "Atlantis", "City is not recognised")
        failing = [
            Record(key="Roe", data={"Name": "Roe", "City": "Atlantis"}),
            Record(key="Poe", data={"Name": "Poe", "City": "Paris"}),
        ]
        print_result("Partial failure", client.reconcile("accounts", failing, key_fields="Name"))

    print("\nAccounts now in the store:")
    for row in store.rows("accounts"):
        print(f"  {row}")


if __name__ == "__main__":
    main()
