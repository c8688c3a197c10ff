#!/usr/bin/env python3
# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Upsert Engine - Web API reconciliation

Reconciles a small DataFrame of accounts into a Dataverse environment by
account name, then links contacts to accounts by last name.

Prerequisites:
- ``pip install upsert-engine[identity]``
- Access to a Dataverse environment with create/update rights on accounts and contacts

Usage:
    python examples/advanced/webapi_reconcile.py
"""

import sys

import pandas as pd
from azure.identity import InteractiveBrowserCredential

from upsert_engine import UpsertClient
from upsert_engine.core.config import StoreConfig
from upsert_engine.core.errors import StoreUnavailable, ValidationError
from upsert_engine.reconciliation.linking import changed_fields
from upsert_engine.stores.webapi import WebApiRecordStore


def get_org_url() -> str:
    if not sys.stdin.isatty():
        print("Interactive input required. Run this script in a terminal.")
        sys.exit(1)
    org_url = input("Enter your Dataverse org URL (e.g., https://yourorg.crm.dynamics.com): ").strip()
    if not org_url:
        print("No URL entered; exiting.")
        sys.exit(1)
    return org_url.rstrip("/")


def main():
    store = WebApiRecordStore(get_org_url(), InteractiveBrowserCredential(), StoreConfig(batch_size=500))
    accounts = pd.DataFrame(
        [
            {"name": "Upsert Sample Doe", "address1_city": "Oslo"},
            {"name": "Upsert Sample Jane", "address1_city": "Rome"},
        ]
    )

    with UpsertClient(store) as client:
        try:
            report = client.reconcile_dataframe(
                "accounts",
                accounts,
                key_fields="name",
                filter={"statecode": 0},
                index_resolver=changed_fields,
            )
        except ValidationError as e:
            print(f"Input rejected before any request: {e.message}")
            sys.exit(1)
        except StoreUnavailable as e:
            print(f"Service unavailable, nothing was written: {e.message}")
            sys.exit(1)
        print(report.to_string(index=False))

        contacts = client.store.query(
            "contacts",
            "startswith(lastname,'Upsert Sample')",
            key_fields="lastname",
            id_field="contactid",
        )
        linked = client.link_to_parents(
            contacts,
            child_table="contacts",
            parent_table="accounts",
            parent_key_fields="name",
            parent_key_of=lambda c: c["lastname"],
            link_field="parentcustomerid_account@odata.bind",
            link_value_of=lambda account_id: f"/accounts({account_id})",
        )
        print(f"Created {linked.created_parents} accounts; {len(linked.children.failed)} contacts failed to link.")


if __name__ == "__main__":
    main()
