# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""pandas helpers for feeding records into a run and reporting its outcome."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from ..core.results import BatchResult
from ..models.record import Record


def _clean_row(row: Dict[str, Any], na_as_null: bool) -> Dict[str, Any]:
    clean = {}
    for k, v in row.items():
        if pd.notna(v):
            clean[k] = v.isoformat() if isinstance(v, pd.Timestamp) else v
        elif na_as_null:
            clean[k] = None
    return clean


def records_from_dataframe(
    df: pd.DataFrame,
    table: Optional[str],
    key_fields: Union[str, Sequence[str]],
    *,
    id_field: Optional[str] = None,
    na_as_null: bool = False,
) -> List[Record]:
    """Convert each DataFrame row to a :class:`Record`, converting Timestamps to ISO strings.

    :param df: Input DataFrame; column names are field names.
    :param table: Table the records belong to.
    :param key_fields: Column(s) forming the natural key.
    :param id_field: Optional column holding existing identifiers.
    :param na_as_null: When False (default), missing values are omitted from each record.
        When True, missing values are included as None.
    """
    return [
        Record.from_row(table, _clean_row(row, na_as_null), key_fields=key_fields, id_field=id_field)
        for row in df.to_dict(orient="records")
    ]


def batch_result_to_dataframe(result: BatchResult) -> pd.DataFrame:
    """One row per outcome: position, key, action, id, success, error_code, error_message."""
    columns = ["position", "key", "action", "id", "success", "error_code", "error_message"]
    rows = [
        {
            "position": o.position,
            "key": o.key,
            "action": o.action.value,
            "id": o.id,
            "success": o.success,
            "error_code": o.error.code if o.error is not None else None,
            "error_message": o.error.message if o.error is not None else None,
        }
        for o in result
    ]
    return pd.DataFrame(rows, columns=columns)
