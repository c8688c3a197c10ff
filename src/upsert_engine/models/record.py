# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Record data model for reconciliation runs.

A :class:`Record` pairs an opaque field payload with the natural key used to
match it against the store and, once known, the store's surrogate identifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union

from .natural_key import key_from_fields, normalize_key

# Type aliases for semantic clarity
RecordId = str  # surrogate identifier assigned by the store
TableName = str  # e.g., "accounts", "contacts"


@dataclass
class Record:
    """
    Ephemeral record value used by the planner and executor.

    Provides dict-like access to the field payload.

    :param key: Natural key (string or tuple of values for composite keys).
    :type key: str | tuple
    :param data: Field data as key-value pairs. Opaque to the engine.
    :type data: dict[str, Any]
    :param id: Surrogate identifier, ``None`` until the record exists in the store.
    :type id: str | None
    :param table: Table / entity name the record belongs to.
    :type table: str | None

    Example::

        contact = Record(key="Doe", data={"lastname": "Doe"}, table="contacts")
        contact["emailaddress1"] = "doe@example.com"
        if "lastname" in contact:
            print(contact["lastname"])
    """

    key: Any
    data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[RecordId] = None
    table: Optional[TableName] = None

    def __post_init__(self) -> None:
        self.key = normalize_key(self.key)

    # Dict-like access

    def __getitem__(self, name: str) -> Any:
        return self.data[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.data[name] = value

    def __delitem__(self, name: str) -> None:
        del self.data[name]

    def __contains__(self, name: object) -> bool:
        return name in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def get(self, name: str, default: Any = None) -> Any:
        """
        Get a field value with optional default.

        :param name: Field name to access.
        :type name: str
        :param default: Default value if the field doesn't exist.
        :return: Field value or default.
        """
        return self.data.get(name, default)

    def keys(self):
        return self.data.keys()

    def values(self):
        return self.data.values()

    def items(self):
        return self.data.items()

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to a plain dictionary of field data (no key, id or table).

        :return: Copy of the field data.
        :rtype: dict[str, Any]
        """
        return dict(self.data)

    def to_full_dict(self) -> Dict[str, Any]:
        """
        Convert to a dictionary including metadata.

        :return: Dictionary with key, id, table and data.
        :rtype: dict[str, Any]
        """
        return {
            "key": self.key,
            "id": self.id,
            "table": self.table,
            "data": dict(self.data),
        }

    def with_id(self, record_id: RecordId) -> "Record":
        """Return a copy of this record carrying ``record_id``."""
        return Record(key=self.key, data=dict(self.data), id=record_id, table=self.table)

    @classmethod
    def from_row(
        cls,
        table: Optional[str],
        row: Mapping[str, Any],
        *,
        key_fields: Union[str, Sequence[str]],
        id_field: Optional[str] = None,
    ) -> "Record":
        """
        Create a Record from a store row.

        :param table: Table name the row was read from.
        :type table: str | None
        :param row: Raw row dictionary. Keys starting with ``@odata.`` are dropped.
        :type row: dict[str, Any]
        :param key_fields: Field name, or ordered field names, forming the natural key.
        :type key_fields: str | list[str]
        :param id_field: Field holding the surrogate identifier. When omitted the row
            is treated as not yet stored (``id`` is ``None``).
        :type id_field: str | None
        :return: Record instance.
        :rtype: Record

        Example::

            Record.from_row("accounts", {"accountid": "A1", "name": "Doe"},
                            key_fields="name", id_field="accountid")
        """
        data = {k: v for k, v in row.items() if not str(k).startswith("@odata.")}
        record_id = None
        if id_field is not None and data.get(id_field) is not None:
            record_id = str(data[id_field])
        return cls(key=key_from_fields(data, key_fields), data=data, id=record_id, table=table)


__all__ = ["Record", "RecordId", "TableName"]
