# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Natural key helpers.

A natural key is either a scalar (usually a string such as an account name) or a
tuple of values for composite keys. Matching is exact: no case folding, no
whitespace trimming.
"""

from __future__ import annotations

from typing import Any, Hashable, Mapping, Sequence, Tuple, Union

from ..core import error_codes as ec
from ..core.errors import ValidationError

NaturalKey = Union[str, Tuple[Any, ...], Hashable]


def normalize_key(key: Any) -> Any:
    """Return ``key`` in hashable form: lists become tuples, everything else is unchanged."""
    if isinstance(key, list):
        return tuple(normalize_key(part) for part in key)
    return key


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_empty_key(key: Any) -> bool:
    """
    Return True when ``key`` cannot be used for matching.

    ``None``, blank strings, empty tuples and tuples with any ``None`` or blank
    component are empty.
    """
    if isinstance(key, (tuple, list)):
        return len(key) == 0 or any(_is_blank(part) for part in key)
    return _is_blank(key)


def validate_key(key: Any, *, position: int | None = None) -> Any:
    """
    Normalize ``key`` and raise :class:`ValidationError` if it is empty or unhashable.

    :param key: Candidate natural key.
    :param position: Optional input position, reported in the error details.
    :return: The normalized key.
    :raises ValidationError: If the key is empty or cannot be hashed.
    """
    details = {"position": position} if position is not None else {}
    if is_empty_key(key):
        raise ValidationError(
            f"Record at position {position} has an empty natural key" if position is not None
            else "Natural key must not be empty",
            subcode=ec.VALIDATION_EMPTY_NATURAL_KEY,
            details=details,
        )
    key = normalize_key(key)
    try:
        hash(key)
    except TypeError:
        raise ValidationError(
            f"Natural key {key!r} is not hashable",
            subcode=ec.VALIDATION_UNHASHABLE_NATURAL_KEY,
            details=details,
        ) from None
    return key


def key_from_fields(data: Mapping[str, Any], key_fields: Union[str, Sequence[str]]) -> Any:
    """
    Extract a natural key from a field mapping.

    A single field name yields a scalar key; several field names yield a tuple in
    the given order. Missing fields yield ``None`` components so the key is reported
    as empty by :func:`is_empty_key`.

    Example::

        key_from_fields({"name": "Contoso"}, "name")              # "Contoso"
        key_from_fields({"first": "Jane", "last": "Doe"}, ["last", "first"])  # ("Doe", "Jane")
    """
    if isinstance(key_fields, str):
        return normalize_key(data.get(key_fields))
    if not key_fields:
        raise ValidationError("At least one key field is required", subcode=ec.VALIDATION_NO_KEY_FIELDS)
    if len(key_fields) == 1:
        return normalize_key(data.get(key_fields[0]))
    return tuple(normalize_key(data.get(name)) for name in key_fields)


__all__ = ["NaturalKey", "normalize_key", "is_empty_key", "validate_key", "key_from_fields"]
