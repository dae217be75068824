"""
Keleran ORM Key Conventions
===========================

Conversion between storage keys (snake_case columns) and application
keys (camelCase properties).

Keys starting with ``$`` are query helpers (``$in``, ``$notNull``,
``$or`` ...) and are never renamed. The logical helpers hold predicate
objects of their own, so their subtrees are still converted:

    >>> to_row_keys({"hatId": {"$in": [1, 2]}, "$or": [{"createdAt": None}]})
    {'hat_id': {'$in': [1, 2]}, '$or': [{'created_at': None}]}
"""

from __future__ import annotations

import re
from typing import Any, Mapping


HELPER_MARKER = "$"

# "HTTPServer" -> "HTTP_Server", "createdAt" -> "created_At", "hat2Id" -> "hat2_Id"
WORD_BOUNDARY_RE = re.compile(r"(?<=[A-Z])(?=[A-Z][a-z])|(?<=[a-z\d])(?=[A-Z])")
SEPARATOR_RE = re.compile(r"[-\s]+")

# Helpers whose value is itself a predicate tree
LOGICAL_HELPERS = frozenset({"$or", "$and", "$not"})


def snake_case(name: str) -> str:
    """
    Column name for a property name.

    Acronym runs stay together and digits stick to the preceding word:

        >>> snake_case("createdAt"), snake_case("HTTPServer")
        ('created_at', 'http_server')
    """
    return SEPARATOR_RE.sub("_", WORD_BOUNDARY_RE.sub("_", name)).lower()


def camel_case(name: str) -> str:
    """Property name for a column name; camelCase input is kept."""
    words = [word for word in snake_case(name).split("_") if word]

    if not words:
        return name

    return words[0] + "".join(word.capitalize() for word in words[1:])


def is_helper(key: Any) -> bool:
    """Check if key is a query helper."""
    return isinstance(key, str) and key.startswith(HELPER_MARKER)


def _row_key(key: Any) -> Any:
    if not isinstance(key, str):
        return key
    # "persons.hatId" -> "persons.hat_id"
    return ".".join(snake_case(part) for part in key.split("."))


def to_row_keys(value: Any) -> Any:
    """
    Recursively convert camelCase keys to snake_case.

    Dicts and lists are rebuilt, the input is never mutated. Anything
    else, and empty containers, are returned as is.

    Args:
        value: Mapping, list or scalar

    Returns:
        Converted structure
    """
    if not value:
        return value

    if isinstance(value, list):
        return [to_row_keys(item) for item in value]

    if isinstance(value, dict):
        converted = {}

        for key, item in value.items():
            if is_helper(key):
                converted[key] = to_row_keys(item) if key in LOGICAL_HELPERS else item
            else:
                converted[_row_key(key)] = to_row_keys(item)

        return converted

    return value


def to_property_keys(value: Any) -> Any:
    """
    Convert snake_case keys of a row to camelCase.

    Only the top level is renamed, nested values (e.g. JSON columns)
    are left alone. Non-mapping input is returned unchanged.
    """
    if not isinstance(value, Mapping):
        return value

    return {
        key if is_helper(key) or not isinstance(key, str) else camel_case(key): item
        for key, item in value.items()
    }
