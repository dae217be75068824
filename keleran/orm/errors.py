"""
Keleran ORM Errors
==================

Every error raised by the ORM itself carries a stable ``code`` so callers
can branch on the kind without importing each class. Driver errors
(asyncpg.PostgresError and friends) are never wrapped.
"""

from __future__ import annotations


class ORMError(Exception):
    """Base ORM error."""

    code = "ORM_ERROR"


class ArgumentsInvalidError(ORMError):
    """Malformed input to compile, exec, transact or get_references."""

    code = "ARGUMENTS_INVALID"


class DbMissingError(ORMError):
    """The model is not linked to a database."""

    code = "DB_MISSING"


class TableMissingError(ORMError):
    """The model is not linked to a table."""

    code = "TABLE_MISSING"


class ModeInvalidError(ORMError):
    """Unrecognized save mode."""

    code = "MODE_INVALID"


class NotFoundError(ORMError):
    """Update matched no record."""

    code = "NOT_FOUND"


class ExtenderMissingError(ORMError):
    """No extender is registered for the requested property."""

    code = "EXTENDER_MISSING"


class ExtendNotImplementedError(ORMError):
    """A related value cannot be extended further."""

    code = "EXTEND_NOT_IMPLEMENTED"


class PropertiesInvalidError(ORMError):
    """Extend properties are neither a string nor a sequence of strings."""

    code = "PROPERTIES_INVALID"


class PoolClosedError(ORMError):
    """Connection requested from a pool that has been ended."""

    code = "POOL_CLOSED"
