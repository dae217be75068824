"""
Keleran ORM Relationship Linker
===============================

Discovers foreign keys between model tables and registers extenders
for them:

- ``<name>``: for every ``<name>_id`` column referencing another model's
  ``id``, the referenced instance (``person.hat`` from ``person.hatId``)
- ``isReferenced``: whether any row of another table points at the
  instance

Example:
    await link([Hat, Person])

    persons = await Person.find({"extend": "hat"})
    hats = await Hat.find({"extend": "isReferenced"})
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Type

from keleran.orm.connection import Context
from keleran.orm.errors import ArgumentsInvalidError
from keleran.orm.keys import camel_case
from keleran.orm.query import quote_identifier
from keleran.utils.helpers import unique


REFERENCES_QUERY = """
    SELECT kcu.table_schema,
           kcu.table_name,
           kcu.column_name,
           ccu.table_name AS foreign_table_name
    FROM information_schema.table_constraints AS tc
         JOIN information_schema.key_column_usage AS kcu ON tc.constraint_name = kcu.constraint_name
         JOIN information_schema.constraint_column_usage AS ccu ON ccu.constraint_name = tc.constraint_name
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND ccu.column_name = 'id'
"""

IS_REFERENCED = "isReferenced"


@dataclass(frozen=True)
class Reference:
    """Foreign key from ``schema.table.column`` to ``referenced_table.id``."""

    schema: str
    table: str
    column: str
    referenced_table: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Reference:
        return cls(
            schema=row["table_schema"],
            table=row["table_name"],
            column=row["column_name"],
            referenced_table=row["foreign_table_name"],
        )


async def get_references(
    models: Sequence[Type[Any]],
    ctx: Optional[Context] = None,
) -> List[Reference]:
    """
    Discover foreign keys targeting an ``id`` column.

    Args:
        models: Models sharing one Database
        ctx: Execution context

    Raises:
        ArgumentsInvalidError: The models do not share one Database
    """
    if not models:
        return []

    db = models[0].db

    if db is None or any(model.db is not db for model in models):
        raise ArgumentsInvalidError("Not all of the supplied models share the same DB")

    result = await db.exec(REFERENCES_QUERY, ctx)
    return [Reference.from_row(row) for row in result.rows]


async def link(
    models: Sequence[Type[Any]],
    ctx: Optional[Context] = None,
) -> None:
    """
    Add extenders that follow model relationships.

    Models without both ``db`` and ``table`` are skipped. Extenders
    registered by hand are kept; extenders from an earlier ``link`` are
    rebuilt from the current foreign keys.
    """
    groups: Dict[int, List[Type[Any]]] = {}

    for model in models:
        if model.db is None or not model.table:
            continue
        groups.setdefault(id(model.db), []).append(model)

    async def link_group(db_models: List[Type[Any]]) -> None:
        references = await get_references(db_models, ctx)

        for model in db_models:
            _drop_linked_extenders(model)
            add_id_extenders(model, references, db_models)
            add_is_referenced_extender(model, references)

    await asyncio.gather(*(link_group(db_models) for db_models in groups.values()))


def add_id_extenders(
    model: Type[Any],
    references: List[Reference],
    db_models: List[Type[Any]],
) -> None:
    """Add extenders for columns ending with "_id"."""
    for reference in references:
        if reference.table != model.table:
            continue

        referenced_model = next(
            (m for m in db_models if m.table == reference.referenced_table),
            None,
        )
        if referenced_model is None:
            continue

        # some_user_id -> someUser, read from someUserId
        column = reference.column
        prop = camel_case(column[:-3] if column.endswith("_id") else column)
        source = camel_case(column)

        _register(model, prop, _id_extender(prop, source, referenced_model))


def _id_extender(prop: str, source: str, referenced_model: Type[Any]):
    async def extender(instances: List[Any], remaining: List[str], ctx: Context) -> None:
        if not instances:
            return

        ids = unique(
            value for value in (getattr(i, source, None) for i in instances)
            if value is not None
        )
        if not ids:
            return

        referenced = await referenced_model.find({"where": {"id": {"$in": ids}}}, ctx)
        by_id: Dict[Any, Any] = {}

        for instance in referenced:
            by_id.setdefault(instance.id, instance)

        for instance in instances:
            match = by_id.get(getattr(instance, source, None))
            if match is not None:
                setattr(instance, prop, match)

    return extender


def add_is_referenced_extender(model: Type[Any], references: List[Reference]) -> None:
    """Add the "isReferenced" extender."""
    # (schema, table, column) pointing at this model
    referencing = unique(
        (r.schema, r.table, r.column)
        for r in references
        if r.referenced_table == model.table
    )

    async def extender(instances: List[Any], remaining: List[str], ctx: Context) -> None:
        if not instances:
            return

        for instance in instances:
            setattr(instance, IS_REFERENCED, False)

        if not referencing:
            return

        ids = unique(
            value for value in (getattr(i, "id", None) for i in instances)
            if value is not None
        )
        if not ids:
            return

        statement = " UNION ".join(
            f"SELECT {quote_identifier(column)} AS referenced_id "
            f"FROM {quote_identifier(schema)}.{quote_identifier(table)} "
            f"WHERE {quote_identifier(column)} = ANY($1)"
            for schema, table, column in referencing
        )

        result = await model.db.exec(statement, [ids], ctx)
        referenced_ids = {row["referenced_id"] for row in result.rows}

        for instance in instances:
            setattr(instance, IS_REFERENCED, getattr(instance, "id", None) in referenced_ids)

    _register(model, IS_REFERENCED, extender)


def _register(model: Type[Any], name: str, extender: Any) -> None:
    # Hand-registered extenders win over linked ones
    if name in model.extenders and not getattr(model.extenders[name], "_linked", False):
        return

    extender._linked = True
    model.extenders[name] = extender


def _drop_linked_extenders(model: Type[Any]) -> None:
    for name, extender in list(model.extenders.items()):
        if getattr(extender, "_linked", False):
            del model.extenders[name]
