"""
Keleran ORM Query Compiler
==========================

Compiles declarative query specifications into parameterized PostgreSQL.

A specification is a plain dict:

    {
        "type": "select",                 # select | insert | update | delete
        "table": "persons",
        "columns": ["id", "name"],        # select / insert column list
        "where": {"hat_id": {"$in": [1, 2]}, "$or": [{"name": None}]},
        "order": {"created_at": "desc"},
        "limit": 10,
        "offset": 20,
        "values": {"name": "John"},       # insert / update
        "conflict": {"target": "id", "action": {"update": {...}}},
        "returning": ["*"],
    }

Compilation only builds text; keys are expected in storage (snake_case)
form already.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple

from keleran.orm.errors import ArgumentsInvalidError
from keleran.orm.keys import is_helper
from keleran.utils.helpers import unique


IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


class StatementType(Enum):
    """Supported statement types."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Operator(Enum):
    """SQL comparison operators."""

    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    ILIKE = "ILIKE"
    IN = "IN"
    NOT_IN = "NOT IN"
    IS = "IS"
    IS_NOT = "IS NOT"


class OrderDirection(Enum):
    """Sort direction."""

    ASC = "ASC"
    DESC = "DESC"


# Column helpers taking a value
HELPER_OPERATORS: Dict[str, Operator] = {
    "$eq": Operator.EQ,
    "$equals": Operator.EQ,
    "$ne": Operator.NE,
    "$lt": Operator.LT,
    "$lte": Operator.LE,
    "$gt": Operator.GT,
    "$gte": Operator.GE,
    "$like": Operator.LIKE,
    "$nlike": Operator.NOT_LIKE,
    "$ilike": Operator.ILIKE,
    "$in": Operator.IN,
    "$nin": Operator.NOT_IN,
}


@dataclass
class Expression:
    """
    Raw SQL fragment.

    Used where a value has to be computed by the database. ``?`` marks
    a binding; bindings are renumbered into the statement's ``$n``
    sequence.

    Example:
        {"values": {"updated_at": Expression("now()")}}
        {"where": {"score": {"$gt": Expression("? * 2", [10])}}}
    """

    sql: str
    bindings: List[Any] = field(default_factory=list)

    def __str__(self) -> str:
        return self.sql


def quote_identifier(name: str) -> str:
    """
    Quote a possibly schema-qualified identifier.

    Anything that is not a plain identifier (``*``, ``COUNT(*)``,
    ``lower(name)``) is emitted as is.

    Example:
        >>> quote_identifier("information_schema.columns")
        '"information_schema"."columns"'
        >>> quote_identifier("COUNT(*)")
        'COUNT(*)'
    """
    parts = name.split(".")

    if not all(IDENTIFIER_RE.match(part) for part in parts):
        return name

    return ".".join(f'"{part}"' for part in parts)


class SpecCompiler:
    """
    Single-use compiler of one query specification.

    Example:
        statement, values = SpecCompiler({
            "type": "select",
            "table": "hats",
            "where": {"color": "blue"},
        }).compile()
        # SELECT * FROM "hats" WHERE "color" = $1   ['blue']
    """

    def __init__(self, spec: Dict[str, Any]) -> None:
        self.spec = spec
        self.values: List[Any] = []

    def compile(self) -> Tuple[str, List[Any]]:
        """
        Build SQL statement.

        Returns:
            Tuple of (statement, values)
        """
        try:
            statement_type = StatementType(self.spec.get("type") or "select")
        except ValueError:
            raise ArgumentsInvalidError(f"Unknown statement type: {self.spec.get('type')!r}")

        build = {
            StatementType.SELECT: self._select,
            StatementType.INSERT: self._insert,
            StatementType.UPDATE: self._update,
            StatementType.DELETE: self._delete,
        }[statement_type]

        parts = [part for part in build() if part]
        return " ".join(parts), self.values

    # Statements

    def _select(self) -> List[str]:
        columns = self.spec.get("columns") or ["*"]
        if isinstance(columns, str):
            columns = [columns]

        return [
            f"SELECT {', '.join(quote_identifier(c) for c in columns)}",
            f"FROM {self._table()}",
            self._where(),
            self._order(),
            self._number("LIMIT", self.spec.get("limit")),
            self._number("OFFSET", self.spec.get("offset")),
        ]

    def _insert(self) -> List[str]:
        parts = [f"INSERT INTO {self._table()}"]
        values = self.spec.get("values")

        if values is None:
            expression = self.spec.get("expression")
            if not expression:
                raise ArgumentsInvalidError("Insert requires values or an expression")

            columns = self.spec.get("columns")
            if columns:
                parts.append(f"({', '.join(quote_identifier(c) for c in columns)})")
            parts.append(self._expression(expression) if isinstance(expression, Expression) else expression)
        else:
            rows = values if isinstance(values, list) else [values]
            if not rows or not all(isinstance(row, dict) and row for row in rows):
                raise ArgumentsInvalidError("Insert values must be non-empty mappings")

            columns = unique(column for row in rows for column in row)
            parts.append(f"({', '.join(quote_identifier(c) for c in columns)})")

            tuples = []
            for row in rows:
                bound = [self._bind(row[c]) if c in row else "DEFAULT" for c in columns]
                tuples.append(f"({', '.join(bound)})")
            parts.append(f"VALUES {', '.join(tuples)}")

        parts.append(self._conflict())
        parts.append(self._returning())
        return parts

    def _update(self) -> List[str]:
        values = self.spec.get("values")
        if not isinstance(values, dict) or not values:
            raise ArgumentsInvalidError("Update values must be a non-empty mapping")

        return [
            f"UPDATE {self._table()}",
            f"SET {self._assignments(values)}",
            self._where(),
            self._returning(),
        ]

    def _delete(self) -> List[str]:
        return [
            f"DELETE FROM {self._table()}",
            self._where(),
            self._returning(),
        ]

    # Clauses

    def _table(self) -> str:
        table = self.spec.get("table")
        if not isinstance(table, str) or not table:
            raise ArgumentsInvalidError("Table is not specified")
        return quote_identifier(table)

    def _assignments(self, values: Dict[str, Any]) -> str:
        return ", ".join(
            f"{quote_identifier(column)} = {self._bind(value)}"
            for column, value in values.items()
        )

    def _conflict(self) -> str:
        conflict = self.spec.get("conflict")
        if not conflict:
            return ""

        target = conflict.get("target")
        if isinstance(target, str):
            target = [target]

        clause = "ON CONFLICT"
        if target:
            clause += f" ({', '.join(quote_identifier(t) for t in target)})"

        action = conflict.get("action", "nothing")
        if action == "nothing":
            return f"{clause} DO NOTHING"

        if isinstance(action, dict) and action.get("update"):
            return f"{clause} DO UPDATE SET {self._assignments(action['update'])}"

        raise ArgumentsInvalidError(f"Unknown conflict action: {action!r}")

    def _returning(self) -> str:
        returning = self.spec.get("returning")
        if not returning:
            return ""
        if isinstance(returning, str):
            returning = [returning]
        return f"RETURNING {', '.join(quote_identifier(c) for c in returning)}"

    def _order(self) -> str:
        order = self.spec.get("order")
        if not order:
            return ""

        if isinstance(order, dict):
            items = list(order.items())
        else:
            items = [(column, None) for column in ([order] if isinstance(order, str) else order)]

        parts = []
        for column, direction in items:
            if direction is None:
                parts.append(quote_identifier(column))
                continue

            try:
                dir_enum = OrderDirection(str(direction).upper())
            except ValueError:
                raise ArgumentsInvalidError(f"Unknown order direction: {direction!r}")
            parts.append(f"{quote_identifier(column)} {dir_enum.value}")

        return f"ORDER BY {', '.join(parts)}"

    def _number(self, keyword: str, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ArgumentsInvalidError(f"{keyword} must be a non-negative integer")
        return f"{keyword} {value}"

    # WHERE

    def _where(self) -> str:
        where = self.spec.get("where")
        if not where:
            return ""

        if not isinstance(where, dict):
            raise ArgumentsInvalidError("Where must be a mapping")

        parts = self._predicate(where)
        return f"WHERE {' AND '.join(parts)}" if parts else ""

    def _predicate(self, tree: Dict[str, Any]) -> List[str]:
        """Compile a predicate mapping into conjunctive parts."""
        parts = []

        for key, value in tree.items():
            if key == "$or":
                parts.append(self._group(value, " OR "))
            elif key == "$and":
                parts.append(self._group(value, " AND "))
            elif key == "$not":
                negated = self._predicate(value)
                if negated:
                    parts.append(f"NOT ({' AND '.join(negated)})")
            elif is_helper(key):
                raise ArgumentsInvalidError(f"Helper {key} requires a column")
            else:
                parts.extend(self._conditions(quote_identifier(key), value))

        return parts

    def _group(self, value: Any, joiner: str) -> str:
        # {"$or": {"a": 1, "b": 2}} is shorthand for [{"a": 1}, {"b": 2}]
        items: Iterable[Dict[str, Any]]
        if isinstance(value, dict):
            items = [{k: v} for k, v in value.items()]
        else:
            items = value

        alternatives = []
        for item in items:
            parts = self._predicate(item)
            if not parts:
                continue
            alternatives.append(parts[0] if len(parts) == 1 else f"({' AND '.join(parts)})")

        if not alternatives:
            return "false" if joiner == " OR " else "true"

        return f"({joiner.join(alternatives)})"

    def _conditions(self, column: str, value: Any) -> List[str]:
        if isinstance(value, dict) and value and all(is_helper(k) for k in value):
            return [self._helper(column, helper, argument) for helper, argument in value.items()]

        return [self._compare(column, Operator.EQ, value)]

    def _helper(self, column: str, helper: str, argument: Any) -> str:
        if helper == "$null":
            return self._compare(column, Operator.IS if argument else Operator.IS_NOT, None)

        if helper == "$notNull":
            return self._compare(column, Operator.IS_NOT if argument else Operator.IS, None)

        op = HELPER_OPERATORS.get(helper)
        if op is None:
            raise ArgumentsInvalidError(f"Unknown helper: {helper}")

        return self._compare(column, op, argument)

    def _compare(self, column: str, op: Operator, value: Any) -> str:
        if op in (Operator.IN, Operator.NOT_IN):
            items = list(value)
            if not items:
                return "false" if op is Operator.IN else "true"
            placeholders = ", ".join(self._bind(item) for item in items)
            return f"{column} {op.value} ({placeholders})"

        if value is None:
            if op is Operator.EQ:
                op = Operator.IS
            elif op is Operator.NE:
                op = Operator.IS_NOT

        if op in (Operator.IS, Operator.IS_NOT):
            return f"{column} {op.value} NULL"

        return f"{column} {op.value} {self._bind(value)}"

    # Bindings

    def _bind(self, value: Any) -> str:
        if isinstance(value, Expression):
            return self._expression(value)

        self.values.append(value)
        return f"${len(self.values)}"

    def _expression(self, expression: Expression) -> str:
        """Inline expression, converting ? placeholders to $n."""
        bindings = iter(expression.bindings)
        result = []

        for char in expression.sql:
            if char == "?":
                try:
                    result.append(self._bind(next(bindings)))
                except StopIteration:
                    raise ArgumentsInvalidError(f"Not enough bindings for {expression.sql!r}")
            else:
                result.append(char)

        return "".join(result)


def compile_spec(spec: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """
    Compile a query specification.

    Args:
        spec: Query specification with storage-form keys

    Returns:
        Tuple of (statement, values)
    """
    if not isinstance(spec, dict):
        raise ArgumentsInvalidError("Spec is not a mapping")

    return SpecCompiler(spec).compile()
