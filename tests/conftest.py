"""
Shared fixtures.

``FakePool`` stands in for the asyncpg pool: it records every statement
and answers with scripted results, so the ORM can be tested without a
PostgreSQL server.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from keleran.orm.connection import Connection, Database, QueryResult
from keleran.orm.errors import PoolClosedError
from keleran.orm.model import Model


class FakeConnection(Connection):
    """Connection answering from its pool's script."""

    def __init__(self, pool: FakePool) -> None:
        self.pool = pool
        self.released = 0

    async def query(self, statement: str, values: Optional[List[Any]] = None) -> QueryResult:
        return self.pool.handle(statement, list(values or []))

    def release(self) -> None:
        self.released += 1
        self.pool.releases += 1


class FakePool:
    """
    Recording pool.

    Example:
        pool.respond("FROM \\"hats\\"", rows=[{"id": 1}])
        pool.respond("ROLLBACK", error=RuntimeError("gone"))
    """

    def __init__(self) -> None:
        self.queries: List[Tuple[str, List[Any]]] = []
        self.connections: List[FakeConnection] = []
        self.releases = 0
        self.ended = False
        self.ending = False
        self.end_calls = 0
        self._script: List[Tuple[str, Any]] = []

    @property
    def statements(self) -> List[str]:
        return [statement for statement, _ in self.queries]

    def respond(
        self,
        fragment: str,
        rows: Optional[List[Dict[str, Any]]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Answer the next statement containing ``fragment``."""
        if error is not None:
            self._script.append((fragment, error))
        else:
            rows = rows or []
            self._script.append((fragment, QueryResult(rows=rows, rowcount=len(rows))))

    def handle(self, statement: str, values: List[Any]) -> QueryResult:
        self.queries.append((statement, values))

        for index, (fragment, answer) in enumerate(self._script):
            if fragment in statement:
                del self._script[index]
                if isinstance(answer, BaseException):
                    raise answer
                return answer

        return QueryResult()

    async def connect(self) -> FakeConnection:
        if self.ended or self.ending:
            raise PoolClosedError("Pool is closed")

        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    async def end(self) -> None:
        self.end_calls += 1
        self.ended = True


HAT_COLUMNS = ["id", "color", "created_at", "data"]
PERSON_COLUMNS = ["id", "name", "hat_id", "created_at"]


@pytest.fixture
def pool() -> FakePool:
    return FakePool()


@pytest.fixture
def db(pool: FakePool) -> Database:
    return Database(pool=pool)


@pytest.fixture
def records(db: Database) -> List[Any]:
    """Completion records emitted by ``db``."""
    emitted: List[Any] = []
    db.on("exec_finish", emitted.append)
    return emitted


@pytest.fixture
def hat_model(db: Database):
    class Hat(Model):
        table = "hats"
        columns = list(HAT_COLUMNS)

    Hat.db = db
    return Hat


@pytest.fixture
def person_model(db: Database):
    class Person(Model):
        table = "persons"
        columns = list(PERSON_COLUMNS)

        def describe_hat(self) -> str:
            return f"{self.name} has a {self.hat.color} hat."

    Person.db = db
    return Person
