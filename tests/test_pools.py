"""Tests for connection pools and shutdown."""

import asyncio
import logging

import pytest

from keleran.orm import pools
from keleran.orm.connection import ConnectionPool, Database, DatabaseConfig, PostgreSQLConnection
from keleran.orm.errors import PoolClosedError
from keleran.orm.model import Model

from conftest import FakePool


@pytest.fixture
def no_default_pool(monkeypatch):
    monkeypatch.setattr(pools, "_default_pool", None)
    monkeypatch.setattr(pools, "_ending", [])


def model_on(pool, table):
    class Bound(Model):
        pass

    Bound.db = Database(pool=pool)
    Bound.table = table
    return Bound


# ConnectionPool

@pytest.mark.asyncio
async def test_ended_pool_refuses_connections():
    pool = ConnectionPool(DatabaseConfig(database="orm"))

    await pool.end()

    assert pool.ended
    with pytest.raises(PoolClosedError) as exc_info:
        await pool.connect()
    assert exc_info.value.code == "POOL_CLOSED"


@pytest.mark.asyncio
async def test_terminated_connection_is_discarded_and_reported():
    pool = ConnectionPool(DatabaseConfig(database="orm"))
    conn = PostgreSQLConnection(pool.config, pool=pool)
    pool._connections.append(conn)
    errors = []
    pool.on("error", lambda error, connection: errors.append((error, connection)))

    pool.handle_termination(conn)
    await asyncio.sleep(0)

    assert pool.size == 0
    assert len(errors) == 1
    assert isinstance(errors[0][0], ConnectionError)
    assert errors[0][1] is conn


@pytest.mark.asyncio
async def test_termination_while_ending_is_not_reported():
    pool = ConnectionPool(DatabaseConfig(database="orm"))
    errors = []
    pool.on("error", lambda *args: errors.append(args))

    await pool.end()
    pool.handle_termination(PostgreSQLConnection(pool.config, pool=pool))
    await asyncio.sleep(0)

    assert errors == []


class FakeDriverConnection:
    def __init__(self):
        self.closed = False

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True


@pytest.fixture
def offline_pool(monkeypatch):
    async def connect(self):
        self._conn = FakeDriverConnection()

    monkeypatch.setattr(PostgreSQLConnection, "connect", connect)
    return ConnectionPool(DatabaseConfig(database="orm", max_size=1))


@pytest.mark.asyncio
async def test_waiter_gets_released_connection(offline_pool):
    first = await offline_pool.connect()
    waiting = asyncio.ensure_future(offline_pool.connect())
    await asyncio.sleep(0)
    assert not waiting.done()

    first.release()

    assert await asyncio.wait_for(waiting, 1) is first


@pytest.mark.asyncio
async def test_waiter_opens_connection_when_one_dies(offline_pool):
    first = await offline_pool.connect()
    waiting = asyncio.ensure_future(offline_pool.connect())
    await asyncio.sleep(0)

    first._conn.closed = True
    first.release()
    second = await asyncio.wait_for(waiting, 1)

    assert second is not first
    assert offline_pool.size == 1


@pytest.mark.asyncio
async def test_waiter_opens_connection_after_termination(offline_pool):
    first = await offline_pool.connect()
    waiting = asyncio.ensure_future(offline_pool.connect())
    await asyncio.sleep(0)

    offline_pool.handle_termination(first)
    second = await asyncio.wait_for(waiting, 1)

    assert second is not first


@pytest.mark.asyncio
async def test_end_fails_waiters(offline_pool):
    await offline_pool.connect()
    waiting = asyncio.ensure_future(offline_pool.connect())
    await asyncio.sleep(0)

    await offline_pool.end()

    with pytest.raises(PoolClosedError):
        await asyncio.wait_for(waiting, 1)


@pytest.mark.asyncio
async def test_cancelled_waiter_passes_connection_on(offline_pool):
    first = await offline_pool.connect()
    cancelled = asyncio.ensure_future(offline_pool.connect())
    waiting = asyncio.ensure_future(offline_pool.connect())
    await asyncio.sleep(0)

    first.release()
    cancelled.cancel()

    assert await asyncio.wait_for(waiting, 1) is first


# Default pool

def test_default_pool_is_shared(no_default_pool, monkeypatch):
    monkeypatch.setenv("KELERAN_POOL_MAX", "4")

    pool = pools.get_default_pool()

    assert pools.get_default_pool() is pool
    assert pool.config.max_size == 4
    assert pool.events.listener_count("error") == 1


@pytest.mark.asyncio
async def test_default_pool_logs_errors(no_default_pool, caplog):
    pool = pools.get_default_pool()

    with caplog.at_level(logging.ERROR, logger="keleran.orm.pools"):
        await pool.events.emit("error", ConnectionError("server closed the connection"), None)

    assert "server closed the connection" in caplog.text


@pytest.mark.asyncio
async def test_reset_default_pool_ends_previous(no_default_pool):
    old = pools.get_default_pool()

    new = pools.reset_default_pool(max_size=2)
    await asyncio.gather(*pools._ending)

    assert new is not old
    assert pools.get_default_pool() is new
    assert new.config.max_size == 2
    assert old.ended
    assert not new.ended


def test_reset_default_pool_outside_event_loop(no_default_pool):
    old = pools.get_default_pool()

    new = pools.reset_default_pool()

    assert old.ended
    assert not new.ended
    assert pools._ending == []


# Shutdown

@pytest.mark.asyncio
async def test_end_pools_ends_model_pools_once(no_default_pool):
    shared = FakePool()
    finished = FakePool()
    finished.ended = True
    closing = FakePool()
    closing.ending = True

    models = [
        model_on(shared, "hats"),
        model_on(shared, "persons"),
        model_on(finished, "socks"),
        model_on(closing, "shoes"),
    ]

    await pools.end_pools(models)

    assert shared.end_calls == 1
    assert finished.end_calls == 0
    assert closing.end_calls == 0


@pytest.mark.asyncio
async def test_end_pools_ends_default_pool(no_default_pool):
    default = pools.get_default_pool()

    await pools.end_pools()

    assert default.ended


@pytest.mark.asyncio
async def test_end_pools_without_pools(no_default_pool):
    await pools.end_pools([])
