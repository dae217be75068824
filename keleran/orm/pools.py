"""
Keleran ORM Pools
=================

Shared default connection pool and graceful shutdown.

Example:
    db = Database(pool=get_default_pool())

    class Hat(Model):
        db = db
        table = "hats"

    # On shutdown
    await end_pools([Hat, Person])
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence, Type

from keleran.orm.connection import ConnectionPool, DatabaseConfig


logger = logging.getLogger(__name__)

_default_pool: Optional[ConnectionPool] = None

# Pools ended in the background by reset_default_pool()
_ending: List[asyncio.Future] = []


def _log_pool_error(error: BaseException, conn: Any = None) -> None:
    logger.error("Connection pool error: %s", error)


def _create_pool(max_size: Optional[int] = None) -> ConnectionPool:
    config = DatabaseConfig.from_env()
    if max_size is not None:
        config.max_size = max_size

    pool = ConnectionPool(config)
    pool.on("error", _log_pool_error)
    return pool


def get_default_pool() -> ConnectionPool:
    """Get the shared pool, creating it from the environment on first use."""
    global _default_pool

    if _default_pool is None:
        _default_pool = _create_pool()

    return _default_pool


def reset_default_pool(max_size: Optional[int] = None) -> ConnectionPool:
    """
    Replace the shared pool with a new one.

    Inside a running event loop the old pool is ended in the background;
    otherwise it is ended before returning. Failures are logged.

    Args:
        max_size: Maximum number of connections of the new pool
    """
    global _default_pool

    current = _default_pool
    _default_pool = _create_pool(max_size)

    if current is None or current.ended or current.ending:
        return _default_pool

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        try:
            asyncio.run(current.end())
        except Exception as e:
            logger.error("Failed to end replaced pool: %s", e)
        return _default_pool

    task = asyncio.ensure_future(current.end())
    task.add_done_callback(_ended_in_background)
    _ending.append(task)

    return _default_pool


def _ended_in_background(task: asyncio.Future) -> None:
    if task in _ending:
        _ending.remove(task)

    if not task.cancelled() and task.exception() is not None:
        logger.error("Failed to end replaced pool: %s", task.exception())


async def end_pools(models: Sequence[Type[Any]] = ()) -> None:
    """
    End the shared pool and the pools of the given models.

    Pools already ended or ending are skipped. Returns once all have
    settled. Intended for graceful process shutdown.
    """
    pools: List[Any] = []

    if _default_pool is not None:
        pools.append(_default_pool)

    for model in models:
        pool = getattr(getattr(model, "db", None), "pool", None)
        if pool is not None and not any(pool is p for p in pools):
            pools.append(pool)

    await asyncio.gather(*(pool.end() for pool in pools if not (pool.ended or pool.ending)))

    # Failures of these are logged by _ended_in_background
    await asyncio.gather(*_ending, return_exceptions=True)
