"""
Keleran Helpers
===============

Collection helpers shared by the ORM.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Hashable, Iterable, Iterator, List, Optional, TypeVar


T = TypeVar("T")


def iter_flat(items: Iterable) -> Iterator:
    """Yield the leaves of arbitrarily nested lists and tuples."""
    for item in items:
        if isinstance(item, (list, tuple)):
            yield from iter_flat(item)
        else:
            yield item


def flatten(items: Iterable) -> List:
    """
    Flatten nested lists and tuples into one list.

    Used to gather extended values, where a property may hold a single
    instance or a list of them:

        >>> flatten([hat, [sock, [shoe]], None])
        [hat, sock, shoe, None]
    """
    return list(iter_flat(items))


def unique(
    items: Iterable[T],
    key: Optional[Callable[[T], Hashable]] = None,
) -> List[T]:
    """Drop repeated items, keeping the first occurrence of each."""
    first: Dict[Any, T] = {}

    for item in items:
        first.setdefault(item if key is None else key(item), item)

    return list(first.values())
