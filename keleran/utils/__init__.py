"""
Keleran Utils Package
=====================

Environment loading, events and collection helpers.
"""

from __future__ import annotations

from keleran.utils.env import Env, get_env, load_env, read_env_file
from keleran.utils.events import EventEmitter
from keleran.utils.helpers import flatten, unique

__all__ = [
    # Environment
    "Env",
    "get_env",
    "load_env",
    "read_env_file",
    # Events
    "EventEmitter",
    # Helpers
    "flatten",
    "unique",
]
