"""
Keleran Environment
===================

Environment variable loading for database configuration.

The ORM follows libpq conventions (PGHOST, PGDATABASE, PGSSLMODE ...), so
a project can keep its connection settings in a ``.env`` file next to
the code:

    # .env
    PGHOST=localhost
    PGDATABASE=orm
    PGUSER=orm
    PGPASSWORD="${ORM_SECRET}"
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Optional, Tuple, Union


VARIABLE_RE = re.compile(r"\$\{([^}]+)\}|\$(\w+)")

TRUE_VALUES = ("true", "1", "yes", "on")
FALSE_VALUES = ("false", "0", "no", "off", "")


def parse_line(line: str) -> Optional[Tuple[str, str]]:
    """
    Parse one ``KEY=value`` line of a .env file.

    Comments, blank lines and lines without ``=`` yield None. An
    ``export`` prefix and matching quotes around the value are dropped.
    """
    line = line.strip()

    if not line or line.startswith("#") or "=" not in line:
        return None

    if line.startswith("export "):
        line = line[len("export "):]

    key, _, value = line.partition("=")
    value = value.strip()

    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]

    return key.strip(), value


def read_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """
    Read a .env file.

    ``$VAR`` and ``${VAR}`` references are expanded from the process
    environment first, then from keys defined earlier in the file.
    """
    values: Dict[str, str] = {}

    def expand(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        return os.getenv(name, values.get(name, ""))

    for line in Path(path).read_text().splitlines():
        parsed = parse_line(line)
        if parsed is not None:
            key, value = parsed
            values[key] = VARIABLE_RE.sub(expand, value)

    return values


def find_env_file(start: Optional[Path] = None, levels: int = 3) -> Optional[Path]:
    """Find a .env file in ``start`` (default: cwd) or up to ``levels`` parents."""
    start = start or Path.cwd()

    for directory in [start, *list(start.parents)[:levels]]:
        candidate = directory / ".env"
        if candidate.is_file():
            return candidate

    return None


class Env:
    """
    Environment variable reader.

    Values from a loaded .env file are exported to ``os.environ``
    unless the process already defines them (or ``override`` is set).

    Example:
        env = Env().load()

        host = env.str("PGHOST", default="localhost")
        port = env.int("PGPORT", default=5432)
    """

    def __init__(
        self,
        env_file: Optional[Union[str, Path]] = None,
        override: bool = False,
    ):
        self.env_file = Path(env_file) if env_file else None
        self.override = override
        self.file_values: Dict[str, str] = {}

    def load(self) -> Env:
        """
        Load the .env file, if there is one.

        Returns:
            Self for chaining
        """
        path = self.env_file or find_env_file()

        if path is not None and path.is_file():
            self.file_values = read_env_file(path)

            for key, value in self.file_values.items():
                if self.override or key not in os.environ:
                    os.environ[key] = value

        return self

    def get(
        self,
        key: str,
        default: Optional[str] = None,
        required: bool = False,
    ) -> Optional[str]:
        """
        Get environment variable.

        Raises:
            KeyError: If required and not found
        """
        value = os.environ.get(key, self.file_values.get(key))

        if value is None:
            if required:
                raise KeyError(f"Required environment variable '{key}' is not set")
            return default

        return value

    def str(
        self,
        key: str,
        default: Optional[str] = None,
        required: bool = False,
    ) -> Optional[str]:
        """Get string value."""
        return self.get(key, default, required)

    def int(
        self,
        key: str,
        default: Optional[int] = None,
        required: bool = False,
    ) -> Optional[int]:
        """Get integer value; empty counts as unset."""
        value = self.get(key, required=required)

        if not value:
            return default

        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' is not a valid integer")

    def bool(
        self,
        key: str,
        default: Optional[bool] = None,
        required: bool = False,
    ) -> Optional[bool]:
        """Get boolean value."""
        value = self.get(key, required=required)

        if value is None:
            return default

        if value.lower() in TRUE_VALUES:
            return True

        if value.lower() in FALSE_VALUES:
            return False

        raise ValueError(f"Environment variable '{key}' is not a valid boolean")

    def __contains__(self, key: str) -> bool:
        return key in os.environ or key in self.file_values


# Global instance
_env: Optional[Env] = None


def get_env() -> Env:
    """Get the global, lazily loaded environment."""
    global _env

    if _env is None:
        _env = Env().load()

    return _env


def load_env(
    env_file: Optional[Union[str, Path]] = None,
    override: bool = False,
) -> Env:
    """
    Load environment from file, replacing the global instance.

    Returns:
        Env instance
    """
    global _env

    _env = Env(env_file, override).load()

    return _env
