"""
Keleran ORM (Object-Relational Mapping)
=======================================

Lightweight async PostgreSQL ORM with:
- Active Record style models
- Declarative query specifications
- Nested transactions
- Extenders for related rows
- Connection pooling
"""

from keleran.orm.model import (
    Model,
    hybridmethod,
)
from keleran.orm.query import (
    Expression,
    SpecCompiler,
    compile_spec,
    quote_identifier,
)
from keleran.orm.connection import (
    CompiledSpec,
    Connection,
    ConnectionPool,
    Context,
    Database,
    DatabaseConfig,
    ExecRecord,
    PostgreSQLConnection,
    QueryResult,
)
from keleran.orm.keys import (
    to_property_keys,
    to_row_keys,
)
from keleran.orm.linker import (
    Reference,
    get_references,
    link,
)
from keleran.orm.pools import (
    end_pools,
    get_default_pool,
    reset_default_pool,
)
from keleran.orm.errors import (
    ArgumentsInvalidError,
    DbMissingError,
    ExtenderMissingError,
    ExtendNotImplementedError,
    ModeInvalidError,
    NotFoundError,
    ORMError,
    PoolClosedError,
    PropertiesInvalidError,
    TableMissingError,
)

__all__ = [
    # Model
    "Model",
    "hybridmethod",
    # Query
    "Expression",
    "SpecCompiler",
    "compile_spec",
    "quote_identifier",
    # Connection
    "CompiledSpec",
    "Connection",
    "ConnectionPool",
    "Context",
    "Database",
    "DatabaseConfig",
    "ExecRecord",
    "PostgreSQLConnection",
    "QueryResult",
    # Keys
    "to_property_keys",
    "to_row_keys",
    # Relationships
    "Reference",
    "get_references",
    "link",
    # Pools
    "end_pools",
    "get_default_pool",
    "reset_default_pool",
    # Errors
    "ArgumentsInvalidError",
    "DbMissingError",
    "ExtenderMissingError",
    "ExtendNotImplementedError",
    "ModeInvalidError",
    "NotFoundError",
    "ORMError",
    "PoolClosedError",
    "PropertiesInvalidError",
    "TableMissingError",
]
