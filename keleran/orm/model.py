"""
Keleran ORM Model
=================

Active Record style model base class.

Features:
- Table binding per class (db, table, cached columns)
- Spec based CRUD operations
- Insert / update / upsert saves
- Extenders for computed and related properties
"""

from __future__ import annotations

import types
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

import orjson

from keleran.orm.connection import Context, Database, QueryResult
from keleran.orm.errors import (
    ArgumentsInvalidError,
    DbMissingError,
    ExtenderMissingError,
    ExtendNotImplementedError,
    ModeInvalidError,
    NotFoundError,
    PropertiesInvalidError,
    TableMissingError,
)
from keleran.orm.keys import snake_case, to_property_keys
from keleran.utils.helpers import flatten

T = TypeVar("T", bound="Model")

SAVE_MODES = ("insert", "update", "upsert")

Extender = Callable[[List[Any], List[str], Context], Any]


class hybridmethod:
    """
    Method with a class-level and an instance-level implementation.

    Example:
        class Hat(Model):
            @hybridmethod
            async def delete(cls, spec=None, ctx=None): ...

            @delete.instancemethod
            async def delete(self, ctx=None): ...

        await Hat.delete({"where": {"color": "red"}})
        await hat.delete()
    """

    def __init__(self, class_func: Callable, instance_func: Optional[Callable] = None) -> None:
        self.class_func = class_func
        self.instance_func = instance_func
        self.__doc__ = class_func.__doc__

    def instancemethod(self, func: Callable) -> hybridmethod:
        self.instance_func = func
        return self

    def __get__(self, obj: Any, objtype: Optional[type] = None) -> Callable:
        if obj is None or self.instance_func is None:
            return types.MethodType(self.class_func, objtype if objtype is not None else type(obj))
        return types.MethodType(self.instance_func, obj)


class ModelMeta(type):
    """
    Metaclass for Model.

    Gives every class its own extender registry (a copy of its bases'
    merged with the ones declared in the class body) and its own column
    cache.
    """

    def __new__(
        mcs,
        name: str,
        bases: Tuple[type, ...],
        namespace: Dict[str, Any],
    ) -> ModelMeta:
        extenders: Dict[str, Extender] = {}

        for base in reversed(bases):
            extenders.update(getattr(base, "extenders", None) or {})

        extenders.update(namespace.get("extenders") or {})
        namespace["extenders"] = extenders

        namespace.setdefault("columns", None)
        namespace.setdefault("column_types", None)

        return super().__new__(mcs, name, bases, namespace)


class Model(metaclass=ModelMeta):
    """
    Base model class.

    Instances are open property bags with camelCase attributes; the
    matching table columns are snake_case.

    Example:
        class Hat(Model):
            db = Database()
            table = "hats"

        # Create
        hat = Hat(color="blue")
        await hat.save()

        # Read
        hats = await Hat.find({"where": {"color": "blue"}, "order": {"id": "asc"}})
        hat = await Hat.find_by_id(1)

        # Update
        await hat.set("color", "red").save("update")
        await Hat.update({"where": {"color": "red"}, "values": {"color": "black"}})

        # Delete
        await hat.delete()
    """

    # Class attributes
    db: ClassVar[Optional[Database]] = None
    table: ClassVar[Optional[str]] = None
    columns: ClassVar[Optional[List[str]]] = None
    column_types: ClassVar[Optional[Dict[str, str]]] = None
    extenders: ClassVar[Dict[str, Extender]] = {}

    # Zero-argument id factory, for tables whose ids are not DB assigned
    generate_id: ClassVar[Optional[Callable[[], Any]]] = None

    def __init__(self, **properties: Any) -> None:
        """Initialize instance with property values."""
        self.__dict__.update(properties)

        generate_id = type(self).generate_id
        if properties.get("id") is None and callable(generate_id):
            self.id = generate_id()

    def __repr__(self) -> str:
        """String representation."""
        return f"<{self.__class__.__name__} {getattr(self, 'id', None)}>"

    @classmethod
    def from_row(cls: Type[T], row: Dict[str, Any]) -> T:
        """Create model instance from database row."""
        return cls(**to_property_keys(row))

    def set(self: T, key_or_properties: Union[str, Dict[str, Any]], value: Any = None) -> T:
        """
        Assign instance properties.

        Example:
            hat.set({"color": "red", "size": 2})
            hat.set("color", "red").set("size", 2)
        """
        if isinstance(key_or_properties, dict):
            self.__dict__.update(key_or_properties)
        else:
            setattr(self, key_or_properties, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert instance, and extended instances, to a dictionary."""
        def convert(value: Any) -> Any:
            if isinstance(value, Model):
                return value.to_dict()
            if isinstance(value, list):
                return [convert(item) for item in value]
            return value

        return {key: convert(value) for key, value in vars(self).items()}

    # Extender registry

    @classmethod
    def add_extender(cls, name: str, extender: Optional[Extender] = None) -> Any:
        """
        Register an extender for a property.

        Can be used as decorator or method.

        Example:
            @Person.add_extender("greeting")
            async def greeting(instances, remaining, ctx):
                for person in instances:
                    person.greeting = f"Hello, {person.name}"
        """
        def register(func: Extender) -> Extender:
            cls.extenders[name] = func
            return func

        if extender is not None:
            return register(extender)

        return register

    # Query methods

    @classmethod
    def _check_binding(cls) -> None:
        if not isinstance(cls.db, Database):
            raise DbMissingError(f"{cls.__name__} is not linked to a DB")

        if not isinstance(cls.table, str):
            raise TableMissingError(f"{cls.__name__} is not linked to a table")

    @classmethod
    async def exec(
        cls,
        spec: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
    ) -> QueryResult:
        """Execute a query spec against the table of this model."""
        cls._check_binding()

        spec = dict(spec or {}, table=cls.table)
        return await cls.db.exec(spec, ctx)

    @classmethod
    async def refresh_columns(cls, ctx: Optional[Context] = None) -> List[str]:
        """Update the cached list of columns defined for the table."""
        cls._check_binding()

        result = await cls.db.exec(
            {
                "type": "select",
                "columns": ["column_name", "data_type"],
                "table": "information_schema.columns",
                "where": {"table_schema": "public", "table_name": cls.table},
            },
            ctx,
        )

        cls.columns = [row["column_name"] for row in result.rows]
        cls.column_types = {row["column_name"]: row["data_type"] for row in result.rows}
        return cls.columns

    @classmethod
    def invalidate_columns(cls) -> None:
        """Forget the cached columns; the next save refreshes them."""
        cls.columns = None
        cls.column_types = None

    @classmethod
    async def count(
        cls,
        spec: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
    ) -> int:
        """Count records."""
        spec = dict(spec or {}, type="select", columns=["COUNT(*)"])
        result = await cls.exec(spec, ctx)
        return int(result.rows[0]["count"])

    @classmethod
    async def find(
        cls: Type[T],
        spec: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
    ) -> List[T]:
        """
        Find records.

        Instances are extended with ``spec["extend"]`` when given.
        """
        ctx = ctx or Context()
        spec = dict(spec or {}, type="select")

        result = await cls.exec(spec, ctx)
        instances = [cls.from_row(row) for row in result.rows]

        return await cls.extend(instances, spec.get("extend"), ctx)

    @classmethod
    async def find_one(
        cls: Type[T],
        spec: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
    ) -> Optional[T]:
        """Find first matching record."""
        instances = await cls.find(dict(spec or {}, limit=1), ctx)
        return instances[0] if instances else None

    @classmethod
    async def find_by_id(cls: Type[T], id: Any, ctx: Optional[Context] = None) -> Optional[T]:
        """Find record by id."""
        if id is None:
            raise ArgumentsInvalidError("id argument is not supplied")

        return await cls.find_one({"where": {"id": id}}, ctx)

    @hybridmethod
    async def update(
        cls,
        spec: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
    ) -> QueryResult:
        """Update records matching ``spec["where"]`` with ``spec["values"]``."""
        return await cls.exec(dict(spec or {}, type="update"), ctx)

    @update.instancemethod
    async def update(self: T, ctx: Optional[Context] = None) -> T:
        """Update the existing record of this instance."""
        return await self.save("update", ctx)

    @hybridmethod
    async def delete(
        cls,
        spec: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
    ) -> QueryResult:
        """Delete records matching ``spec["where"]``."""
        return await cls.exec(dict(spec or {}, type="delete"), ctx)

    @delete.instancemethod
    async def delete(self, ctx: Optional[Context] = None) -> QueryResult:
        """Delete the record of this instance."""
        return await type(self).delete({"where": {"id": getattr(self, "id", None)}}, ctx)

    # Extending

    @hybridmethod
    async def extend(
        cls,
        instances: List[Any],
        properties: Union[str, Sequence[str], None],
        ctx: Optional[Context] = None,
    ) -> List[Any]:
        """
        Apply extenders to instances.

        ``properties`` is a dotted path or a list of them, e.g.
        ``["hat", "team.members.role"]``. Each top-level property is
        resolved in turn, only on instances that do not have it yet. The
        rest of a path is then applied to the resolved values, grouped by
        their model class.

        Raises:
            PropertiesInvalidError: properties is not a string or a list of strings
            ExtenderMissingError: No extender for a top-level property
            ExtendNotImplementedError: A resolved value cannot be extended
        """
        if isinstance(properties, str):
            properties = [properties]
        elif properties is not None and not (
            isinstance(properties, (list, tuple))
            and all(isinstance(p, str) for p in properties)
        ):
            raise PropertiesInvalidError(
                f"Properties must be a string or a list of strings, not {properties!r}"
            )

        if not instances or not properties:
            return instances

        ctx = ctx or Context()
        roots: List[str] = []

        for path in properties:
            root = path.split(".")[0]
            if root in roots:
                continue
            roots.append(root)

            extender = cls.extenders.get(root)
            if extender is None:
                raise ExtenderMissingError(f'{cls.__name__} has no extender for "{root}"')

            prefix = f"{root}."
            remaining = [p[len(prefix):] for p in properties if p.startswith(prefix)]

            # Instances extended earlier keep their value
            pending = [i for i in instances if root not in vars(i)]
            if pending:
                await extender(pending, remaining, ctx)

            if remaining:
                await cls._extend_related(instances, root, remaining, ctx)

        return instances

    @extend.instancemethod
    async def extend(
        self: T,
        properties: Union[str, Sequence[str], None],
        ctx: Optional[Context] = None,
    ) -> T:
        """Apply extenders to this instance."""
        await type(self).extend([self], properties, ctx)
        return self

    @classmethod
    async def _extend_related(
        cls,
        instances: List[Any],
        root: str,
        remaining: List[str],
        ctx: Context,
    ) -> None:
        related = flatten([getattr(i, root, None) for i in instances])

        groups: Dict[type, List[Any]] = {}
        seen = set()

        for value in related:
            if value is None or id(value) in seen:
                continue
            seen.add(id(value))
            groups.setdefault(type(value), []).append(value)

        for related_type, values in groups.items():
            extend = getattr(related_type, "extend", None)
            if not callable(extend):
                raise ExtendNotImplementedError(
                    f'"{root}" of {cls.__name__} is a {related_type.__name__}, which cannot be extended'
                )
            await extend(values, remaining, ctx)

    # Saving

    async def save(self: T, mode: Union[str, Context] = "upsert", ctx: Optional[Context] = None) -> T:
        """
        Save instance into the DB.

        Args:
            mode: "insert", "update" or "upsert"
            ctx: Execution context

        Raises:
            ModeInvalidError: Unknown mode
            NotFoundError: Update matched no record
        """
        if isinstance(mode, Context):
            mode, ctx = "upsert", mode

        if mode not in SAVE_MODES:
            raise ModeInvalidError(f'"{mode}" is not a valid mode')

        cls = type(self)
        ctx = ctx or Context()

        if cls.columns is None:
            await cls.refresh_columns(ctx)

        values: Dict[str, Any] = {}

        for key, value in vars(self).items():
            column = snake_case(key)
            if column not in cls.columns:
                continue
            # Stored as JSON text, not compiled as a nested spec
            values[column] = orjson.dumps(value).decode() if isinstance(value, dict) else value

        spec: Dict[str, Any] = {
            "type": "update" if mode == "update" else "insert",
            "returning": ["*"],
        }

        if mode == "update":
            if values.get("id") is None:
                raise NotFoundError(f"{cls.__name__} record without id cannot be updated")
            spec["where"] = {"id": values["id"]}

        if not values:
            # Entirely default row
            spec.update(columns=["id"], expression="VALUES (DEFAULT)")
        else:
            spec["values"] = values

            if mode == "upsert":
                spec["conflict"] = {"target": "id", "action": {"update": values}}

        result = await cls.exec(spec, ctx)

        if not result.rows:
            raise NotFoundError(f'The record with id "{values.get("id")}" is missing')

        return self.set(to_property_keys(result.rows[0]))

    async def insert(self: T, ctx: Optional[Context] = None) -> T:
        """Insert instance record into the DB."""
        return await self.save("insert", ctx)

    async def upsert(self: T, ctx: Optional[Context] = None) -> T:
        """Upsert instance record into the DB."""
        return await self.save("upsert", ctx)
