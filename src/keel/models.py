from collections.abc import Awaitable, Callable, Iterable
from types import UnionType
from typing import Any, ClassVar, Self, TypeVar, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, PrivateAttr
from pydantic_core import from_json

from .base import KeelField
from .config import ModelOptions
from .engine import transaction
from .exceptions import QueryValidationError, RelationNotLoadedError
from .metaclass import ModelMetaclass
from .query.builder import Page, Query
from .relations.resolver import DEFAULT_MAX_DEPTH, EagerLoad, RelationResolver

R = TypeVar("R")


def _is_json_annotation(annotation: Any) -> bool:
    """True for container annotations stored as JSON text"""
    origin = get_origin(annotation)
    if origin in (Union, UnionType):
        return any(
            _is_json_annotation(arg) for arg in get_args(annotation) if arg is not type(None)
        )
    target = origin or annotation
    return isinstance(target, type) and issubclass(target, (list, tuple, dict, BaseModel))


class Model(BaseModel, metaclass=ModelMetaclass):
    """
    Base class for all Keel models.

    Inherits from Pydantic's BaseModel and adds table configuration, a fluent
    query API and asynchronous persistence. Table options are passed as class
    keywords:

        class User(Model, table="users", soft_deletes=True):
            id: Annotated[int | None, KeelField(primary_key=True)] = None
            name: str
            posts: Annotated[list["Post"], HasMany()]

    Relations are not pydantic fields. Once loaded they are read as
    attributes (``user.posts``) and live in a mapping separate from the
    record's columns.
    """

    model_config = ConfigDict(
        from_attributes=True,
        use_attribute_docstrings=True,
    )

    keel_options: ClassVar[ModelOptions]
    keel_fields: ClassVar[dict[str, KeelField]]
    keel_relations: ClassVar[dict[str, Any]]

    _relations: dict[str, Any] = PrivateAttr(default_factory=dict)

    # -- relation values -------------------------------------------------

    def get_relation(self, name: str) -> Any:
        """Return a loaded relation value

        Raises:
            RelationNotLoadedError: If ``name`` has not been loaded on this record.
        """
        try:
            return self._relations[name]
        except KeyError:
            raise RelationNotLoadedError(
                f"Relation '{name}' is not loaded on {type(self).__name__}; "
                "use with_() or load() first"
            ) from None

    def set_relation(self, name: str, value: Any) -> None:
        self._relations[name] = value

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    @property
    def loaded_relations(self) -> dict[str, Any]:
        """A copy of every relation value loaded on this record"""
        return dict(self._relations)

    @classmethod
    def _hydrate(cls, row: dict[str, Any]) -> Self:
        fields = cls.model_fields
        data = {}
        for key, value in row.items():
            if key not in fields:
                continue
            # drivers hand JSON columns back as text
            if isinstance(value, (str, bytes)) and _is_json_annotation(fields[key].annotation):
                value = from_json(value)
            data[key] = value
        return cls.model_validate(data)

    @property
    def pk(self) -> Any:
        return getattr(self, self.keel_options.primary_key)

    # -- hooks -----------------------------------------------------------

    @classmethod
    async def on_validate(cls, data: dict[str, Any], is_update: bool) -> None:
        """Validate or normalise ``data`` in place before a write"""

    @classmethod
    async def before_create(cls, data: dict[str, Any]) -> None:
        pass

    @classmethod
    async def after_create(cls, data: dict[str, Any]) -> None:
        pass

    @classmethod
    async def before_update(cls, data: dict[str, Any]) -> None:
        pass

    @classmethod
    async def after_update(cls, data: dict[str, Any]) -> None:
        pass

    @classmethod
    async def before_delete(cls) -> None:
        pass

    @classmethod
    async def after_delete(cls) -> None:
        pass

    # -- class API -------------------------------------------------------

    @classmethod
    def query(cls) -> Query[Self]:
        """Start an empty query for this model"""
        return Query(cls)

    @classmethod
    def where(cls, field: Any, *args: Any) -> Query[Self]:
        """
        Start a fluent query with a condition.

        Args:
            field: A condition node captured via operator overloading
                (e.g. ``User.age >= 18``) or a field name.
            *args: Optional operator and value, as for `Query.where`.

        Returns:
            Query: A query builder object.
        """
        return cls.query().where(field, *args)

    @classmethod
    def with_(
        cls,
        relations: str | Iterable[str],
        constraints: dict[str, Callable[[Query], Any]] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> Query[Self]:
        return cls.query().with_(relations, constraints, max_depth)

    @classmethod
    def only_trashed(cls) -> Query[Self]:
        return cls.query().only_trashed()

    @classmethod
    def with_trashed(cls) -> Query[Self]:
        return cls.query().with_trashed()

    @classmethod
    async def all(cls) -> list[Self]:
        """
        Fetch all records for this model.

        Returns:
            list[Self]: A list of model instances.
        """
        return await cls.query().all()

    @classmethod
    async def get(cls, value: Any) -> Self | None:
        """
        Fetch a single record by primary key.

        Example:
            >>> user = await User.get(1)
        """
        return await cls.find(value)

    @classmethod
    async def find(cls, value: Any, key: str | None = None) -> Self | None:
        """Fetch the first record whose ``key`` column equals ``value``

        ``key`` defaults to the primary key.
        """
        return await cls.query().where(key or cls.keel_options.primary_key, value).first()

    @classmethod
    async def paginate(cls, per_page: int, page: int = 1) -> Page:
        return await cls.query().paginate(per_page, page)

    @classmethod
    async def insert(cls, data: dict[str, Any]) -> Any:
        """Insert a row from a plain dictionary and return its identifier"""
        return await cls.query().insert(data)

    @classmethod
    async def update(cls, ids: Any, data: dict[str, Any]) -> int:
        """Update the rows with the given primary key or keys"""
        return await cls.query().update(data, ids=ids)

    @classmethod
    async def destroy(cls, ids: Any) -> int:
        """Delete the rows with the given primary key or keys"""
        return await cls.query().delete(ids=ids)

    @classmethod
    async def create(cls, **kwargs) -> Self:
        """
        Create and persist a new model instance.
        """
        instance = cls(**kwargs)
        await instance.save()
        return instance

    @classmethod
    async def bulk_create(cls, instances: list[Self]) -> int:
        """
        Persist multiple model instances with a single multi-row INSERT.

        Hooks do not run and generated primary keys are not written back to
        the instances; refetch them if you need their identifiers.
        """
        if not instances:
            return 0
        pk = cls.keel_options.primary_key
        rows = [i.model_dump(exclude={pk} if i.pk is None else None) for i in instances]
        return await cls.query().insert_many(rows)

    @classmethod
    def _lookup(cls, **kwargs) -> Query[Self]:
        query = cls.query()
        for key, val in kwargs.items():
            if val is None:
                query.where_null(key)
            else:
                query.where(key, val)
        return query

    @classmethod
    async def get_or_create(
        cls, defaults: dict[str, Any] | None = None, **kwargs
    ) -> tuple[Self, bool]:
        """
        Look up an object with the given kwargs, creating one if it doesn't exist.
        """
        instance = await cls._lookup(**kwargs).first()
        if instance:
            return instance, False

        params = {**kwargs, **(defaults or {})}
        return await cls.create(**params), True

    @classmethod
    async def update_or_create(
        cls, defaults: dict[str, Any] | None = None, **kwargs
    ) -> tuple[Self, bool]:
        """
        Update an object with the given kwargs, creating one if it doesn't exist.
        """
        instance = await cls._lookup(**kwargs).first()
        if instance:
            for key, val in (defaults or {}).items():
                setattr(instance, key, val)
            await instance.save()
            return instance, False

        params = {**kwargs, **(defaults or {})}
        return await cls.create(**params), True

    @staticmethod
    async def transaction(callback: Callable[[], Awaitable[R]]) -> R:
        """Run ``callback`` inside a transaction and return its result

        Example:
            >>> await User.transaction(lambda: User.create(name="Taylor"))
        """
        async with transaction():
            return await callback()

    # -- instance API ----------------------------------------------------

    def _columns(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in type(self).model_fields}

    def _sync(self, data: dict[str, Any]) -> None:
        for key, value in data.items():
            if key in type(self).model_fields:
                setattr(self, key, value)

    async def save(self) -> None:
        """
        Persist the model instance to the database.

        Inserts when the primary key is unset. Otherwise updates the row and
        falls back to an insert when no row has that key. Timestamps and the
        generated key are written back onto the instance.
        """
        query = type(self).query()
        pk = self.keel_options.primary_key
        data = self._columns()
        if data[pk] is None:
            await query.insert(data)
            self._sync(data)
            return

        pk_value = data.pop(pk)
        if await query.update(data, ids=pk_value):
            self._sync(data)
            return
        data[pk] = pk_value
        await type(self).query().insert(data)
        self._sync(data)

    async def delete(self) -> None:
        """
        Delete the model instance's row from the database.
        """
        if self.pk is None:
            raise QueryValidationError("Cannot delete a model without a primary key")
        await type(self).query().delete(ids=self.pk)

    async def force_delete(self) -> None:
        """Delete the row even when soft deletes are enabled"""
        await self.delete()

    async def soft_delete(self) -> None:
        """
        Mark the row as deleted by stamping its deleted-at column.

        Raises:
            ConfigurationError: If soft deletes are not enabled for this model.
        """
        column = self.keel_options.require_soft_deletes()
        if self.pk is None:
            raise QueryValidationError("Cannot soft delete a model without a primary key")
        await type(self).query().soft_delete(ids=self.pk)
        await self._refresh_column(column)

    async def restore(self) -> None:
        """Clear the deleted-at column of a soft-deleted row"""
        column = self.keel_options.require_soft_deletes()
        if self.pk is None:
            raise QueryValidationError("Cannot restore a model without a primary key")
        await type(self).query().restore(ids=self.pk)
        await self._refresh_column(column)

    async def _refresh_column(self, column: str) -> None:
        if column in type(self).model_fields:
            await self.refresh()

    @property
    def trashed(self) -> bool:
        column = self.keel_options.deleted_at
        return bool(
            self.keel_options.soft_deletes and column and getattr(self, column, None)
        )

    async def refresh(self) -> None:
        """
        Reload the model instance's fields from the database.

        Loaded relations are kept.

        Raises:
            QueryValidationError: If the instance has no primary key.
            LookupError: If the row no longer exists.
        """
        if self.pk is None:
            raise QueryValidationError("Cannot refresh a model without a primary key")

        fresh = await type(self).find(self.pk)
        if fresh is None:
            raise LookupError(
                f"Instance not found in database: {type(self).__name__}({self.pk})"
            )
        self._sync(fresh._columns())

    async def load(
        self,
        *relations: str,
        constraints: dict[str, Callable[[Query], Any]] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> Self:
        """Eager load relations onto this record and return it

        Example:
            >>> user = await User.get(1)
            >>> await user.load("posts.comments")
            >>> user.posts[0].comments
        """
        request = EagerLoad(list(relations), constraints, max_depth)
        await RelationResolver().load(type(self), [self], request)
        return self


__all__ = ["Model"]
