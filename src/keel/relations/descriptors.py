from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict


class RelationKind(str, Enum):
    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"
    BELONGS_TO = "belongsTo"
    BELONGS_TO_MANY = "belongsToMany"


class RelationKeys(NamedTuple):
    """Key names of one relation with every default filled in

    For belongsTo, ``local_key`` is the owner key on the target.
    ``pivot_table`` and ``related_key`` are only set for belongsToMany.
    """

    foreign_key: str
    local_key: str
    pivot_table: str | None = None
    related_key: str | None = None


class RelationDescriptor(BaseModel):
    """Immutable description of how a model relates to a target model"""

    model_config = ConfigDict(frozen=True)

    kind: RelationKind
    target: str
    foreign_key: str | None = None
    local_key: str | None = None
    pivot_table: str | None = None
    related_key: str | None = None

    @property
    def is_plural(self) -> bool:
        return self.kind in (RelationKind.HAS_MANY, RelationKind.BELONGS_TO_MANY)

    def resolve_keys(self, owner: type, target: type) -> RelationKeys:
        """Fill in the key names left out of the declaration

        Args:
            owner: The model class declaring the relation.
            target: The related model class.

        Examples:
            >>> RelationDescriptor(kind="hasMany", target="Post").resolve_keys(User, Post)
            RelationKeys(foreign_key='user_id', local_key='id', pivot_table=None, related_key=None)
        """
        owner_name = owner.__name__.lower()
        target_name = target.__name__.lower()
        owner_pk = owner.keel_options.primary_key
        target_pk = target.keel_options.primary_key

        if self.kind is RelationKind.BELONGS_TO:
            return RelationKeys(
                foreign_key=self.foreign_key or f"{target_name}_id",
                local_key=self.local_key or target_pk,
            )
        if self.kind is RelationKind.BELONGS_TO_MANY:
            return RelationKeys(
                foreign_key=self.foreign_key or f"{owner_name}_id",
                local_key=self.local_key or owner_pk,
                pivot_table=self.pivot_table or f"{owner_name}_{target_name}",
                related_key=self.related_key or f"{target_name}_id",
            )
        return RelationKeys(
            foreign_key=self.foreign_key or f"{owner_name}_id",
            local_key=self.local_key or owner_pk,
        )


class RelationAttribute:
    """Descriptor exposing a loaded relation as an attribute on records

    Reading a relation that was never loaded raises
    :class:`RelationNotLoadedError`; load it with ``Query.with_()`` or
    ``Model.load()`` first.
    """

    def __init__(self, name: str):
        self.name = name

    def __get__(self, instance: Any, owner: type) -> Any:
        if instance is None:
            return self
        return instance.get_relation(self.name)

    def __repr__(self):
        return f"RelationAttribute(name={self.name!r})"
