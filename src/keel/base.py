from typing import Any

from .relations.descriptors import RelationDescriptor, RelationKind


class KeelField:
    """
    Metadata container for Keel-specific column configuration.

    Used within `typing.Annotated` to mark the primary key and the columns
    that `create_tables()` should index or constrain.
    """

    def __init__(
        self,
        primary_key: bool = False,
        unique: bool = False,
        index: bool = False,
    ):
        """
        Initialize Keel field metadata.

        Args:
            primary_key: Whether this field is the primary key.
            unique: Whether to enforce a uniqueness constraint.
            index: Whether to create a database index for this column.
        """
        self.primary_key = primary_key
        self.unique = unique
        self.index = index


class Relation:
    """
    Base class for relationship metadata declared with `typing.Annotated`.

    The annotated type names the target model, either as a class, a string,
    or a list of either:

        posts: Annotated[list["Post"], HasMany()]
    """

    kind: RelationKind

    def __init__(
        self,
        foreign_key: str | None = None,
        local_key: str | None = None,
        pivot_table: str | None = None,
        related_key: str | None = None,
    ):
        self.to: Any = None  # Resolved by the metaclass
        self.foreign_key = foreign_key
        self.local_key = local_key
        self.pivot_table = pivot_table
        self.related_key = related_key

    def describe(self, target_name: str) -> RelationDescriptor:
        """Freeze this declaration into a registry descriptor"""
        return RelationDescriptor(
            kind=self.kind,
            target=target_name,
            foreign_key=self.foreign_key,
            local_key=self.local_key,
            pivot_table=self.pivot_table,
            related_key=self.related_key,
        )


class HasOne(Relation):
    """
    The target holds a foreign key pointing back at this model; at most one
    target row per parent.

    Args:
        foreign_key: Column on the target. Defaults to ``<this model>_id``.
        local_key: Column on this model. Defaults to its primary key.
    """

    kind = RelationKind.HAS_ONE

    def __init__(self, foreign_key: str | None = None, local_key: str | None = None):
        super().__init__(foreign_key=foreign_key, local_key=local_key)


class HasMany(Relation):
    """
    Like `HasOne`, but every matching target row is loaded.
    """

    kind = RelationKind.HAS_MANY

    def __init__(self, foreign_key: str | None = None, local_key: str | None = None):
        super().__init__(foreign_key=foreign_key, local_key=local_key)


class BelongsTo(Relation):
    """
    This model holds the foreign key.

    Args:
        foreign_key: Column on this model. Defaults to ``<target>_id`` and is
            added as an optional field when the model does not declare it.
        owner_key: Column on the target. Defaults to its primary key.
    """

    kind = RelationKind.BELONGS_TO

    def __init__(self, foreign_key: str | None = None, owner_key: str | None = None):
        super().__init__(foreign_key=foreign_key, local_key=owner_key)


class BelongsToMany(Relation):
    """
    Many-to-many link through a pivot table.

    Args:
        pivot_table: Defaults to ``<this model>_<target>``.
        foreign_key: Pivot column pointing at this model. Defaults to
            ``<this model>_id``.
        related_key: Pivot column pointing at the target. Defaults to
            ``<target>_id``.
        local_key: Column on this model matched against the pivot.
            Defaults to the primary key.
    """

    kind = RelationKind.BELONGS_TO_MANY

    def __init__(
        self,
        pivot_table: str | None = None,
        foreign_key: str | None = None,
        related_key: str | None = None,
        local_key: str | None = None,
    ):
        super().__init__(
            foreign_key=foreign_key,
            local_key=local_key,
            pivot_table=pivot_table,
            related_key=related_key,
        )
