"""Relation registry shared by models and the relation resolver"""

from ..exceptions import ConfigurationError
from ..state import _MODEL_REGISTRY_PY
from .descriptors import (
    RelationAttribute,
    RelationDescriptor,
    RelationKeys,
    RelationKind,
)


class RelationRegistry:
    """Map each model class to its named relation descriptors

    Descriptors are registered once per (model, name) when model classes are
    defined and are read-only afterwards. Lookups walk the model's bases so
    subclasses inherit their parents' relations.
    """

    def __init__(self):
        self._relations: dict[type, dict[str, RelationDescriptor]] = {}

    def register(
        self, model: type, name: str, descriptor: RelationDescriptor
    ) -> None:
        """Register a relation

        Raises:
            ConfigurationError: If ``name`` is already registered on ``model``.
        """
        relations = self._relations.setdefault(model, {})
        if name in relations:
            raise ConfigurationError(
                f"Relation '{name}' is already registered on {model.__name__}"
            )
        relations[name] = descriptor

    def relations_for(self, model: type) -> dict[str, RelationDescriptor]:
        """Return every relation visible on ``model``, including inherited ones"""
        merged: dict[str, RelationDescriptor] = {}
        for klass in reversed(model.__mro__):
            merged.update(self._relations.get(klass, {}))
        return merged

    def get(self, model: type, name: str) -> RelationDescriptor:
        """Return the descriptor for ``name``

        Raises:
            ConfigurationError: If the relation is not declared on ``model``.
        """
        for klass in model.__mro__:
            descriptor = self._relations.get(klass, {}).get(name)
            if descriptor is not None:
                return descriptor
        raise ConfigurationError(f"Relation {name} not defined on {model.__name__}")

    def target_model(self, descriptor: RelationDescriptor) -> type:
        """Resolve the descriptor's target class by name

        Raises:
            ConfigurationError: If no model with that name is registered.
        """
        target = _MODEL_REGISTRY_PY.get(descriptor.target)
        if target is None:
            raise ConfigurationError(
                f"Relationship resolution failed: '{descriptor.target}' not found"
            )
        return target

    def clear(self) -> None:
        self._relations.clear()


default_registry = RelationRegistry()


def resolve_relationships(registry: RelationRegistry | None = None) -> None:
    """Check that every declared relation points at a registered model

    Raises:
        ConfigurationError: On the first relation whose target is missing.
    """
    registry = registry or default_registry
    for model, relations in list(registry._relations.items()):
        for name, descriptor in relations.items():
            try:
                registry.target_model(descriptor)
            except ConfigurationError as e:
                raise ConfigurationError(
                    f"{model.__name__}.{name}: {e}"
                ) from e


def clear_registry() -> None:
    """Forget every registered model and relation"""
    _MODEL_REGISTRY_PY.clear()
    default_registry.clear()


__all__ = [
    "RelationAttribute",
    "RelationDescriptor",
    "RelationKeys",
    "RelationKind",
    "RelationRegistry",
    "clear_registry",
    "default_registry",
    "resolve_relationships",
]
