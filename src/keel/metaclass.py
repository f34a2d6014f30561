from types import UnionType
from typing import (
    Annotated,
    Any,
    ClassVar,
    ForwardRef,
    Union,
    get_args,
    get_origin,
)

from pydantic import BaseModel
from pydantic import Field as PydanticField

from .base import BelongsTo, KeelField, Relation
from .config import MODEL_OPTION_KEYS, ModelOptions
from .exceptions import ConfigurationError
from .query.nodes import FieldProxy
from .relations import default_registry
from .relations.descriptors import RelationAttribute
from .state import _MODEL_REGISTRY_PY


class ModelMetaclass(type(BaseModel)):
    """
    Metaclass for Keel models: reads table options and relation metadata,
    and registers the model with the model and relation registries.
    """

    def __new__(mcs, name, bases, namespace, **kwargs):
        # Phase 1: Option and annotation processing
        declared = {k: kwargs.pop(k) for k in list(kwargs) if k in MODEL_OPTION_KEYS}
        abstract = kwargs.pop("abstract", False)

        annotations = mcs._resolve_deferred_annotations(namespace)
        namespace["__annotations__"] = annotations

        local_relations = mcs._scan_relationship_annotations(annotations)
        mcs._inject_shadow_fields(annotations, namespace, bases, local_relations)
        mcs._prepare_namespace_for_pydantic(namespace, annotations, local_relations)

        # Phase 2: Class creation
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)

        # Phase 3: Post-creation setup
        inherited = {}
        for base in reversed(cls.__mro__[1:]):
            inherited.update(getattr(base, "__keel_declared_options__", {}))
        # Table names are never inherited
        inherited.pop("table", None)
        cls.__keel_declared_options__ = {**inherited, **declared}
        cls.__keel_abstract__ = abstract

        if name == "Model" or abstract:
            return cls

        keel_fields = mcs._parse_keel_field_metadata(cls)
        cls.keel_fields = keel_fields
        cls.keel_options = mcs._build_options(cls, name, keel_fields)
        cls.keel_relations = local_relations

        _MODEL_REGISTRY_PY[name] = cls
        mcs._register_relations(cls, local_relations)
        return cls

    def __getattr__(cls, item: str) -> Any:
        # User.age >= 18; only fields collected on this very class count
        fields = cls.__dict__.get("__pydantic_fields__")
        if fields and item in fields:
            return FieldProxy(item)
        return super().__getattr__(item)

    @staticmethod
    def _resolve_deferred_annotations(namespace: dict) -> dict[str, Any]:
        """
        Resolve deferred annotations (PEP 649) if present.

        Returns:
            Dictionary of resolved annotations
        """
        if "__annotations__" in namespace:
            return namespace["__annotations__"]
        for key in ("__annotate_func__", "__annotate__"):
            annotate = namespace.get(key)
            if not callable(annotate):
                continue
            try:
                # Format 1: Value (evaluated)
                return dict(annotate(1))
            except NameError:
                # Only reachable on interpreters with deferred annotations
                import annotationlib

                return dict(
                    annotationlib.call_annotate_function(
                        annotate, annotationlib.Format.FORWARDREF
                    )
                )
        return {}

    @staticmethod
    def _target_name(hint: Any) -> str:
        """Name of the model a relation annotation points at"""
        origin = get_origin(hint)
        if origin in (list, tuple, set):
            args = get_args(hint)
            if not args:
                raise ConfigurationError(f"Cannot determine relation target from {hint!r}")
            return ModelMetaclass._target_name(args[0])
        if origin in (Union, UnionType):
            args = [a for a in get_args(hint) if a is not type(None)]
            if len(args) != 1:
                raise ConfigurationError(f"Cannot determine relation target from {hint!r}")
            return ModelMetaclass._target_name(args[0])
        if isinstance(hint, ForwardRef):
            return hint.__forward_arg__
        if isinstance(hint, str):
            return hint.strip("'\"")
        if isinstance(hint, type):
            return hint.__name__
        raise ConfigurationError(f"Cannot determine relation target from {hint!r}")

    @staticmethod
    def _scan_relationship_annotations(annotations: dict) -> dict[str, Relation]:
        """
        Scan annotations for relation metadata (HasOne, HasMany, BelongsTo,
        BelongsToMany).

        Returns:
            Relation metadata keyed by attribute name
        """
        local_relations = {}
        for field_name, hint in list(annotations.items()):
            if get_origin(hint) is not Annotated:
                continue
            args = get_args(hint)
            for metadata in args[1:]:
                if isinstance(metadata, Relation):
                    metadata.to = ModelMetaclass._target_name(args[0])
                    local_relations[field_name] = metadata
                    break
        return local_relations

    @staticmethod
    def _inject_shadow_fields(
        annotations: dict, namespace: dict, bases: tuple, local_relations: dict
    ) -> None:
        """
        Add the foreign-key column of every BelongsTo that the model does not
        declare itself.

        Mutates annotations and namespace in place.
        """
        inherited = set()
        for base in bases:
            inherited.update(getattr(base, "model_fields", {}))

        for metadata in local_relations.values():
            if not isinstance(metadata, BelongsTo):
                continue
            id_field = metadata.foreign_key or f"{metadata.to.lower()}_id"
            if id_field in annotations or id_field in inherited:
                continue
            annotations[id_field] = Union[int, str, None]
            namespace[id_field] = PydanticField(default=None)

    @staticmethod
    def _prepare_namespace_for_pydantic(
        namespace: dict, annotations: dict, local_relations: dict
    ) -> None:
        """
        Hide relation attributes from Pydantic by converting them to ClassVars.

        Mutates namespace and annotations in place.
        """
        for field_name in local_relations:
            annotations[field_name] = ClassVar[Any]
            namespace.pop(field_name, None)

        # Pydantic must read the rewritten __annotations__, not the lazy function
        namespace.pop("__annotate_func__", None)
        namespace.pop("__annotate__", None)

    @staticmethod
    def _parse_keel_field_metadata(cls) -> dict[str, KeelField]:
        """
        Parse KeelField metadata from Annotated declarations.

        Raises:
            TypeError: If KeelField is declared twice for the same field
        """
        keel_fields = {}
        for f_name, field_info in cls.model_fields.items():
            found = [m for m in field_info.metadata if isinstance(m, KeelField)]
            if len(found) > 1:
                raise TypeError(f"Field '{f_name}' declares KeelField metadata twice")
            if found:
                keel_fields[f_name] = found[0]
        return keel_fields

    @staticmethod
    def _build_options(cls, name: str, keel_fields: dict) -> ModelOptions:
        """
        Build the model's table options from class keywords and field metadata.

        Raises:
            ConfigurationError: If the table name is empty, the primary key is
                not a declared field, or no field is allowed.
        """
        declared = dict(cls.__keel_declared_options__)
        field_names = tuple(cls.model_fields)

        primary_keys = [f for f, meta in keel_fields.items() if meta.primary_key]
        if len(primary_keys) > 1:
            raise ConfigurationError(f"{name} declares more than one primary key")
        if "primary_key" not in declared and primary_keys:
            declared["primary_key"] = primary_keys[0]

        declared.setdefault("table", name.lower())
        declared.setdefault("allowed_fields", field_names)
        options = ModelOptions(**declared)

        if not options.table.strip():
            raise ConfigurationError(f"{name} has an empty table name")
        if options.primary_key not in cls.model_fields:
            raise ConfigurationError(
                f"Primary key '{options.primary_key}' is not a field of {name}"
            )
        if not options.allowed_fields:
            raise ConfigurationError(f"{name} has no allowed fields")
        unknown = [f for f in options.allowed_fields if f not in cls.model_fields]
        if unknown:
            raise ConfigurationError(
                f"Allowed fields {unknown} are not fields of {name}"
            )
        return options

    @staticmethod
    def _register_relations(cls, local_relations: dict) -> None:
        """
        Register relation descriptors and expose each relation as an
        attribute that reads the loaded value.
        """
        for field_name, metadata in local_relations.items():
            default_registry.register(cls, field_name, metadata.describe(metadata.to))
            setattr(cls, field_name, RelationAttribute(field_name))
