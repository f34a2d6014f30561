"""SQLAlchemy metadata for registered models and table creation"""

import logging
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy.dialects import mysql, sqlite
from sqlalchemy.schema import CreateIndex, CreateTable

from ..dialect import Dialect
from ..engine import get_driver, run_execute
from ..relations import default_registry, resolve_relationships
from ..relations.descriptors import RelationKind
from ..state import _MODEL_REGISTRY_PY

logger = logging.getLogger(__name__)

_SA_DIALECTS = {
    Dialect.SQLITE: sqlite.dialect,
    Dialect.MYSQL: mysql.dialect,
}


def get_metadata() -> sa.MetaData:
    """
    Generate a SQLAlchemy MetaData object representing all registered Keel
    models and the pivot tables of their belongsToMany relations.

    It can also be handed to alembic's env.py for autogenerate support.
    """
    resolve_relationships()
    metadata = sa.MetaData()

    for model_cls in _MODEL_REGISTRY_PY.values():
        if model_cls.keel_options.table in metadata.tables:
            logger.warning(
                "Skipping %s: table %s is already mapped",
                model_cls.__name__,
                model_cls.keel_options.table,
            )
            continue
        schema = model_cls.model_json_schema()
        _enrich_schema_with_keel_metadata(model_cls, schema)
        _build_sa_table(metadata, model_cls.keel_options.table, schema)

    for model_cls in _MODEL_REGISTRY_PY.values():
        for descriptor in default_registry.relations_for(model_cls).values():
            if descriptor.kind is not RelationKind.BELONGS_TO_MANY:
                continue
            target = default_registry.target_model(descriptor)
            keys = descriptor.resolve_keys(model_cls, target)
            if keys.pivot_table in metadata.tables:
                continue
            sa.Table(
                keys.pivot_table,
                metadata,
                sa.Column(keys.foreign_key, sa.Integer(), nullable=False, index=True),
                sa.Column(keys.related_key, sa.Integer(), nullable=False, index=True),
            )

    return metadata


def _resolve_ref(schema: Dict[str, Any], col_info: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve $ref in JSON schema if present."""
    if "$ref" in col_info:
        ref_path = col_info["$ref"]
        if ref_path.startswith("#/$defs/"):
            def_name = ref_path.split("/")[-1]
            return schema.get("$defs", {}).get(def_name, col_info)
    return col_info


def _enrich_schema_with_keel_metadata(model_cls, schema: Dict[str, Any]) -> None:
    """Mark primary key, unique, index and foreign-key columns in the schema."""
    properties = schema.get("properties", {})
    pk = model_cls.keel_options.primary_key
    if pk in properties:
        properties[pk]["primary_key"] = True

    for f_name, metadata in model_cls.keel_fields.items():
        if f_name in properties:
            properties[f_name]["unique"] = metadata.unique
            properties[f_name]["index"] = metadata.index

    for descriptor in default_registry.relations_for(model_cls).values():
        if descriptor.kind is not RelationKind.BELONGS_TO:
            continue
        target = default_registry.target_model(descriptor)
        keys = descriptor.resolve_keys(model_cls, target)
        if keys.foreign_key in properties:
            properties[keys.foreign_key]["foreign_key"] = (
                f"{target.keel_options.table}.{keys.local_key}"
            )


def _build_sa_table(metadata: sa.MetaData, table_name: str, schema: Dict[str, Any]):
    """Build a SQLAlchemy Table object from a model's JSON schema."""
    columns = []
    required_fields = schema.get("required", [])

    for col_name, col_info in schema.get("properties", {}).items():
        col_info = _resolve_ref(schema, col_info)
        sa_type = _map_to_sa_type(schema, col_info)

        is_nullable = col_name not in required_fields
        if "anyOf" in col_info:
            is_nullable = any(item.get("type") == "null" for item in col_info["anyOf"])
        elif col_info.get("type") == "null":
            is_nullable = True

        kwargs = {
            "primary_key": col_info.get("primary_key", False),
            "nullable": is_nullable and not col_info.get("primary_key", False),
            "unique": col_info.get("unique", False) or None,
            "index": col_info.get("index", False) or None,
        }

        args = [col_name, sa_type]
        if "foreign_key" in col_info:
            args.append(sa.ForeignKey(col_info["foreign_key"]))

        columns.append(sa.Column(*args, **kwargs))

    sa.Table(table_name, metadata, *columns)


def _map_to_sa_type(
    schema: Dict[str, Any], col_info: Dict[str, Any]
) -> sa.types.TypeEngine:
    """Map JSON schema types to SQLAlchemy types."""
    col_info = _resolve_ref(schema, col_info)

    json_type = col_info.get("type")
    format = col_info.get("format")
    enum_values = col_info.get("enum")

    # Optional types and enums arrive as anyOf
    if "anyOf" in col_info:
        for item in col_info["anyOf"]:
            item = _resolve_ref(schema, item)
            if item.get("type") != "null":
                json_type = item.get("type")
                format = item.get("format")
                enum_values = item.get("enum") or enum_values
                break

    if enum_values:
        return sa.Enum(*[str(v) for v in enum_values], native_enum=False)

    if json_type == "integer":
        return sa.Integer()
    elif json_type == "string":
        if format == "date-time":
            return sa.DateTime()
        elif format == "date":
            return sa.Date()
        elif format == "time":
            return sa.Time()
        elif format == "uuid":
            return sa.String(36)
        elif format == "decimal":
            return sa.Numeric()
        return sa.String(255)
    elif json_type == "boolean":
        return sa.Boolean()
    elif json_type == "number":
        return sa.Float()
    elif json_type in ("object", "array"):
        return sa.JSON()

    return sa.String(255)


async def create_tables() -> None:
    """
    Create every table in `get_metadata()` that does not exist yet, using
    DDL compiled for the connected database.
    """
    driver = get_driver()
    dialect = _SA_DIALECTS[driver.dialect]()
    metadata = get_metadata()

    for table in metadata.sorted_tables:
        ddl = CreateTable(table, if_not_exists=True).compile(dialect=dialect)
        await run_execute(str(ddl).strip())
        for index in sorted(table.indexes, key=lambda i: i.name or ""):
            ddl = CreateIndex(index, if_not_exists=True).compile(dialect=dialect)
            await run_execute(str(ddl).strip())
        logger.debug("Ensured table %s", table.name)


__all__ = ["create_tables", "get_metadata"]
