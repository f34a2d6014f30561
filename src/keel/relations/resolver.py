"""Batched, N+1-safe loading of declared relations

For each relation requested at one nesting level the resolver issues a
single batch query (two for belongsToMany: pivot, then targets), maps the
results by key, grafts them onto the parent records, then recurses into
dotted paths with the flattened children as the next batch of parents.
"""

import hashlib
import logging
from collections.abc import Callable, Iterable
from typing import Any

from ..engine import run_query
from ..exceptions import QueryValidationError
from ..query.compiler import compile_select
from ..query.nodes import InList
from . import RelationRegistry, default_registry
from .descriptors import RelationDescriptor, RelationKeys, RelationKind

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3


class EagerLoad:
    """A request to load relations on the records of the next fetch

    Attributes:
        paths: Relation paths; ``"posts.comments"`` loads ``posts`` and then
            ``comments`` on every loaded post.
        constraints: Callables keyed by full dotted path, applied to the
            target query before its batch is fetched.
        max_depth: Maximum number of nesting levels loaded.

    Examples:
        >>> request = EagerLoad("posts.comments", {"posts": lambda q: q.where("published", True)})
        >>> request.paths
        ['posts.comments']
    """

    def __init__(
        self,
        paths: str | Iterable[str],
        constraints: dict[str, Callable[[Any], Any]] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        if isinstance(paths, str):
            paths = [paths]
        self.paths: list[str] = []
        for path in paths:
            path = path.strip()
            if not path or any(not part for part in path.split(".")):
                raise QueryValidationError(f"Invalid relation path: {path!r}")
            if path not in self.paths:
                self.paths.append(path)
        if max_depth < 0:
            raise QueryValidationError("max_depth must be non-negative")
        self.constraints = dict(constraints or {})
        self.max_depth = max_depth

    def __repr__(self):
        return f"EagerLoad(paths={self.paths!r}, max_depth={self.max_depth!r})"


def _distinct(values: Iterable[Any]) -> list[Any]:
    seen = set()
    out = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def _split_paths(paths: Iterable[str]) -> dict[str, list[str]]:
    """Group paths by their first segment, keeping the nested suffixes"""
    plan: dict[str, list[str]] = {}
    for path in paths:
        head, _, rest = path.partition(".")
        nested = plan.setdefault(head, [])
        if rest and rest not in nested:
            nested.append(rest)
    return plan


class RelationResolver:
    """Resolve eager-load requests against a relation registry"""

    def __init__(self, registry: RelationRegistry | None = None):
        self.registry = registry or default_registry

    async def load(
        self, model_cls: type, parents: list[Any], request: EagerLoad
    ) -> None:
        """Load ``request`` onto ``parents`` in place

        Every relation name along every path is checked before the first
        query so that a typo fails without partial results.

        Raises:
            ConfigurationError: If a path names an undeclared relation.
        """
        self.validate(model_cls, request.paths)
        await self._load_level(model_cls, parents, request.paths, request, 0, (), set())

    def validate(self, model_cls: type, paths: Iterable[str]) -> None:
        """Check that every segment of every path names a declared relation

        Raises:
            ConfigurationError: On the first undeclared relation.
        """
        for name, nested in _split_paths(paths).items():
            descriptor = self.registry.get(model_cls, name)
            if nested:
                self.validate(self.registry.target_model(descriptor), nested)

    @staticmethod
    def _seen_key(
        prefix: tuple[str, ...], model_cls: type, parents: list[Any], paths: list[str]
    ) -> tuple[Any, ...]:
        """Identify one batch at one position of the path tree

        Sibling branches that reach the same rows hold different instances,
        so the dotted prefix is part of the key.
        """
        pk = model_cls.keel_options.primary_key
        ids = sorted(repr(getattr(p, pk, None)) for p in parents)
        digest = hashlib.sha256("\x1f".join(ids).encode()).hexdigest()
        return (prefix, model_cls, digest, tuple(sorted(paths)))

    async def _load_level(
        self,
        model_cls: type,
        parents: list[Any],
        paths: list[str],
        request: EagerLoad,
        depth: int,
        prefix: tuple[str, ...],
        seen: set[tuple[Any, ...]],
    ) -> None:
        if not parents or depth >= request.max_depth:
            return
        key = self._seen_key(prefix, model_cls, parents, paths)
        if key in seen:
            logger.debug("Skipping already loaded batch %s on %s", paths, model_cls.__name__)
            return
        seen.add(key)

        for name, nested in _split_paths(paths).items():
            descriptor = self.registry.get(model_cls, name)
            target = self.registry.target_model(descriptor)
            keys = descriptor.resolve_keys(model_cls, target)
            full_path = ".".join((*prefix, name))

            await self._load_relation(
                parents, name, descriptor, keys, target, request.constraints.get(full_path)
            )

            if nested:
                children = self._collect_children(parents, name)
                await self._load_level(
                    target, children, nested, request, depth + 1, (*prefix, name), seen
                )

    async def _load_relation(
        self,
        parents: list[Any],
        name: str,
        descriptor: RelationDescriptor,
        keys: RelationKeys,
        target: type,
        constraint: Callable[[Any], Any] | None,
    ) -> None:
        if descriptor.kind is RelationKind.HAS_ONE:
            await self._load_has(parents, name, keys, target, constraint, many=False)
        elif descriptor.kind is RelationKind.HAS_MANY:
            await self._load_has(parents, name, keys, target, constraint, many=True)
        elif descriptor.kind is RelationKind.BELONGS_TO:
            await self._load_belongs_to(parents, name, keys, target, constraint)
        else:
            await self._load_belongs_to_many(parents, name, keys, target, constraint)

    @staticmethod
    async def _fetch_targets(
        target: type,
        column: str,
        values: list[Any],
        constraint: Callable[[Any], Any] | None,
    ) -> list[Any]:
        query = target.query()
        if constraint is not None:
            constraint(query)
        return await query.where_in(column, values).all()

    async def _load_has(
        self,
        parents: list[Any],
        name: str,
        keys: RelationKeys,
        target: type,
        constraint: Callable[[Any], Any] | None,
        many: bool,
    ) -> None:
        parent_ids = _distinct(getattr(p, keys.local_key) for p in parents)
        related_map: dict[Any, Any] = {}
        if parent_ids:
            query = target.query()
            if constraint is not None:
                constraint(query)
            state = query.where_in(keys.foreign_key, parent_ids)._take_state()
            compiled = query._compile_select(state)
            related = []
            # group on the raw column; the target may not declare the key field
            for row in await run_query(compiled.sql, compiled.params):
                fk = row.get(keys.foreign_key)
                model = target._hydrate(row)
                related.append(model)
                if many:
                    related_map.setdefault(fk, []).append(model)
                elif fk not in related_map:
                    related_map[fk] = model
            if state.eager_load is not None and related:
                await self.load(target, related, state.eager_load)

        for parent in parents:
            value = related_map.get(getattr(parent, keys.local_key))
            if many:
                parent.set_relation(name, list(value) if value else [])
            else:
                parent.set_relation(name, value)

    async def _load_belongs_to(
        self,
        parents: list[Any],
        name: str,
        keys: RelationKeys,
        target: type,
        constraint: Callable[[Any], Any] | None,
    ) -> None:
        foreign_ids = _distinct(getattr(p, keys.foreign_key, None) for p in parents)
        related_map: dict[Any, Any] = {}
        if foreign_ids:
            related = await self._fetch_targets(
                target, keys.local_key, foreign_ids, constraint
            )
            for model in related:
                related_map.setdefault(getattr(model, keys.local_key), model)

        for parent in parents:
            parent.set_relation(
                name, related_map.get(getattr(parent, keys.foreign_key, None))
            )

    async def _load_belongs_to_many(
        self,
        parents: list[Any],
        name: str,
        keys: RelationKeys,
        target: type,
        constraint: Callable[[Any], Any] | None,
    ) -> None:
        parent_ids = _distinct(getattr(p, keys.local_key) for p in parents)
        related_ids: dict[Any, list[Any]] = {}
        if parent_ids:
            pivot = compile_select(
                keys.pivot_table,
                [InList(keys.foreign_key, parent_ids)],
                columns=[keys.foreign_key, keys.related_key],
            )
            for row in await run_query(pivot.sql, pivot.params):
                related_ids.setdefault(row[keys.foreign_key], []).append(
                    row[keys.related_key]
                )

        all_ids = _distinct(i for ids in related_ids.values() for i in ids)
        models_by_id: dict[Any, Any] = {}
        if all_ids:
            target_pk = target.keel_options.primary_key
            related = await self._fetch_targets(target, target_pk, all_ids, constraint)
            models_by_id = {getattr(model, target_pk): model for model in related}

        for parent in parents:
            ids = related_ids.get(getattr(parent, keys.local_key), [])
            parent.set_relation(
                name, [models_by_id[i] for i in ids if i in models_by_id]
            )

    @staticmethod
    def _collect_children(parents: list[Any], name: str) -> list[Any]:
        """Flatten the loaded values of ``name`` into one batch of records"""
        children = []
        seen_ids = set()
        for parent in parents:
            value = parent.get_relation(name)
            items = value if isinstance(value, list) else [value]
            for item in items:
                if item is not None and id(item) not in seen_ids:
                    seen_ids.add(id(item))
                    children.append(item)
        return children
