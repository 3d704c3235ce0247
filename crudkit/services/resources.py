from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from sqlalchemy import String
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Query, Session

from crudkit.schemas.query import QueryConfig
from crudkit.services.query_config import QueryConfigError, resolve_query_config

_LOG = logging.getLogger("crudkit.resources")


class LifecycleHook(str, Enum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"


# Hooks receive the session and the row being written. A BEFORE hook that
# returns False cancels the write.
HookFn = Callable[[Session, Any], Any]
CollectionFn = Callable[[Session], Query]


class ResourceNotFound(KeyError):
    pass


@dataclass(frozen=True)
class ResourceDefinition:
    name: str
    model: type
    query_config: QueryConfig
    permitted_fields: frozenset[str]
    index_fields: tuple[str, ...] | None = None
    show_fields: tuple[str, ...] | None = None
    hooks: Mapping[LifecycleHook, HookFn] = field(default_factory=lambda: MappingProxyType({}))
    collection: CollectionFn | None = None

    def base_query(self, db: Session) -> Query:
        if self.collection is not None:
            return self.collection(db)
        return db.query(self.model)

    def run_hook(self, hook: LifecycleHook, db: Session, row: Any) -> bool:
        fn = self.hooks.get(hook)
        if fn is None:
            return True
        result = fn(db, row)
        return result is not False


def _column_names(model: type) -> set[str]:
    return {prop.key for prop in sa_inspect(model).column_attrs}


def _primary_key_names(model: type) -> set[str]:
    return {column.key for column in sa_inspect(model).primary_key}


def _non_text_columns(model: type, fields: Iterable[str]) -> list[str]:
    # Searching uses ILIKE, which only string columns support.
    props = {prop.key: prop for prop in sa_inspect(model).column_attrs}
    return sorted(name for name in fields if not isinstance(props[name].columns[0].type, String))


def _as_field_tuple(name: str, model: type, fields: Iterable[str] | None) -> tuple[str, ...] | None:
    if fields is None:
        return None
    if isinstance(fields, str):
        raise QueryConfigError(f"{name} for {model.__name__} must be a list of field names")
    values = tuple(fields)
    unknown = sorted(set(values) - _column_names(model))
    if unknown:
        raise QueryConfigError(f"{name} for {model.__name__} has unknown fields: " + ", ".join(unknown))
    return values


def _validate_hooks(hooks: Mapping[Any, HookFn] | None) -> Mapping[LifecycleHook, HookFn]:
    resolved: dict[LifecycleHook, HookFn] = {}
    for key, fn in (hooks or {}).items():
        try:
            hook = LifecycleHook(key)
        except ValueError:
            raise QueryConfigError(f"unknown lifecycle hook: {key!r}") from None
        if not callable(fn):
            raise QueryConfigError(f"lifecycle hook {hook.value} is not callable")
        resolved[hook] = fn
    return MappingProxyType(resolved)


class ResourceRegistry:
    """Resource definitions keyed by resource name, built once at startup."""

    def __init__(self) -> None:
        self._resources: dict[str, ResourceDefinition] = {}

    def register(
        self,
        name: str,
        model: type,
        *,
        permitted_fields: Iterable[str],
        query: Mapping[str, Any] | None = None,
        index_fields: Iterable[str] | None = None,
        show_fields: Iterable[str] | None = None,
        hooks: Mapping[Any, HookFn] | None = None,
        collection: CollectionFn | None = None,
    ) -> ResourceDefinition:
        if not name or "/" in name:
            raise QueryConfigError(f"invalid resource name: {name!r}")
        if name in self._resources:
            raise QueryConfigError(f"resource already registered: {name}")

        config = resolve_query_config(query)
        columns = _column_names(model)
        unknown = sorted(config.field_names() - columns)
        if unknown:
            raise QueryConfigError(f"query options for {name} reference unknown fields: " + ", ".join(unknown))
        not_text = _non_text_columns(model, config.searching.searchable_fields)
        if not_text:
            raise QueryConfigError(f"searchable_fields for {name} must be string columns: " + ", ".join(not_text))

        permitted = _as_field_tuple("permitted_fields", model, permitted_fields) or ()
        primary_keys = sorted(set(permitted) & _primary_key_names(model))
        if primary_keys:
            raise QueryConfigError(f"permitted_fields for {name} include primary key: " + ", ".join(primary_keys))

        definition = ResourceDefinition(
            name=name,
            model=model,
            query_config=config,
            permitted_fields=frozenset(permitted),
            index_fields=_as_field_tuple("index_fields", model, index_fields),
            show_fields=_as_field_tuple("show_fields", model, show_fields),
            hooks=_validate_hooks(hooks),
            collection=collection,
        )
        self._resources[name] = definition
        _LOG.info("resource registered name=%s model=%s", name, model.__name__)
        return definition

    def get(self, name: str) -> ResourceDefinition:
        try:
            return self._resources[name]
        except KeyError:
            raise ResourceNotFound(name) from None

    def names(self) -> list[str]:
        return list(self._resources)

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    def __iter__(self) -> Iterator[ResourceDefinition]:
        return iter(list(self._resources.values()))

    def __len__(self) -> int:
        return len(self._resources)
