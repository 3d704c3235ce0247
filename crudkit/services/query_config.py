from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from crudkit.schemas.query import QueryConfig

_LOG = logging.getLogger("crudkit.query")

DEFAULT_QUERY_CONFIG: Mapping[str, Mapping[str, Any]] = {
    "pagination": {
        "enabled": False,
        "page_param": "page",
        "per_param": "size",
        "default_per": 10,
        "max_per": 100,
    },
    "sorting": {
        "enabled": False,
        "sort_param": "sort",
        "default_direction": "asc",
        "allowed_fields": [],
    },
    "searching": {
        "enabled": False,
        "search_param": "q",
        "searchable_fields": [],
    },
    "filtering": {
        "enabled": False,
        "filter_param": "filter",
        "filterable_fields": [],
    },
    "meta": {
        "enabled": True,
        "rows_key": "rows",
        "total_key": "total",
    },
}


class QueryConfigError(ValueError):
    """Raised when a resource's query options cannot be resolved."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        location = ".".join(str(item) for item in err.get("loc", ()))
        parts.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return "; ".join(parts)


def merge_query_options(overrides: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Merge author overrides into a fresh copy of the defaults.

    A mapping override is merged key by key into its section; anything else
    replaces the section as is. Only one level is merged.
    """
    merged: dict[str, Any] = copy.deepcopy({key: dict(value) for key, value in DEFAULT_QUERY_CONFIG.items()})
    if overrides is None:
        return merged
    if not isinstance(overrides, Mapping):
        raise QueryConfigError("query options must be a mapping")
    for key, value in overrides.items():
        if key in merged and isinstance(value, Mapping):
            merged[key].update(copy.deepcopy(dict(value)))
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolve_query_config(overrides: Mapping[str, Any] | None = None) -> QueryConfig:
    merged = merge_query_options(overrides)
    try:
        config = QueryConfig.model_validate(merged)
    except ValidationError as exc:
        raise QueryConfigError(f"invalid query options: {_describe(exc)}", exc.errors()) from exc
    _LOG.debug(
        "query config resolved pagination=%s sorting=%s searching=%s filtering=%s meta=%s",
        config.pagination.enabled,
        config.sorting.enabled,
        config.searching.enabled,
        config.filtering.enabled,
        config.meta.enabled,
    )
    return config
