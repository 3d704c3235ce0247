from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import String, asc, column as sa_column, desc, or_
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Query
from sqlalchemy.types import NullType

from crudkit.schemas.query import FILTER_OPERATORS, FilterCondition, QueryConfig
from crudkit.services.coercion import coerce_value

_LOG = logging.getLogger("crudkit.query")

SET_OPERATORS = {"in", "nin"}
ORDERED_OPERATORS = {"gt", "gte", "lt", "lte"}

# Largest OFFSET a signed 64-bit store integer can hold.
MAX_OFFSET = 2**63 - 1
_INT_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class QueryResult:
    collection: Query
    metadata: dict[str, int] | None


def _query_entity(query: Query) -> Any:
    descriptions = query.column_descriptions
    if not descriptions:
        return None
    return descriptions[0].get("entity")


def _mapped_columns(entity: Any) -> dict[str, Any]:
    if entity is None:
        return {}
    mapper = sa_inspect(entity)
    return {prop.key: getattr(entity, prop.key) for prop in mapper.column_attrs}


def _column(entity: Any, field: str):
    # Field names reaching this point come from the resource config only.
    mapped = _mapped_columns(entity).get(field)
    if mapped is not None:
        return mapped
    return sa_column(field)


def _split_set_value(value: Any) -> Any:
    if isinstance(value, str) and "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def _normalize_condition(field: str, op: str, value: Any) -> FilterCondition | None:
    if isinstance(value, Mapping):
        return None
    if op in {"eq", "neq"}:
        value = list(value) if isinstance(value, (list, tuple)) else _split_set_value(value)
    elif op in ORDERED_OPERATORS:
        if isinstance(value, (list, tuple)):
            return None
    elif op in SET_OPERATORS:
        value = list(value) if isinstance(value, (list, tuple)) else [value]
    else:
        return None
    if isinstance(value, list) and any(isinstance(item, (Mapping, list, tuple)) for item in value):
        return None
    return FilterCondition(field=field, operator=op, value=value)


def parse_filter_conditions(config: QueryConfig, raw_filters: Any) -> list[FilterCondition]:
    if not isinstance(raw_filters, Mapping) or not raw_filters:
        return []
    filterable = config.filtering.filterable_fields
    conditions: list[FilterCondition] = []
    dropped = 0
    for field, raw in raw_filters.items():
        if field not in filterable:
            dropped += 1
            continue
        if isinstance(raw, Mapping):
            ops = [key for key in raw.keys() if key in FILTER_OPERATORS]
            if not ops:
                dropped += 1
                continue
            if len(ops) > 1:
                _LOG.debug("filter on %s has %d operators, using %s", field, len(ops), ops[0])
            op, value = ops[0], raw[ops[0]]
        else:
            op, value = "eq", raw
        condition = _normalize_condition(field, op, value)
        if condition is None:
            dropped += 1
            continue
        conditions.append(condition)
    if dropped:
        _LOG.debug("filter conditions dropped=%d accepted=%d", dropped, len(conditions))
    return conditions


def _predicate(col, condition: FilterCondition):
    op = condition.operator
    value = condition.value
    if isinstance(value, list):
        value = [coerce_value(col, item) for item in value]
    else:
        value = coerce_value(col, value)
    if op == "eq":
        return col.in_(value) if isinstance(value, list) else col == value
    if op == "neq":
        return col.not_in(value) if isinstance(value, list) else col != value
    if op == "gt":
        return col > value
    if op == "gte":
        return col >= value
    if op == "lt":
        return col < value
    if op == "lte":
        return col <= value
    if op == "in":
        return col.in_(value)
    return col.not_in(value)


def _apply_filtering(query: Query, entity: Any, config: QueryConfig, params: Mapping[str, Any]) -> Query:
    conditions = parse_filter_conditions(config, params.get(config.filtering.filter_param))
    for condition in conditions:
        query = query.filter(_predicate(_column(entity, condition.field), condition))
    return query


def _is_searchable(col) -> bool:
    # Unmapped names carry NullType and are left for the store to reject.
    return isinstance(col.type, (String, NullType))


def _apply_searching(query: Query, entity: Any, config: QueryConfig, params: Mapping[str, Any]) -> Query:
    term = params.get(config.searching.search_param)
    if not isinstance(term, str):
        return query
    term = term.strip()
    fields = config.searching.searchable_fields
    if not term or not fields:
        return query
    columns = [_column(entity, field) for field in fields]
    clauses = [col.icontains(term, autoescape=True) for col in columns if _is_searchable(col)]
    if len(clauses) < len(columns):
        _LOG.debug("search skipped %d non-string columns", len(columns) - len(clauses))
    if not clauses:
        return query
    return query.filter(or_(*clauses))


def _sort_terms(raw: str, default_direction: str) -> list[tuple[str, str]]:
    terms = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        if chunk.startswith("-"):
            terms.append((chunk[1:].strip(), "desc"))
        elif chunk.startswith("+"):
            terms.append((chunk[1:].strip(), "asc"))
        else:
            terms.append((chunk, default_direction))
    return terms


def _apply_sorting(query: Query, entity: Any, config: QueryConfig, params: Mapping[str, Any]) -> Query:
    raw = params.get(config.sorting.sort_param)
    if not isinstance(raw, str) or not raw.strip():
        return query
    allowed = config.sorting.allowed_fields
    mapped = _mapped_columns(entity)
    seen: set[str] = set()
    for field, direction in _sort_terms(raw, config.sorting.default_direction):
        if field in seen:
            continue
        seen.add(field)
        if allowed:
            if field not in allowed:
                _LOG.debug("sort term ignored: field not allowed")
                continue
            col = _column(entity, field)
        else:
            col = mapped.get(field)
            if col is None:
                _LOG.debug("sort term ignored: field not mapped")
                continue
        query = query.order_by(desc(col) if direction == "desc" else asc(col))
    return query


def _to_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if not _INT_RE.fullmatch(text):
            return None
        try:
            return int(text)
        except ValueError:
            return None
    return None


def pagination_window(config: QueryConfig, params: Mapping[str, Any]) -> tuple[int, int]:
    """Resolve ``(page, size)`` from request params, both at least 1."""
    options = config.pagination
    page = max(_to_int(params.get(options.page_param)) or 1, 1)
    requested = _to_int(params.get(options.per_param))
    per = requested if requested is not None and requested > 0 else options.default_per
    per = max(min(per, options.max_per), 1)
    # Pages past the last one stay empty instead of overflowing the store offset.
    page = min(page, MAX_OFFSET // per + 1)
    return page, per


def compile_query(config: QueryConfig, params: Mapping[str, Any] | None, query: Query) -> QueryResult:
    """Apply filtering, searching, sorting, count and pagination to ``query``.

    Stages run in that order and each one is skipped when its section is
    disabled. Untrusted params are normalized or ignored, never rejected.
    """
    if not isinstance(params, Mapping):
        params = {}
    entity = _query_entity(query)

    if config.filtering.enabled:
        query = _apply_filtering(query, entity, config, params)
    if config.searching.enabled:
        query = _apply_searching(query, entity, config, params)
    if config.sorting.enabled:
        query = _apply_sorting(query, entity, config, params)

    metadata = None
    if config.meta.enabled:
        metadata = {config.meta.total_key: query.count()}

    if config.pagination.enabled:
        page, per = pagination_window(config, params)
        _LOG.debug("pagination page=%d per=%d", page, per)
        query = query.offset((page - 1) * per).limit(per)

    return QueryResult(collection=query, metadata=metadata)
