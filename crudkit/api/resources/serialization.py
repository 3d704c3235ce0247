from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.inspection import inspect as sa_inspect

from crudkit.services.resources import ResourceDefinition


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, list):
        return [_serialize_value(item) for item in value]
    if isinstance(value, tuple):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row_to_dict(row: Any) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    return {column.key: _serialize_value(getattr(row, column.key)) for column in mapper.column_attrs}


def _requested_fields(raw: str | None) -> list[str] | None:
    if raw is None or not str(raw).strip():
        return None
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _fields_for_action(definition: ResourceDefinition, action: str) -> tuple[str, ...] | None:
    if action == "index":
        return definition.index_fields
    if action == "show":
        return definition.show_fields
    return None


def _select_fields(payload: dict[str, Any], fields: Iterable[str] | None) -> dict[str, Any]:
    if fields is None:
        return payload
    wanted = set(fields)
    return {k: v for k, v in payload.items() if k in wanted}


def serialize_resource(
    definition: ResourceDefinition,
    row: Any,
    *,
    action: str,
    requested: str | None = None,
) -> dict[str, Any]:
    # ?fields= can only narrow the per-action field list.
    fields = _fields_for_action(definition, action)
    wanted = _requested_fields(requested)
    if wanted is not None:
        fields = [name for name in wanted if fields is None or name in fields]
    return _select_fields(_row_to_dict(row), fields)


def serialize_collection(
    definition: ResourceDefinition,
    rows: Iterable[Any],
    *,
    requested: str | None = None,
) -> list[dict[str, Any]]:
    return [serialize_resource(definition, row, action="index", requested=requested) for row in rows]
