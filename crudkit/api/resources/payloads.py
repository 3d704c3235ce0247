from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session

from crudkit.services.coercion import coerce_value, column_python_type
from crudkit.services.resources import ResourceDefinition

_TYPED_VALUES = (bool, int, float, Decimal, date, datetime, uuid.UUID)


def _columns_map(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {prop.key: prop.columns[0] for prop in mapper.column_attrs}


def _coerce_payload_value(model: type, key: str, value: Any) -> Any:
    if value is None:
        return None
    attr = getattr(model, key)
    python_type = column_python_type(attr)
    coerced = coerce_value(attr, value)
    if python_type in _TYPED_VALUES and not isinstance(coerced, python_type):
        raise HTTPException(status_code=400, detail=f'Invalid value for field "{key}"')
    return coerced


def _sanitize_payload(definition: ResourceDefinition, payload: Any, *, is_update: bool) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    model = definition.model
    columns = _columns_map(model)
    permitted = definition.permitted_fields

    unknown_fields = sorted(set(payload.keys()) - permitted)
    if unknown_fields:
        raise HTTPException(status_code=400, detail="Unknown fields: " + ", ".join(unknown_fields))

    cleaned: dict[str, Any] = {}
    for key, value in payload.items():
        column = columns[key]
        if value is None and not column.nullable:
            raise HTTPException(status_code=400, detail=f'Field "{key}" cannot be null')
        cleaned[key] = _coerce_payload_value(model, key, value)

    if is_update:
        if not cleaned:
            raise HTTPException(status_code=400, detail="No fields to update")
        return cleaned

    required_missing: list[str] = []
    for name in permitted:
        column = columns[name]
        if column.nullable:
            continue
        if column.default is not None or column.server_default is not None:
            continue
        if name not in cleaned:
            required_missing.append(name)
    if required_missing:
        raise HTTPException(status_code=400, detail="Missing required fields: " + ", ".join(sorted(required_missing)))

    return cleaned


def _pk_value(model: type, row_id: str) -> Any:
    pk = sa_inspect(model).primary_key
    if len(pk) != 1:
        raise HTTPException(status_code=400, detail="Only single-column primary keys are supported")
    pk_column = pk[0]
    try:
        python_type = pk_column.type.python_type
    except Exception:
        python_type = str
    if python_type is uuid.UUID:
        try:
            return uuid.UUID(str(row_id))
        except ValueError:
            raise HTTPException(status_code=404, detail="Record not found")
    if python_type is int:
        try:
            return int(str(row_id).strip())
        except ValueError:
            raise HTTPException(status_code=404, detail="Record not found")
    return row_id


def _load_row_or_404(db: Session, model: type, row_id: str):
    entity = db.get(model, _pk_value(model, row_id))
    if entity is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return entity


def _integrity_error(detail: str = "Data constraint violated") -> HTTPException:
    return HTTPException(status_code=400, detail=detail)
