from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crudkit.services.query_compiler import compile_query
from crudkit.services.resources import LifecycleHook, ResourceDefinition

from .payloads import _integrity_error, _load_row_or_404, _sanitize_payload
from .serialization import _row_to_dict, serialize_collection, serialize_resource

_LOG = logging.getLogger("crudkit.resources")


def _validation_failed() -> HTTPException:
    return HTTPException(status_code=422, detail="Validation failed")


def index_service(
    definition: ResourceDefinition,
    params: Mapping[str, Any],
    db: Session,
    *,
    requested_fields: str | None = None,
) -> dict[str, Any]:
    config = definition.query_config
    result = compile_query(config, params, definition.base_query(db))
    data: dict[str, Any] = {
        config.meta.rows_key: serialize_collection(definition, result.collection.all(), requested=requested_fields),
    }
    if result.metadata is not None:
        data.update(result.metadata)
    return data


def show_service(
    definition: ResourceDefinition,
    row_id: str,
    db: Session,
    *,
    requested_fields: str | None = None,
) -> dict[str, Any]:
    row = _load_row_or_404(db, definition.model, row_id)
    return serialize_resource(definition, row, action="show", requested=requested_fields)


def create_service(definition: ResourceDefinition, payload: Any, db: Session) -> dict[str, Any]:
    clean_payload = _sanitize_payload(definition, payload, is_update=False)
    row = definition.model(**clean_payload)
    if not definition.run_hook(LifecycleHook.BEFORE_CREATE, db, row):
        raise _validation_failed()

    try:
        db.add(row)
        db.flush()
        definition.run_hook(LifecycleHook.AFTER_CREATE, db, row)
        db.commit()
        db.refresh(row)
    except IntegrityError:
        db.rollback()
        raise _integrity_error()

    _LOG.info("resource created name=%s id=%s", definition.name, _row_to_dict(row).get("id"))
    return serialize_resource(definition, row, action="create")


def update_service(definition: ResourceDefinition, row_id: str, payload: Any, db: Session) -> dict[str, Any]:
    row = _load_row_or_404(db, definition.model, row_id)
    clean_payload = _sanitize_payload(definition, payload, is_update=True)
    for key, value in clean_payload.items():
        setattr(row, key, value)
    if not definition.run_hook(LifecycleHook.BEFORE_UPDATE, db, row):
        db.rollback()
        raise _validation_failed()

    try:
        db.add(row)
        db.flush()
        definition.run_hook(LifecycleHook.AFTER_UPDATE, db, row)
        db.commit()
        db.refresh(row)
    except IntegrityError:
        db.rollback()
        raise _integrity_error()

    return serialize_resource(definition, row, action="update")


def destroy_service(definition: ResourceDefinition, row_id: str, db: Session) -> None:
    row = _load_row_or_404(db, definition.model, row_id)
    try:
        db.delete(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise _integrity_error("Record cannot be deleted because of related data")
    _LOG.info("resource deleted name=%s id=%s", definition.name, row_id)
