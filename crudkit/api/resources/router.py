from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from crudkit.db.session import get_db
from crudkit.services.query_params import parse_query_params
from crudkit.services.resources import ResourceDefinition

from .service import create_service, destroy_service, index_service, show_service, update_service

FIELDS_PARAM = "fields"


def build_resource_router(definition: ResourceDefinition) -> APIRouter:
    router = APIRouter()

    @router.get("", summary=f"List {definition.name}")
    def index(request: Request, db: Session = Depends(get_db)):
        params = parse_query_params(request.query_params.multi_items())
        requested = params.get(FIELDS_PARAM)
        return index_service(
            definition,
            params,
            db,
            requested_fields=requested if isinstance(requested, str) else None,
        )

    @router.get("/{row_id}", summary=f"Read one of {definition.name}")
    def show(row_id: str, request: Request, db: Session = Depends(get_db)):
        return show_service(definition, row_id, db, requested_fields=request.query_params.get(FIELDS_PARAM))

    @router.post("", status_code=201, summary=f"Create one of {definition.name}")
    def create(payload: dict[str, Any], db: Session = Depends(get_db)):
        return create_service(definition, payload, db)

    @router.patch("/{row_id}", summary=f"Update one of {definition.name}")
    def update(row_id: str, payload: dict[str, Any], db: Session = Depends(get_db)):
        return update_service(definition, row_id, payload, db)

    @router.put("/{row_id}", summary=f"Replace fields of one of {definition.name}")
    def replace(row_id: str, payload: dict[str, Any], db: Session = Depends(get_db)):
        return update_service(definition, row_id, payload, db)

    @router.delete("/{row_id}", status_code=204, summary=f"Delete one of {definition.name}")
    def destroy(row_id: str, db: Session = Depends(get_db)):
        destroy_service(definition, row_id, db)
        return Response(status_code=204)

    return router
