import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from crudkit.core.config import settings
from crudkit.core.http_hardening import install_http_hardening
from crudkit.api.posts import register_posts
from crudkit.api.resources.router import build_resource_router
from crudkit.services.resources import ResourceRegistry


def default_registry() -> ResourceRegistry:
    registry = ResourceRegistry()
    register_posts(registry)
    return registry


def create_app(registry: ResourceRegistry | None = None) -> FastAPI:
    logging.getLogger("crudkit").setLevel(settings.LOG_LEVEL.upper())
    registry = registry if registry is not None else default_registry()

    app = FastAPI(title=settings.APP_NAME, version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_http_hardening(app)
    app.state.registry = registry

    for definition in registry:
        app.include_router(
            build_resource_router(definition),
            prefix=f"/api/{definition.name}",
            tags=[definition.name],
        )

    @app.get("/", include_in_schema=False)
    def landing():
        return JSONResponse({"service": settings.APP_NAME, "resources": registry.names()})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
