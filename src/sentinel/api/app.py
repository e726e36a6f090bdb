"""FastAPI app for Sentinel — playbook management REST API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sentinel.api.playbook_routes import playbook_router
from sentinel.settings import get_settings

try:
    from importlib.metadata import version

    VERSION = version("sentinel-playbooks")
except Exception:
    VERSION = "0.0.0"


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    settings = get_settings()

    application = FastAPI(
        title="Sentinel",
        description="Playbook-driven discovery of grants, residencies and exhibitions.",
        version=VERSION,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    application.include_router(playbook_router)
    return application
