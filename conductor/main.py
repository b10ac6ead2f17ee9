"""FastAPI entry-point exposing orchestrator controls."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from conductor.api.routes import router
from conductor.config import Config
from conductor.orchestration.orchestrator import Orchestrator
from conductor.runtime import build_orchestrator


def create_app(
    config: Optional[Config] = None,
    orchestrator: Optional[Orchestrator] = None,
) -> FastAPI:
    """Build the HTTP app around one orchestrator, shut down with the app."""
    orchestrator = orchestrator or build_orchestrator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.orchestrator.shutdown()

    app = FastAPI(title="Conductor", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app
