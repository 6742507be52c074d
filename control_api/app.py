"""
FastAPI application for the voice-commerce pipeline.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from logging_setup import get_logger, Component
from observability.event_store import event_store
from voice_commerce.pipeline import VoiceCommandPipeline, build_pipeline

from .routes import router

logger = get_logger(Component.CONTROL_API)


def create_app(pipeline: Optional[VoiceCommandPipeline] = None) -> FastAPI:
    """
    Build the app around `pipeline`.

    Without one, a pipeline is built from the environment on startup, its
    preferences loaded, and everything closed again on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = pipeline is None
        if owned:
            app.state.pipeline = build_pipeline(session_id="http")
            await app.state.pipeline.preferences.load()
            logger.info("Voice API started", language=app.state.pipeline.language)
        try:
            yield
        finally:
            if owned:
                await app.state.pipeline.aclose()

    app = FastAPI(title="Voice Commerce API", lifespan=lifespan)
    if pipeline is not None:
        app.state.pipeline = pipeline
    app.include_router(router)

    @app.get("/health")
    async def health():
        """Liveness plus event store fill level."""
        stats = event_store.get_stats()
        return {
            "status": "ok",
            "component": "control_api",
            "events_stored": stats["total_events"],
            "events_capacity": stats["max_events"],
        }

    return app
