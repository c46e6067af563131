from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import app.models  # noqa: F401  (registers SQLModel tables)

from app.config import get_settings
from app.db import create_db_and_tables
from app.media_processor import MediaProcessor
from app.routers import admin, health

logger = logging.getLogger(__name__)


def build_media_processor(settings, engine) -> MediaProcessor:
    """Wire the media processor to its store and providers."""
    from app.services.image_fetch import ImageFetcher
    from app.services.media_store import MediaStore
    from app.services.vision import VisionService

    return MediaProcessor(
        store=MediaStore(engine),
        fetcher=ImageFetcher(
            timeout=settings.image_fetch_timeout_seconds,
            max_bytes=settings.image_fetch_max_bytes,
        ),
        vision=VisionService(
            vision_url=settings.vision_api_url,
            api_key=settings.vision_api_key,
            model=settings.vision_model,
            embedding_url=settings.embedding_api_url,
            embedding_api_key=settings.embedding_api_key,
            dimension=settings.embedding_dimension,
            timeout=settings.vision_timeout_seconds,
            max_image_mb=settings.vision_max_image_mb,
        ),
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    create_db_and_tables()

    from app.db import engine as db_engine

    processor = build_media_processor(settings, db_engine)
    app.state.media_processor = processor

    # The in-memory queue is empty after a restart; rebuild it from the
    # persisted processing_status.
    if settings.media_recover_on_startup:
        result = await asyncio.to_thread(processor.recover_stuck_media)
        for message in result.messages:
            logger.info("Startup media recovery: %s", message)

    yield

    # Shutdown: stop the drain thread after its current job
    await asyncio.to_thread(processor.stop)


app = FastAPI(
    title="Glowbook",
    description="Beauty services marketplace backend",
    version="0.1.0",
    lifespan=lifespan,
)

settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        f"https://{settings.domain}",
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin.router)
app.include_router(health.router)
