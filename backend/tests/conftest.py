from __future__ import annotations

import asyncio
import os
import threading
from datetime import datetime, timezone

# Set test environment BEFORE importing app modules.
# app.db creates the engine at module level using get_settings().db_url,
# so we must override the env vars before any app imports.
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("MEDIA_RECOVER_ON_STARTUP", "false")
os.environ.setdefault("EMBEDDING_API_URL", "http://fake-embed/predict")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from app.config import Settings
from app.db import get_session
from app.dependencies import get_media_processor
from app.main import app as fastapi_app
from app.media_processor import MediaProcessor
from app.models.media import ServiceMedia
from app.models.service import Service, ServiceCategory, ServiceSubcategory
from app.services.errors import VisionError
from app.services.media_store import MediaStore
from app.services.vision import ImageAnalysis

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}


# ── Database fixtures ─────────────────────────────────────────────────


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite engine for testing.

    Uses StaticPool so every connection (including the drain thread's)
    shares the same in-memory database. Recreates tables per test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    """Provide a fresh session per test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> MediaStore:
    return MediaStore(engine)


# ── Catalogue fixtures ────────────────────────────────────────────────


@pytest.fixture(name="service_id")
def service_id_fixture(engine) -> str:
    """One Hair > Braids service that media rows hang off."""
    with Session(engine) as s:
        category = ServiceCategory(name="Hair", slug="hair")
        s.add(category)
        s.flush()
        subcategory = ServiceSubcategory(category_id=category.id, name="Braids", slug="braids")
        s.add(subcategory)
        s.flush()
        service = Service(
            category_id=category.id,
            subcategory_id=subcategory.id,
            title="Knotless Braids",
            description="Waist-length knotless braids with curly ends",
        )
        s.add(service)
        s.commit()
        return service.id


@pytest.fixture(name="make_media")
def make_media_fixture(engine, service_id):
    """Factory inserting ServiceMedia rows; returns the new media id."""

    def _make(
        status: str = "pending",
        updated_at: datetime | None = None,
        media_type: str = "image",
        file_url: str | None = None,
        ai_tags_json: str | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        with Session(engine) as s:
            media = ServiceMedia(
                service_id=service_id,
                media_type=media_type,
                file_url=file_url or "placeholder",
                processing_status=status,
                ai_tags_json=ai_tags_json,
                created_at=now,
                updated_at=updated_at or now,
            )
            if file_url is None:
                media.file_url = f"https://cdn.test/{media.id}.jpg"
            s.add(media)
            s.commit()
            return media.id

    return _make


# ── Fake collaborators ────────────────────────────────────────────────


class FakeFetcher:
    """Returns the URL itself as the image bytes so fakes can tell images apart."""

    def __init__(self, gate: threading.Event | None = None) -> None:
        self.calls: list[str] = []
        self.gate = gate
        self.started = threading.Event()

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        return url.encode()


class FakeVision:
    """Scriptable analysis provider.

    fail_counts: url -> number of analyze calls that fail before succeeding.
    always_fail: urls whose analyze call never succeeds.
    """

    def __init__(
        self,
        fail_counts: dict[str, int] | None = None,
        always_fail: set[str] | None = None,
        delay: float = 0.0,
        dimension: int = 8,
    ) -> None:
        self.fail_counts = dict(fail_counts or {})
        self.always_fail = set(always_fail or ())
        self.delay = delay
        self.dimension = dimension
        self.analyze_calls: list[str] = []
        self.embed_calls: list[tuple[str, str]] = []
        self.max_concurrent = 0
        self._active = 0
        self._lock = threading.Lock()

    async def analyze(self, image_bytes: bytes, category: str | None) -> ImageAnalysis:
        url = image_bytes.decode()
        with self._lock:
            self.analyze_calls.append(url)
            self._active += 1
            self.max_concurrent = max(self.max_concurrent, self._active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if url in self.always_fail:
                raise VisionError("RESOURCE_EXHAUSTED")
            if self.fail_counts.get(url, 0) > 0:
                self.fail_counts[url] -= 1
                raise VisionError("UNAVAILABLE")
            return ImageAnalysis(
                tags=["knotless-braids", "long", "protective-style", "black-hair", "curly-ends", "waist-length"],
                dominant_colors=["#1a1a1a"],
            )
        finally:
            with self._lock:
                self._active -= 1

    async def embed(self, image_bytes: bytes, context_text: str) -> list[float]:
        self.embed_calls.append((image_bytes.decode(), context_text))
        return [0.25] * self.dimension


def make_settings(**overrides) -> Settings:
    defaults = {
        "db_url": "sqlite://",
        "media_max_retries": 3,
        "media_rate_limit_delay_ms": 0,
        "media_job_timeout_seconds": 5.0,
        "media_stale_after_minutes": 5,
        "media_recovery_batch_size": 50,
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


@pytest.fixture(name="fetcher")
def fetcher_fixture() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture(name="vision")
def vision_fixture() -> FakeVision:
    return FakeVision()


@pytest.fixture(name="processor")
def processor_fixture(store, fetcher, vision):
    processor = MediaProcessor(
        store=store, fetcher=fetcher, vision=vision, settings=make_settings()
    )
    yield processor
    processor.stop(timeout=5)


# ── HTTP client fixtures ──────────────────────────────────────────────


@pytest.fixture(name="client")
def client_fixture(session, processor):
    """FastAPI TestClient with overridden DB session and media processor."""

    def _get_session_override():
        yield session

    def _get_processor_override():
        return processor

    fastapi_app.dependency_overrides[get_session] = _get_session_override
    fastapi_app.dependency_overrides[get_media_processor] = _get_processor_override
    with TestClient(fastapi_app) as client:
        yield client
    fastapi_app.dependency_overrides.clear()
