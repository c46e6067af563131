from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ProcessingStatus.COMPLETED.value, ProcessingStatus.FAILED.value})


class ServiceMedia(SQLModel, table=True):
    __tablename__ = "service_media"
    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_service_media_processing_status",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    service_id: str = Field(foreign_key="services.id", index=True)
    media_type: str = Field(default="image", index=True)  # "image" or "video"
    file_url: str
    display_order: int = Field(default=0)

    processing_status: str = Field(default=ProcessingStatus.PENDING.value, index=True)
    # JSON-serialized analysis output, NULL until completed
    ai_tags_json: str | None = Field(default=None)
    ai_embedding_json: str | None = Field(default=None)
    color_palette_json: str | None = Field(default=None)
    processing_error: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
