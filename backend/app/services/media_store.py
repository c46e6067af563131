"""Durable record store for service media processing state.

Wraps the ``service_media`` table behind the handful of read/update-by-status
operations the media processor and the recovery scan need. Every method opens
its own short-lived session, so the store is safe to share between the
request handlers and the drain thread.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from app.models.media import TERMINAL_STATUSES, ProcessingStatus, ServiceMedia
from app.models.service import Service, ServiceCategory, ServiceSubcategory
from app.services.errors import MediaStoreError

logger = logging.getLogger(__name__)

FAILED_TAG = "processing-failed"


@dataclass(frozen=True, slots=True)
class MediaCandidate:
    """A media row joined with the service fields used to build analysis context."""

    media_id: str
    service_id: str
    file_url: str
    category_name: str
    subcategory_name: str | None
    service_title: str
    service_description: str


class MediaStore:
    """Status-oriented access to ServiceMedia rows."""

    __slots__ = ("_engine",)

    def __init__(self, engine) -> None:
        self._engine = engine

    # ── writes ───────────────────────────────────────────────────

    def update_status(self, media_id: str, status: ProcessingStatus, **fields) -> bool:
        """Set the status (plus any extra columns) of one media row.

        Returns False when the row does not exist.
        """
        try:
            with Session(self._engine) as session:
                media = session.get(ServiceMedia, media_id)
                if media is None:
                    return False
                media.processing_status = status.value
                for name, value in fields.items():
                    setattr(media, name, value)
                media.updated_at = datetime.now(timezone.utc)
                session.add(media)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise MediaStoreError(f"Failed to update media {media_id}: {exc}") from exc

    def claim(self, media_id: str, allow_terminal: bool = False) -> bool:
        """Move a row to 'processing' before any external work is done.

        Terminal rows are left alone unless ``allow_terminal`` is set, which is
        how an explicit reprocess request re-enters the state machine.
        """
        try:
            with Session(self._engine) as session:
                media = session.get(ServiceMedia, media_id)
                if media is None:
                    logger.warning("Media %s no longer exists, skipping", media_id)
                    return False
                if media.processing_status in TERMINAL_STATUSES and not allow_terminal:
                    logger.info(
                        "Media %s is already %s, skipping",
                        media_id,
                        media.processing_status,
                    )
                    return False
                media.processing_status = ProcessingStatus.PROCESSING.value
                media.processing_error = None
                media.updated_at = datetime.now(timezone.utc)
                session.add(media)
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise MediaStoreError(f"Failed to claim media {media_id}: {exc}") from exc

    def complete(
        self,
        media_id: str,
        tags: list[str],
        embedding: list[float],
        colors: list[str] | None = None,
    ) -> bool:
        return self.update_status(
            media_id,
            ProcessingStatus.COMPLETED,
            ai_tags_json=json.dumps(tags),
            ai_embedding_json=json.dumps(embedding),
            color_palette_json=json.dumps(colors or []),
            processing_error=None,
        )

    def mark_failed(self, media_id: str, error: str) -> bool:
        return self.update_status(
            media_id,
            ProcessingStatus.FAILED,
            ai_tags_json=json.dumps([FAILED_TAG]),
            processing_error=error[:2000] if error else None,
        )

    def reset_to_pending(self, media_ids: list[str]) -> int:
        """Bulk-reset stuck rows from 'processing' back to 'pending'.

        Rows that moved on since they were read are not touched.
        Returns the number of rows updated.
        """
        if not media_ids:
            return 0
        try:
            with Session(self._engine) as session:
                result = session.execute(
                    update(ServiceMedia)
                    .where(col(ServiceMedia.id).in_(media_ids))
                    .where(ServiceMedia.processing_status == ProcessingStatus.PROCESSING.value)
                    .values(
                        processing_status=ProcessingStatus.PENDING.value,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise MediaStoreError(f"Failed to reset stuck media: {exc}") from exc

    # ── reads ────────────────────────────────────────────────────

    def find_by_status(
        self,
        status: ProcessingStatus,
        limit: int = 50,
        media_type: str = "image",
    ) -> list[MediaCandidate]:
        """Oldest-first rows in ``status``, joined with their service context."""
        stmt = (
            self._candidate_query()
            .where(ServiceMedia.processing_status == status.value)
            .where(ServiceMedia.media_type == media_type)
            .order_by(col(ServiceMedia.created_at))
            .limit(limit)
        )
        return self._load_candidates(stmt)

    def find_stale_processing(
        self,
        threshold: timedelta,
        limit: int = 50,
        media_type: str = "image",
    ) -> list[MediaCandidate]:
        """Rows stuck in 'processing' whose last update is older than ``threshold``."""
        cutoff = datetime.now(timezone.utc) - threshold
        stmt = (
            self._candidate_query()
            .where(ServiceMedia.processing_status == ProcessingStatus.PROCESSING.value)
            .where(ServiceMedia.media_type == media_type)
            .where(ServiceMedia.updated_at < cutoff)
            .order_by(col(ServiceMedia.updated_at))
            .limit(limit)
        )
        return self._load_candidates(stmt)

    def find_candidate(self, media_id: str) -> MediaCandidate | None:
        candidates = self._load_candidates(
            self._candidate_query().where(ServiceMedia.id == media_id)
        )
        return candidates[0] if candidates else None

    def count_by_status(self, media_type: str = "image") -> dict[str, int]:
        counts = {s.value: 0 for s in ProcessingStatus}
        try:
            with Session(self._engine) as session:
                rows = session.exec(
                    select(ServiceMedia.processing_status, func.count())
                    .where(ServiceMedia.media_type == media_type)
                    .group_by(ServiceMedia.processing_status)
                ).all()
        except SQLAlchemyError as exc:
            raise MediaStoreError(f"Failed to count media: {exc}") from exc
        for status, count in rows:
            counts[status] = count
        return counts

    # ── helpers ──────────────────────────────────────────────────

    @staticmethod
    def _candidate_query():
        return (
            select(ServiceMedia, Service, ServiceCategory, ServiceSubcategory)
            .join(Service, col(Service.id) == ServiceMedia.service_id)
            .join(ServiceCategory, col(ServiceCategory.id) == Service.category_id)
            .outerjoin(
                ServiceSubcategory,
                col(ServiceSubcategory.id) == Service.subcategory_id,
            )
        )

    def _load_candidates(self, stmt) -> list[MediaCandidate]:
        try:
            with Session(self._engine) as session:
                rows = session.exec(stmt).all()
        except SQLAlchemyError as exc:
            raise MediaStoreError(f"Failed to query media: {exc}") from exc

        return [
            MediaCandidate(
                media_id=media.id,
                service_id=service.id,
                file_url=media.file_url,
                category_name=category.name,
                subcategory_name=subcategory.name if subcategory is not None else None,
                service_title=service.title,
                service_description=service.description or "",
            )
            for media, service, category, subcategory in rows
        ]
