from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from app.db import get_session
from app.dependencies import get_media_processor, require_admin
from app.media_processor import MediaProcessor
from app.models.media import ProcessingStatus, ServiceMedia

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


class ProcessingStats(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    queue_size: int
    is_processing: bool
    health: str  # "healthy" or "warning"


class QueueStatus(BaseModel):
    queue_size: int
    is_processing: bool


class RecoveryResponse(BaseModel):
    recovered: int
    pending: int
    stuck: int
    skipped: int
    messages: list[str]


class ReprocessResponse(BaseModel):
    media_id: str
    previous_status: str
    queued: bool


@router.get("/media-processor/stats", response_model=ProcessingStats)
async def media_processor_stats(
    processor: MediaProcessor = Depends(get_media_processor),
) -> ProcessingStats:
    stats = await asyncio.to_thread(processor.get_processing_stats)
    return ProcessingStats(**stats)


@router.post("/media-processor/recover", response_model=RecoveryResponse)
async def recover_media(
    processor: MediaProcessor = Depends(get_media_processor),
) -> RecoveryResponse:
    """Manually trigger recovery of pending and stuck media."""
    logger.info("Manual media recovery triggered")
    result = await asyncio.to_thread(processor.recover_stuck_media)
    return RecoveryResponse(
        recovered=result.recovered,
        pending=result.pending,
        stuck=result.stuck,
        skipped=result.skipped,
        messages=result.messages,
    )


@router.get("/media-processor/queue", response_model=QueueStatus)
async def media_processor_queue(
    processor: MediaProcessor = Depends(get_media_processor),
) -> QueueStatus:
    return QueueStatus(**processor.get_queue_status())


@router.post("/media/{media_id}/reprocess", response_model=ReprocessResponse)
async def reprocess_media(
    media_id: str,
    processor: MediaProcessor = Depends(get_media_processor),
    db: Session = Depends(get_session),
) -> ReprocessResponse:
    """Explicitly re-run analysis for one image, including failed or completed ones."""
    media = db.get(ServiceMedia, media_id)
    if media is None:
        raise HTTPException(status_code=404, detail="Media not found")
    if media.media_type != "image":
        raise HTTPException(status_code=400, detail="Only images can be analysed")
    if media.processing_status == ProcessingStatus.PROCESSING.value:
        raise HTTPException(status_code=409, detail="Media is already being processed")

    queued = await asyncio.to_thread(processor.reprocess, media_id)
    logger.info("Reprocess requested for media %s (was %s)", media_id, media.processing_status)
    return ReprocessResponse(
        media_id=media_id,
        previous_status=media.processing_status,
        queued=queued,
    )
