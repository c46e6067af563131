from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, text

from app.db import get_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(request: Request, session: Session = Depends(get_session)):
    db_status = "ok"
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    # Queue state plus row counts from the media processor
    media_status: dict | str = "unavailable"
    processor = getattr(request.app.state, "media_processor", None)
    if processor is not None:
        try:
            media_status = processor.get_processing_stats()
        except Exception:
            logger.exception("Failed to collect media processor stats")
            media_status = "error"

    status = "healthy"
    if db_status != "ok":
        status = "unhealthy"
    elif isinstance(media_status, dict) and media_status.get("health") == "warning":
        status = "warning"

    return {
        "status": status,
        "service": "glowbook-backend",
        "version": "0.1.0",
        "checks": {
            "database": db_status,
            "media_processor": media_status,
        },
    }


@router.get("/health/ready")
async def readiness(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not ready",
                "service": "glowbook-backend",
                "error": str(exc),
            },
        )

    return {
        "status": "ready",
        "service": "glowbook-backend",
    }
