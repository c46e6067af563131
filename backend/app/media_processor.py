"""Background media processor for Glowbook.

Newly uploaded service images are analysed off the request path: callers
enqueue a job and return immediately, and a single drain thread works
through the in-memory queue one job at a time.

Each job runs two dependent provider calls (tagging, then an embedding whose
context text is enriched with the top tags) and writes the result back to
the media row. Failed jobs go to the back of the queue until the retry
budget is spent, then the row is marked failed.

The queue does not survive a restart. The durable signal is the row's
processing_status, and recover_stuck_media() rebuilds the queue from rows
left in 'pending' or abandoned in 'processing'.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import timedelta

from app.config import Settings
from app.models.media import ProcessingStatus
from app.services.errors import MediaProcessingError, is_retryable
from app.services.image_fetch import ImageFetcher
from app.services.media_store import MediaCandidate, MediaStore
from app.services.vision import VisionService

logger = logging.getLogger(__name__)

ENRICHMENT_TAG_COUNT = 5
ENRICHED_CONTEXT_MAX_CHARS = 800
SERVICE_CONTEXT_MAX_CHARS = 200
SERVICE_DESCRIPTION_MAX_CHARS = 150
PROCESSING_WARNING_THRESHOLD = 10

_job_sequence = itertools.count(1)


@dataclass(frozen=True, slots=True)
class JobResult:
    """Analysis output kept on a job so a retry can skip the provider calls."""

    tags: list[str]
    embedding: list[float]
    colors: list[str]


@dataclass
class MediaJob:
    id: str
    service_id: str
    media_id: str
    media_url: str
    category: str
    context: str
    retry_count: int = 0
    force: bool = False
    result: JobResult | None = field(default=None, repr=False)


@dataclass
class RecoveryResult:
    recovered: int = 0
    pending: int = 0
    stuck: int = 0
    skipped: int = 0
    messages: list[str] = field(default_factory=list)


def build_enriched_context(context: str, tags: list[str]) -> str:
    """Context text for the embedding call: service context plus the top tags."""
    parts = [context, *tags[:ENRICHMENT_TAG_COUNT]]
    return " ".join(p for p in parts if p)[:ENRICHED_CONTEXT_MAX_CHARS]


def build_service_context(candidate: MediaCandidate) -> str:
    """Describe the parent service of a media row for analysis."""
    parts = [
        candidate.service_title,
        candidate.service_description[:SERVICE_DESCRIPTION_MAX_CHARS],
        candidate.category_name,
        candidate.subcategory_name,
    ]
    return " - ".join(p for p in parts if p)[:SERVICE_CONTEXT_MAX_CHARS]


class MediaProcessor:
    """Single-flight, in-memory queue for service image analysis.

    At most one drain thread exists at any time. ``enqueue`` checks and sets
    ``_is_processing`` under ``_lock``, and the drain loop clears it under the
    same lock only after seeing an empty queue, so an enqueue can never land
    in a queue whose loop is already on its way out.
    """

    __slots__ = (
        "_store",
        "_fetcher",
        "_vision",
        "_settings",
        "_queue",
        "_lock",
        "_recovery_lock",
        "_is_processing",
        "_tracked",
        "_idle",
        "_stop_event",
        "_thread",
    )

    def __init__(
        self,
        store: MediaStore,
        fetcher: ImageFetcher,
        vision: VisionService,
        settings: Settings | None = None,
    ) -> None:
        if settings is None:
            from app.config import get_settings
            settings = get_settings()
        self._store = store
        self._fetcher = fetcher
        self._vision = vision
        self._settings = settings
        self._queue: deque[MediaJob] = deque()
        self._lock = threading.Lock()
        self._recovery_lock = threading.Lock()
        self._is_processing = False
        # media_id -> number of jobs queued or in flight for it
        self._tracked: Counter[str] = Counter()
        self._idle = threading.Event()
        self._idle.set()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ── entry points ─────────────────────────────────────────────

    def enqueue(
        self,
        service_id: str,
        media_id: str,
        media_url: str,
        category: str,
        context: str,
        force: bool = False,
        only_if_untracked: bool = False,
    ) -> bool:
        """Queue one image for analysis. Returns as soon as the job is queued.

        ``force`` re-processes a row that already reached a terminal state;
        without it such jobs are dropped when they reach the head of the queue.
        With ``only_if_untracked`` nothing is queued (and False is returned)
        while another job for the same media is queued or in flight.
        """
        if not media_id or not media_url:
            raise ValueError("media_id and media_url are required")

        job = MediaJob(
            id=f"{media_id}-{int(time.time() * 1000)}-{next(_job_sequence)}",
            service_id=service_id,
            media_id=media_id,
            media_url=media_url,
            category=category,
            context=context,
            force=force,
        )

        with self._lock:
            if only_if_untracked and self._tracked[media_id] > 0:
                return False
            self._queue.append(job)
            self._tracked[media_id] += 1
            queue_size = len(self._queue)
            if self._stop_event.is_set():
                logger.warning(
                    "Media processor is stopped; media %s stays pending until recovery",
                    media_id,
                )
                return True
            self._start_drain_locked()

        logger.info("Queued media for AI processing: %s (queue size: %d)", media_id, queue_size)
        return True

    def enqueue_batch(
        self,
        service_id: str,
        media_items: list[dict],
        category: str,
        context: str,
    ) -> None:
        """Queue several images of one service; items carry media_id and media_url."""
        for item in media_items:
            self.enqueue(service_id, item["media_id"], item["media_url"], category, context)

    def reprocess(self, media_id: str) -> bool:
        """Explicitly re-queue one image, terminal status or not.

        Returns False when the row does not exist or a job for it is already
        queued or in flight.
        """
        if self.is_tracked(media_id):
            return False
        candidate = self._store.find_candidate(media_id)
        if candidate is None:
            return False
        # Re-checked under the queue lock; two callers can both get this far.
        return self.enqueue(
            service_id=candidate.service_id,
            media_id=candidate.media_id,
            media_url=candidate.file_url,
            category=candidate.category_name,
            context=build_service_context(candidate),
            force=True,
            only_if_untracked=True,
        )

    def recover_stuck_media(self) -> RecoveryResult:
        """Re-queue rows left pending or abandoned in 'processing'.

        Called once at startup and from the admin API. Rows this process is
        already holding (queued or in flight) are skipped, so calling it twice
        in a row enqueues nothing the second time.
        """
        with self._recovery_lock:
            try:
                return self._recover()
            except Exception as exc:
                logger.exception("Media recovery failed")
                return RecoveryResult(messages=[f"Recovery error: {exc}"])

    def _recover(self) -> RecoveryResult:
        settings = self._settings
        limit = settings.media_recovery_batch_size

        pending = self._store.find_by_status(ProcessingStatus.PENDING, limit=limit)
        stuck = self._store.find_stale_processing(
            timedelta(minutes=settings.media_stale_after_minutes), limit=limit
        )

        if not pending and not stuck:
            return RecoveryResult(messages=["No media needs recovery"])

        result = RecoveryResult(pending=len(pending), stuck=len(stuck))
        result.messages.append(f"Found {len(pending)} pending + {len(stuck)} stuck media")

        stuck_to_reset = [c for c in stuck if not self.is_tracked(c.media_id)]
        if stuck_to_reset:
            reset = self._store.reset_to_pending([c.media_id for c in stuck_to_reset])
            result.messages.append(f"Reset {reset} stuck media to pending")

        for candidate in [*pending, *stuck_to_reset]:
            queued = self.enqueue(
                service_id=candidate.service_id,
                media_id=candidate.media_id,
                media_url=candidate.file_url,
                category=candidate.category_name,
                context=build_service_context(candidate),
                only_if_untracked=True,
            )
            if queued:
                result.recovered += 1
            else:
                result.skipped += 1

        result.skipped += len(stuck) - len(stuck_to_reset)
        result.messages.append(f"Re-queued {result.recovered} media for processing")
        logger.info(
            "Media recovery: %d re-queued (%d pending, %d stuck, %d skipped)",
            result.recovered,
            result.pending,
            result.stuck,
            result.skipped,
        )
        return result

    # ── status ───────────────────────────────────────────────────

    def is_tracked(self, media_id: str) -> bool:
        """True while a job for ``media_id`` is queued or in flight."""
        with self._lock:
            return self._tracked[media_id] > 0

    def get_queue_status(self) -> dict:
        with self._lock:
            return {
                "queue_size": len(self._queue),
                "is_processing": self._is_processing,
            }

    def get_processing_stats(self) -> dict:
        """Row counts by status plus the in-memory queue state."""
        counts = self._store.count_by_status()
        stats = {**counts, **self.get_queue_status()}
        stats["health"] = (
            "warning"
            if counts.get(ProcessingStatus.PROCESSING.value, 0) > PROCESSING_WARNING_THRESHOLD
            else "healthy"
        )
        return stats

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until the drain loop has exited. Returns False on timeout."""
        return self._idle.wait(timeout)

    def stop(self, timeout: float = 10.0) -> None:
        """Stop draining after the current job. Queued jobs stay pending in the DB."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        logger.info("Media processor stopped")

    # ── drain loop ───────────────────────────────────────────────

    def _start_drain_locked(self) -> None:
        """Start the drain thread unless one is running. Caller holds _lock."""
        if self._is_processing:
            return
        self._is_processing = True
        self._idle.clear()
        self._thread = threading.Thread(
            target=self._drain, name="media-processor", daemon=True
        )
        self._thread.start()

    def _drain(self) -> None:
        """Thread main loop: process jobs FIFO until the queue is empty."""
        logger.info("Starting background media processing")
        loop = asyncio.new_event_loop()
        exited_cleanly = False
        try:
            while True:
                with self._lock:
                    if not self._queue or self._stop_event.is_set():
                        self._is_processing = False
                        self._idle.set()
                        exited_cleanly = True
                        break
                    job = self._queue.popleft()

                try:
                    self._run_job(loop, job)
                except Exception:
                    logger.exception("Unhandled error processing media job %s", job.id)
                    self._release(job)

                with self._lock:
                    has_more = bool(self._queue)
                if has_more:
                    self._rate_limit_pause()
        finally:
            loop.close()
            # After a clean exit the flag may already belong to a newer drain thread.
            if not exited_cleanly:
                with self._lock:
                    logger.error("Media drain loop exited abnormally")
                    self._is_processing = False
                    self._idle.set()

        logger.info("Background media processing completed")

    def _rate_limit_pause(self) -> None:
        delay = self._settings.media_rate_limit_delay_ms / 1000
        if delay > 0:
            self._stop_event.wait(delay)

    def _run_job(self, loop: asyncio.AbstractEventLoop, job: MediaJob) -> None:
        try:
            loop.run_until_complete(self._process_job(job))
        except Exception as exc:
            self._handle_failure(job, exc)
        else:
            self._release(job)

    def _handle_failure(self, job: MediaJob, exc: Exception) -> None:
        max_retries = self._settings.media_max_retries
        logger.warning("Failed to process job %s: %s", job.id, exc)

        if is_retryable(exc) and job.retry_count < max_retries:
            job.retry_count += 1
            # Retries go to the tail, behind anything queued since.
            with self._lock:
                self._queue.append(job)
            logger.info(
                "Re-queuing job %s (attempt %d/%d)", job.id, job.retry_count, max_retries
            )
            return

        try:
            self._store.mark_failed(job.media_id, str(exc))
            logger.error("Media %s marked as failed: %s", job.media_id, exc)
        except Exception:
            # Row stays 'processing'; the recovery scan picks it up once stale.
            logger.exception("Could not mark media %s as failed", job.media_id)
        finally:
            self._release(job)

    def _release(self, job: MediaJob) -> None:
        with self._lock:
            self._tracked[job.media_id] -= 1
            if self._tracked[job.media_id] <= 0:
                del self._tracked[job.media_id]

    async def _process_job(self, job: MediaJob) -> None:
        """Claim the row, run both analysis stages and store the result.

        Any exception leaves the row in 'processing'; the caller decides
        between retry and permanent failure.
        """
        logger.info("Processing media %s (attempt %d)", job.media_id, job.retry_count + 1)

        if not self._store.claim(job.media_id, allow_terminal=job.force):
            return

        if job.result is None:
            image_bytes = await self._with_timeout(
                self._fetcher.fetch(job.media_url), "Image fetch"
            )
            analysis = await self._with_timeout(
                self._vision.analyze(image_bytes, job.category), "Vision analysis"
            )
            enriched_context = build_enriched_context(job.context, analysis.tags)
            embedding = await self._with_timeout(
                self._vision.embed(image_bytes, enriched_context), "Embedding generation"
            )
            job.result = JobResult(
                tags=analysis.tags,
                embedding=embedding,
                colors=analysis.dominant_colors,
            )
        else:
            logger.info("Reusing analysis for media %s, retrying the write only", job.media_id)

        if not self._store.complete(
            job.media_id, job.result.tags, job.result.embedding, job.result.colors
        ):
            logger.warning("Media %s disappeared before results were saved", job.media_id)
            return

        logger.info(
            "Media %s processed: %d tags, %d-dim embedding",
            job.media_id,
            len(job.result.tags),
            len(job.result.embedding),
        )

    async def _with_timeout(self, coro, what: str):
        timeout = self._settings.media_job_timeout_seconds
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MediaProcessingError(f"{what} timed out after {timeout}s") from exc
