"""Exception hierarchy for the media processing pipeline.

Every collaborator of the media processor raises a subclass of
MediaProcessingError. The ``retryable`` flag tells the drain loop whether a
failed job goes back on the queue or is failed permanently.
"""

from __future__ import annotations


class MediaProcessingError(Exception):
    """Base exception for media processing failures."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ImageFetchError(MediaProcessingError):
    """Raised when the source image cannot be downloaded."""


class VisionError(MediaProcessingError):
    """Raised when the analysis provider fails (tags or embedding)."""


class MediaStoreError(MediaProcessingError):
    """Raised when a media record cannot be read or written."""


def is_retryable(exc: BaseException) -> bool:
    """Unknown exceptions are retried until the retry budget runs out."""
    if isinstance(exc, MediaProcessingError):
        return exc.retryable
    return True
