from __future__ import annotations

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    domain: str = "localhost"
    db_url: str = "sqlite:///./glowbook.db"
    admin_token: str = ""  # Bearer token for /api/admin routes; empty disables them

    # Vision analysis (OpenAI-compatible chat endpoint with image input)
    vision_api_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    vision_api_key: str = ""
    vision_model: str = "gemini-2.5-flash"
    vision_timeout_seconds: float = 60.0
    vision_max_image_mb: float = 10.0
    # Multimodal embedding (Vertex AI predict request shape)
    embedding_api_url: str = ""
    embedding_api_key: str = ""
    embedding_dimension: int = 1408

    # Image download
    image_fetch_timeout_seconds: float = 30.0
    image_fetch_max_bytes: int = 20 * 1024 * 1024

    # Media processing queue
    media_max_retries: int = 3
    media_rate_limit_delay_ms: int = 500
    media_job_timeout_seconds: float = 120.0  # Per external call, must stay below the stale window
    media_stale_after_minutes: int = 5
    media_recovery_batch_size: int = 50
    media_recover_on_startup: bool = True

    @model_validator(mode="after")
    def _check_job_timeout(self) -> Settings:
        if self.media_job_timeout_seconds <= 0:
            raise ValueError("MEDIA_JOB_TIMEOUT_SECONDS must be positive.")
        if self.media_job_timeout_seconds >= self.media_stale_after_minutes * 60:
            raise ValueError(
                "MEDIA_JOB_TIMEOUT_SECONDS must be shorter than MEDIA_STALE_AFTER_MINUTES, "
                "otherwise recovery can reclaim a job that is still running."
            )
        if self.media_max_retries < 0:
            raise ValueError("MEDIA_MAX_RETRIES cannot be negative.")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
