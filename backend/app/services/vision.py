"""Vision analysis provider for service media.

Two calls per image:
- analyze: an OpenAI-compatible chat/completions request with the image
  inlined, returning searchable tags and dominant colors.
- embed: a multimodal embedding request (Vertex AI ``predict`` shape) that
  fuses the image with a short context text into a fixed-size vector.

Both raise VisionError. Rate limits, 5xx responses and transport errors are
retryable; other 4xx responses and oversized images are not.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass, field

import httpx

from app.services.category_prompts import build_tagging_prompt, resolve_category
from app.services.errors import VisionError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
MAX_TAGS = 40


@dataclass(frozen=True, slots=True)
class ImageAnalysis:
    """Result of the tagging call."""

    tags: list[str]
    dominant_colors: list[str] = field(default_factory=list)


def normalize_tags(raw_tags: list) -> list[str]:
    """Lowercase, hyphenate and dedupe tags, keeping first-seen order."""
    tags: list[str] = []
    seen: set[str] = set()
    for raw in raw_tags:
        if not isinstance(raw, str):
            continue
        cleaned = re.sub(r"[^\w\s-]", "", raw.strip().lower())
        cleaned = re.sub(r"\s+", "-", cleaned).strip("-")
        if 2 <= len(cleaned) <= 40 and cleaned not in seen:
            seen.add(cleaned)
            tags.append(cleaned)
    return tags[:MAX_TAGS]


def _status_error(source: str, exc: httpx.HTTPStatusError) -> VisionError:
    status = exc.response.status_code
    return VisionError(
        f"{source} returned HTTP {status}: {exc}",
        retryable=status in _RETRYABLE_STATUS,
    )


class VisionService:
    """Tags and multimodal embeddings for service images."""

    __slots__ = (
        "vision_url",
        "model",
        "embedding_url",
        "dimension",
        "_api_key",
        "_embedding_api_key",
        "_timeout",
        "_max_image_bytes",
    )

    def __init__(
        self,
        vision_url: str,
        api_key: str = "",
        model: str = "gemini-2.5-flash",
        embedding_url: str = "",
        embedding_api_key: str = "",
        dimension: int = 1408,
        timeout: float = 60.0,
        max_image_mb: float = 10.0,
    ) -> None:
        self.vision_url = vision_url.rstrip("/")
        self.model = model
        self.embedding_url = embedding_url
        self.dimension = dimension
        self._api_key = api_key
        self._embedding_api_key = embedding_api_key or api_key
        self._timeout = timeout
        self._max_image_bytes = int(max_image_mb * 1024 * 1024)

    def _check_size(self, image_bytes: bytes) -> None:
        if not image_bytes:
            raise VisionError("Image is empty", retryable=False)
        if len(image_bytes) > self._max_image_bytes:
            size_mb = len(image_bytes) / (1024 * 1024)
            raise VisionError(
                f"Image size {size_mb:.2f}MB exceeds "
                f"{self._max_image_bytes / (1024 * 1024):.0f}MB limit",
                retryable=False,
            )

    # ── analyze ──────────────────────────────────────────────────

    async def analyze(self, image_bytes: bytes, category: str | None) -> ImageAnalysis:
        """Extract searchable tags and dominant colors from an image."""
        self._check_size(image_bytes)
        media_category = resolve_category(category)
        image_b64 = base64.b64encode(image_bytes).decode("ascii")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_tagging_prompt(media_category)},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"},
                        },
                    ],
                }
            ],
            "temperature": 0.2,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self.vision_url}/chat/completions",
                    headers=headers,
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
                content = data["choices"][0]["message"]["content"]
        except httpx.ConnectError as exc:
            raise VisionError(f"Cannot connect to vision API at {self.vision_url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise _status_error("Vision API", exc) from exc
        except httpx.TimeoutException as exc:
            raise VisionError(f"Vision API timed out after {self._timeout}s: {exc}") from exc
        except (KeyError, IndexError, TypeError) as exc:
            raise VisionError(f"Unexpected response from vision API: {exc}") from exc

        analysis = self._parse_analysis(content)
        logger.info(
            "Vision analysis (%s): %d tags",
            media_category.value,
            len(analysis.tags),
        )
        return analysis

    @staticmethod
    def _parse_analysis(content: str) -> ImageAnalysis:
        match = _JSON_OBJECT_RE.search(content or "")
        if not match:
            raise VisionError("Vision API did not return a JSON object")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise VisionError(f"Vision API returned invalid JSON: {exc}") from exc

        raw_tags = parsed.get("tags") if isinstance(parsed, dict) else None
        if not isinstance(raw_tags, list):
            raise VisionError("Vision API response has no tag list")
        tags = normalize_tags(raw_tags)
        if not tags:
            raise VisionError("Vision API returned no usable tags")

        raw_colors = parsed.get("colors") or []
        colors = [
            c.lower() for c in raw_colors
            if isinstance(c, str) and _HEX_COLOR_RE.match(c)
        ][:5]
        return ImageAnalysis(tags=tags, dominant_colors=colors)

    # ── embed ────────────────────────────────────────────────────

    async def embed(self, image_bytes: bytes, context_text: str) -> list[float]:
        """Fuse image and context text into one ``dimension``-sized vector."""
        self._check_size(image_bytes)
        if not self.embedding_url:
            raise VisionError("Embedding API URL is not configured", retryable=False)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._embedding_api_key}",
        }
        instance: dict = {
            "image": {"bytesBase64Encoded": base64.b64encode(image_bytes).decode("ascii")},
        }
        if context_text:
            instance["text"] = context_text
        payload = {
            "instances": [instance],
            "parameters": {"dimension": self.dimension},
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self.embedding_url,
                    headers=headers,
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
                embedding = data["predictions"][0]["imageEmbedding"]
        except httpx.ConnectError as exc:
            raise VisionError(
                f"Cannot connect to embedding API at {self.embedding_url}: {exc}"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise _status_error("Embedding API", exc) from exc
        except httpx.TimeoutException as exc:
            raise VisionError(f"Embedding API timed out after {self._timeout}s: {exc}") from exc
        except (KeyError, IndexError, TypeError) as exc:
            raise VisionError(f"Unexpected response from embedding API: {exc}") from exc

        if not isinstance(embedding, list) or not embedding:
            raise VisionError("Embedding API returned an empty vector")

        if len(embedding) != self.dimension:
            logger.warning(
                "Expected %d-dim embedding, got %d; adjusting",
                self.dimension,
                len(embedding),
            )
            if len(embedding) > self.dimension:
                embedding = embedding[: self.dimension]
            else:
                embedding = embedding + [0.0] * (self.dimension - len(embedding))

        return [float(v) for v in embedding]
