"""Buffer lifecycle for image payloads.

Inbound: load the primary image (fatal on failure) and reference images
(best-effort) into Gemini ``Part`` objects.

Outbound: for every inline image in a model response, decode it, hand it to
the :class:`~nano_banana.core.storage.StorageRouter`, then scrub the part's
data field so the parent response shrinks before it is dropped.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

import anyio
import httpx
from google.genai import types
from loguru import logger
from PIL import Image, UnidentifiedImageError

from nano_banana.core.storage import PersistedArtifact, StorageRouter, artifact_name
from nano_banana.errors import ImageLoadError

REMOTE_SCHEMES = ("https://", "http://")

_EXTENSION_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def is_remote_ref(ref: str) -> bool:
    return ref.startswith(REMOTE_SCHEMES)


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    source_image: Optional[str] = None
    reference_images: Tuple[str, ...] = field(default_factory=tuple)


@dataclass
class ProcessedResponse:
    artifacts: List[PersistedArtifact]
    text: str

    @property
    def remote_url(self) -> Optional[str]:
        """URL of the first artifact when it went to remote storage."""
        if self.artifacts and self.artifacts[0].is_remote:
            return self.artifacts[0].location
        return None


# ---------------------------------------------------------------------------
# Inbound images
# ---------------------------------------------------------------------------

def sniff_mime_type(data: bytes, default: str = "image/jpeg") -> str:
    """Identify an image from its header bytes with Pillow."""
    try:
        with Image.open(BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", default)
    except (UnidentifiedImageError, OSError):
        return default


def mime_type_for_path(path: str, data: Optional[bytes] = None) -> str:
    mime = _EXTENSION_MIME.get(Path(path).suffix.lower())
    if mime:
        return mime
    if data is not None:
        return sniff_mime_type(data)
    return "image/jpeg"


async def _fetch(ref: str, http: httpx.AsyncClient) -> Tuple[bytes, str]:
    response = await http.get(ref)
    if response.status_code >= 400:
        raise ImageLoadError(
            f"Failed to fetch image from URL: {response.reason_phrase or response.status_code}",
            data={"url": ref, "status": response.status_code},
        )
    mime = response.headers.get("content-type") or "image/png"
    return response.content, mime.split(";")[0].strip()


async def _read_local(ref: str) -> Tuple[bytes, str]:
    data = await anyio.Path(ref).read_bytes()
    return data, mime_type_for_path(ref, data)


async def load_image(ref: str, http: httpx.AsyncClient) -> types.Part:
    """Load *ref* (path or URL) into an inline-data part.

    Raises :class:`ImageLoadError` on any failure.
    """
    try:
        if is_remote_ref(ref):
            data, mime = await _fetch(ref, http)
        else:
            data, mime = await _read_local(ref)
    except ImageLoadError:
        raise
    except (OSError, ValueError, httpx.HTTPError, httpx.InvalidURL) as exc:
        raise ImageLoadError(f"Could not load image '{ref}': {exc}", data={"ref": ref}) from exc
    return types.Part(inline_data=types.Blob(data=data, mime_type=mime))


async def load_reference_images(refs: Iterable[str], http: httpx.AsyncClient) -> List[types.Part]:
    """Load reference images, skipping any that fail."""
    parts: List[types.Part] = []
    for ref in refs:
        try:
            parts.append(await load_image(ref, http))
        except ImageLoadError as exc:
            logger.warning(f"Skipping reference image {ref}: {exc.message}")
    return parts


# ---------------------------------------------------------------------------
# Outbound images
# ---------------------------------------------------------------------------

def iter_response_parts(response: Any) -> Iterator[Any]:
    """Yield the parts of the first candidate, if any."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        yield part


def decode_inline_data(data: Any) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    return base64.b64decode(data)


def scrub_part(part: Any) -> None:
    """Replace the part's inline data with an empty value in place."""
    inline = getattr(part, "inline_data", None)
    if inline is not None:
        inline.data = b""


async def persist_response_parts(response: Any, router: StorageRouter, prefix: str) -> ProcessedResponse:
    """Persist every inline image of *response* and scrub it afterwards.

    A persist failure propagates; the part is scrubbed either way.
    """
    artifacts: List[PersistedArtifact] = []
    text_chunks: List[str] = []

    for part in iter_response_parts(response):
        if getattr(part, "text", None):
            text_chunks.append(part.text)

        inline = getattr(part, "inline_data", None)
        if inline is None or not inline.data:
            continue

        mime = inline.mime_type or "image/png"
        image_bytes: Optional[bytes] = decode_inline_data(inline.data)
        try:
            artifacts.append(await router.persist(image_bytes, artifact_name(prefix, mime), mime))
        finally:
            image_bytes = None
            scrub_part(part)

    return ProcessedResponse(artifacts=artifacts, text="".join(text_chunks))


def release_parts(parts: Sequence[types.Part]) -> None:
    """Empty outgoing image payloads once the model call has returned."""
    for part in parts:
        scrub_part(part)
