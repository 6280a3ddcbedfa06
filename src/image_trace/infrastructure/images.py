"""
Image payload decoding.

Turns the raw request input into validated image bytes:
- raw bytes are used as-is
- ``data:image/...;base64,`` URLs and bare base64 strings are decoded
- ``http(s)`` references are fetched with httpx, size-capped

Every payload is opened with Pillow to reject non-images and detect the
MIME type.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re

import httpx
from PIL import Image, UnidentifiedImageError

from image_trace.shared.exceptions import InvalidImageError, InvalidParameterError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_PIXELS = 40_000_000

ALLOWED_FORMATS: dict[str, str] = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
}

_DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


def decode_image_payload(payload: bytes | str) -> bytes:
    """Raw bytes, a base64 data URL or a bare base64 string -> bytes."""
    if isinstance(payload, bytes):
        return payload
    text = _DATA_URL_RE.sub("", payload.strip())
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("payload is not valid base64") from e


def detect_mime_type(image_bytes: bytes, max_pixels: int = DEFAULT_MAX_PIXELS) -> str:
    """
    Validate that ``image_bytes`` is a supported image and return its MIME type.

    Raises:
        InvalidImageError: empty, undecodable, oversized or unsupported payload
    """
    if not image_bytes:
        raise InvalidImageError()
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise InvalidImageError(f"image is {width}x{height}, exceeds {max_pixels} pixels")
            img.verify()
            fmt = img.format
    except Image.DecompressionBombError as e:
        raise InvalidImageError("image dimensions exceed the decompression limit") from e
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidImageError("payload is not a decodable image") from e
    if fmt not in ALLOWED_FORMATS:
        raise InvalidImageError(f"unsupported format {fmt}")
    return ALLOWED_FORMATS[fmt]


class ImageLoader:
    """
    Resolves request image input into validated bytes.

    Args:
        max_bytes: Upper bound for decoded or fetched payloads
        max_pixels: Upper bound for width x height of the decoded image
        client: Optional httpx client for reference fetching (tests inject one)
    """

    def __init__(
        self,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_pixels: int = DEFAULT_MAX_PIXELS,
        fetch_timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._max_pixels = max_pixels
        self._fetch_timeout = fetch_timeout
        self._client = client

    async def load(
        self,
        image_bytes: bytes | str | None = None,
        image_reference: str | None = None,
    ) -> tuple[bytes, str]:
        """Return ``(bytes, mime_type)`` for whichever input was given."""
        if image_bytes is not None and image_reference is not None:
            raise InvalidParameterError("image", "both", "exactly one of image_bytes / image_reference")
        if image_bytes is not None:
            data = decode_image_payload(image_bytes)
        elif image_reference:
            data = await self.fetch(image_reference)
        else:
            raise InvalidImageError("no image supplied")

        if len(data) > self._max_bytes:
            raise InvalidImageError(f"payload exceeds {self._max_bytes} bytes")
        return data, detect_mime_type(data, self._max_pixels)

    async def fetch(self, url: str) -> bytes:
        if not url.startswith(("http://", "https://")):
            raise InvalidParameterError("image_reference", url, "an http(s) URL")

        client = self._client or httpx.AsyncClient(timeout=self._fetch_timeout, follow_redirects=True)
        try:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise InvalidImageError(f"reference returned HTTP {response.status_code}")
                content_type = response.headers.get("content-type", "")
                if content_type and not content_type.startswith("image/"):
                    raise InvalidImageError(f"reference is not an image ({content_type})")
                chunks = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > self._max_bytes:
                        raise InvalidImageError(f"reference exceeds {self._max_bytes} bytes")
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise InvalidImageError(f"could not fetch reference: {type(e).__name__}") from e
        finally:
            if self._client is None:
                await client.aclose()

        logger.info(f"Fetched image reference ({size} bytes)")
        return b"".join(chunks)
