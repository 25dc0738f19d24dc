"""Image payload loading for multimodal recipes.

Core Functions:
- load_image(): Normalize bytes, file paths, URLs, data URLs or base64 into an ImagePayload (async)
- fetch_image_bytes(): Get image bytes from URL, data URL, base64 or directly (async)
- validate_image_format(): Detect JPEG/PNG/WebP/GIF from magic bytes
- validate_image_size(): Check MAX_IMAGE_SIZE_MB limit
- compress_image(): Downscale and re-encode large images with Pillow
"""

import base64
import binascii
import os
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional

import aiohttp
import filetype
from PIL import Image

from prompt_recipes.core.errors import AppError, ErrorCode
from prompt_recipes.core.policy import safe_execute_async, safe_execute_sync
from prompt_recipes.utils.config import config
from prompt_recipes.utils.logger import logger


SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")


@dataclass(frozen=True)
class ImagePayload:
    """Binary image attached to a model session alongside text."""

    data: bytes
    mime_type: str

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def compress_image(image_bytes: bytes, max_width: int = 1024) -> bytes:
    """Compress image before attaching it to a session.

    Uses JPEG quality=85 + optimize + progressive. Resizes oversized images and
    converts color modes to RGB. Images below COMPRESS_IMG_THRESHOLD_KB are
    returned unchanged.

    Args:
        image_bytes: Raw image bytes to compress
        max_width: Maximum image width in pixels

    Returns:
        Compressed image bytes, or the original bytes if below threshold or on failure
    """
    size_kb = len(image_bytes) / 1024
    if size_kb < config.COMPRESS_IMG_THRESHOLD_KB:
        logger.debug(
            f"Image size {size_kb:.1f}KB below compression threshold "
            f"({config.COMPRESS_IMG_THRESHOLD_KB}KB), skipping compression"
        )
        return image_bytes

    def _compress():
        img = Image.open(BytesIO(image_bytes))

        # Convert RGBA/LA/P to RGB for better compression
        if img.mode in ("RGBA", "LA", "P"):
            img = img.convert("RGBA")
            rgb_img = Image.new("RGB", img.size, (255, 255, 255))
            rgb_img.paste(img, mask=img.split()[-1])
            img = rgb_img
        elif img.mode != "RGB":
            img = img.convert("RGB")

        if img.width > max_width:
            ratio = max_width / img.width
            img = img.resize((max_width, int(img.height * ratio)), Image.Resampling.LANCZOS)

        output = BytesIO()
        img.save(output, format="JPEG", quality=85, optimize=True, progressive=True)
        compressed_bytes = output.getvalue()

        logger.debug(
            f"Image compressed: {len(image_bytes) / 1024:.1f}KB → {len(compressed_bytes) / 1024:.1f}KB"
        )
        # Re-encoding can grow small or already optimized images
        return compressed_bytes if len(compressed_bytes) < len(image_bytes) else image_bytes

    return safe_execute_sync(_compress, "Image compression", log_level="warning", default_return=image_bytes)


def _decode_base64(value: str) -> Optional[bytes]:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


async def fetch_image_bytes(image_source: str | bytes) -> Optional[bytes]:
    """Fetch image bytes from URL or return directly if bytes.

    Handles multiple image source formats:
    - Direct bytes: Returned as-is
    - HTTP/HTTPS URLs: Fetched asynchronously (10s timeout)
    - Data URLs (data:image/png;base64,...): Decoded from base64
    - Plain base64 strings: Decoded directly

    Returns:
        Image bytes, or None on any failure (logged as warning).
    """
    if isinstance(image_source, bytes):
        return image_source

    if not isinstance(image_source, str):
        return None

    if image_source.startswith("data:"):

        def _decode_data_url():
            _, encoded = image_source.split(",", 1)
            return base64.b64decode(encoded)

        return safe_execute_sync(_decode_data_url, "Decode data URL", default_return=None)

    if image_source.startswith(("http://", "https://")):

        async def _fetch_url():
            async with aiohttp.ClientSession() as session:
                async with session.get(image_source, timeout=aiohttp.ClientTimeout(total=10)) as response:
                    response.raise_for_status()
                    return await response.read()

        return await safe_execute_async(
            _fetch_url(),
            f"Fetch image from URL: {image_source}",
            log_level="warning",
            default_return=None,
        )

    return _decode_base64(image_source)


def validate_image_format(image_bytes: bytes) -> Optional[str]:
    """Detect the image MIME type from magic bytes.

    Returns:
        The MIME type if it is one of SUPPORTED_MIME_TYPES, otherwise None.
    """
    kind = filetype.guess(image_bytes)
    if kind is None or kind.mime not in SUPPORTED_MIME_TYPES:
        logger.warning(f"Invalid image format: {kind.mime if kind else 'unknown'}. Supported: JPEG, PNG, WebP, GIF.")
        return None
    return kind.mime


def validate_image_size(image_bytes: bytes) -> bool:
    """Validate image size against MAX_IMAGE_SIZE_MB."""
    size_mb = len(image_bytes) / (1024 * 1024)
    if size_mb > config.MAX_IMAGE_SIZE_MB:
        logger.warning(f"Image size {size_mb:.2f}MB exceeds limit of {config.MAX_IMAGE_SIZE_MB}MB")
        return False
    return True


async def load_image(source: "ImagePayload | bytes | str | Path") -> ImagePayload:
    """Normalize an image source into a validated payload.

    Pipeline: read or fetch bytes → validate format → validate size → optionally compress.

    Args:
        source: An ImagePayload, raw bytes, a filesystem path, an http(s) URL,
            a data URL or a base64 string.

    Returns:
        ImagePayload ready to attach to a session.

    Raises:
        AppError: INVALID_INPUT if the image cannot be read, has an unsupported
            format, or exceeds the size limit.
    """
    if isinstance(source, ImagePayload):
        return source

    image_bytes: Optional[bytes]
    if isinstance(source, Path) or (
        isinstance(source, str) and not source.startswith(("http://", "https://", "data:")) and os.path.isfile(source)
    ):
        image_bytes = safe_execute_sync(lambda: Path(source).read_bytes(), f"Read image file: {source}")
    else:
        image_bytes = await fetch_image_bytes(source)

    if not image_bytes:
        raise AppError("Could not read image data", ErrorCode.INVALID_INPUT)

    mime_type = validate_image_format(image_bytes)
    if mime_type is None:
        raise AppError("Unsupported image format", ErrorCode.INVALID_INPUT)

    if not validate_image_size(image_bytes):
        raise AppError(f"Image exceeds {config.MAX_IMAGE_SIZE_MB}MB limit", ErrorCode.INVALID_INPUT)

    if config.COMPRESS_IMG and mime_type in ("image/jpeg", "image/png"):
        compressed = compress_image(image_bytes)
        if compressed is not image_bytes:
            return ImagePayload(data=compressed, mime_type="image/jpeg")

    return ImagePayload(data=image_bytes, mime_type=mime_type)
