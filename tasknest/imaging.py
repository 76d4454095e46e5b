"""Image intake: measure, compress and package photos for upload and storage.

Photos arrive either as a file path or as raw bytes (a multipart upload or a
``data:image/...;base64,`` payload from the mobile client). ``process_image``
encodes the photo once at full quality and, if it is over the byte budget,
hands it to ``compress_image``, which re-encodes the *original* source at a
falling JPEG quality and a shrinking bounding box until the result fits or the
attempt limit is reached. Passes are strictly sequential: each one depends on
the measured size of the previous one.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Tuple, Union

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_BYTES = 1024 * 1024
DEFAULT_QUALITY = 0.8
FULL_QUALITY = 1.0

MAX_ATTEMPTS = 8
QUALITY_STEP = 0.1
MIN_QUALITY = 0.1

INITIAL_DIMENSION = 800
DIMENSION_STEP = 100
MIN_DIMENSION = 400

JPEG_DATA_URI_PREFIX = "data:image/jpeg;base64,"
_DATA_URI_PREFIX = re.compile(r"^data:image/[a-z0-9.+-]+;base64,", re.IGNORECASE)

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")

ImageSource = Union[str, Path, bytes]
Box = Tuple[int, int]


class ImageProcessingError(Exception):
    """Base class for failures of the intake pipeline."""


class InvalidAssetError(ImageProcessingError):
    """The asset carries no usable image source, or its payload is malformed."""


class EncodingFailure(ImageProcessingError):
    """The encoder rejected the input or failed mid-pass."""

    def __init__(self, message: str = "Failed to process image, try again") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ImageAsset:
    """A captured or selected photo.

    Fields:
        uri: Path to the image on disk.
        data: Image file bytes held in memory.
        width: Pixel width reported by the picker, if known.
        height: Pixel height reported by the picker, if known.
        base64: Base64 (or data URI) form of the file, if the picker supplied one.
    """
    uri: Optional[str] = None
    data: Optional[bytes] = None
    width: Optional[int] = None
    height: Optional[int] = None
    base64: Optional[str] = None

    @classmethod
    def from_data_uri(cls, text: str) -> "ImageAsset":
        return cls(data=decode_data_uri(text))

    @property
    def source(self) -> Optional[ImageSource]:
        if self.uri:
            return self.uri
        if self.data:
            return self.data
        if self.base64:
            return decode_data_uri(self.base64)
        return None


@dataclass(frozen=True)
class EncodedImage:
    """Output of one encoding pass. ``size`` is always measured from the payload."""
    base64: str
    width: int
    height: int
    quality: float

    @property
    def size(self) -> int:
        return base64_size(self.base64)

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.base64)

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.base64)


@dataclass(frozen=True)
class CompressionResult:
    """Final answer of ``process_image``.

    ``budget_met`` is False when compression ran out of attempts; the caller
    decides whether an oversized best-effort result is acceptable.
    """
    base64: str
    size: int
    compressed: bool
    max_size_bytes: int
    width: int
    height: int
    quality: float
    original_size: Optional[int] = None

    @classmethod
    def from_encoded(
        cls,
        encoded: EncodedImage,
        *,
        compressed: bool,
        max_size_bytes: int,
        original_size: Optional[int] = None,
    ) -> "CompressionResult":
        return cls(
            base64=encoded.base64,
            size=encoded.size,
            compressed=compressed,
            max_size_bytes=max_size_bytes,
            width=encoded.width,
            height=encoded.height,
            quality=encoded.quality,
            original_size=original_size,
        )

    @property
    def budget_met(self) -> bool:
        return self.size <= self.max_size_bytes

    @property
    def data_uri(self) -> str:
        return to_data_uri(self.base64)

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.base64)


class ImageEncoder(Protocol):
    async def encode(self, source: ImageSource, box: Optional[Box], quality: float) -> EncodedImage:
        ...


class PillowEncoder:
    """JPEG encoder backed by Pillow.

    The image is fitted inside ``box`` keeping its aspect ratio and is never
    upscaled; ``box=None`` keeps the original dimensions. Pillow work runs in
    a worker thread so the event loop stays responsive.
    """

    async def encode(self, source: ImageSource, box: Optional[Box], quality: float) -> EncodedImage:
        return await asyncio.to_thread(self._encode_sync, source, box, quality)

    def _encode_sync(self, source: ImageSource, box: Optional[Box], quality: float) -> EncodedImage:
        fp = io.BytesIO(source) if isinstance(source, bytes) else source
        try:
            with Image.open(fp) as im:
                im = ImageOps.exif_transpose(im).convert("RGB")
                if box is not None:
                    im.thumbnail(box)

                out = io.BytesIO()
                im.save(out, format="JPEG", quality=jpeg_quality(quality))
                width, height = im.size
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise EncodingFailure() from exc

        return EncodedImage(
            base64=base64.b64encode(out.getvalue()).decode("ascii"),
            width=width,
            height=height,
            quality=quality,
        )


def jpeg_quality(quality: float) -> int:
    """Map a (0, 1] quality fraction onto Pillow's 1..100 JPEG scale."""
    return max(1, min(100, int(round(quality * 100))))


def strip_data_uri(text: str) -> str:
    return _DATA_URI_PREFIX.sub("", text, count=1)


def to_data_uri(payload: str) -> str:
    if _DATA_URI_PREFIX.match(payload):
        return payload
    return JPEG_DATA_URI_PREFIX + payload


def decode_data_uri(text: str) -> bytes:
    try:
        payload = "".join(strip_data_uri(text).split())
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidAssetError("Invalid image payload") from exc


def base64_size(text: Optional[str]) -> int:
    """Exact decoded byte length of a base64 string (data URI prefix allowed)."""
    if not text:
        return 0
    data = strip_data_uri(text)
    padding = min(2, len(data) - len(data.rstrip("=")))
    return (len(data) * 3) // 4 - padding


def format_file_size(num_bytes: float) -> str:
    if num_bytes <= 0:
        return "0 Bytes"

    i = int(math.floor(math.log(num_bytes) / math.log(1024)))
    i = max(0, min(i, len(_SIZE_UNITS) - 1))
    if i == 0:
        return f"{int(num_bytes)} Bytes"
    return f"{num_bytes / math.pow(1024, i):.2f} {_SIZE_UNITS[i]}"


def validate_image_size(text: Optional[str], max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES) -> bool:
    """True when the payload is empty or fits the budget."""
    if not text:
        return True

    size = base64_size(text)
    if size > max_size_bytes:
        logger.warning(
            "Image is %s, larger than the %s limit",
            format_file_size(size),
            format_file_size(max_size_bytes),
        )
        return False
    return True


def next_quality(quality: float) -> float:
    return round(max(MIN_QUALITY, quality - QUALITY_STEP), 2)


def target_box(attempt: int) -> Box:
    side = max(MIN_DIMENSION, INITIAL_DIMENSION - attempt * DIMENSION_STEP)
    return side, side


async def _encode(
    encoder: ImageEncoder, source: ImageSource, box: Optional[Box], quality: float
) -> EncodedImage:
    try:
        return await encoder.encode(source, box, quality)
    except ImageProcessingError:
        raise
    except Exception as exc:
        raise EncodingFailure() from exc


async def compress_image(
    source: ImageSource,
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
    initial_quality: float = DEFAULT_QUALITY,
    encoder: Optional[ImageEncoder] = None,
) -> EncodedImage:
    """Re-encode ``source`` until it fits ``max_size_bytes`` or attempts run out.

    Makes at most ``MAX_ATTEMPTS + 1`` encoder calls. When the budget cannot be
    met the last encoding is returned as is; compare its ``size`` against the
    budget to detect that.
    """
    if not 0 < initial_quality <= 1:
        raise ValueError(f"initial_quality must be in (0, 1], got {initial_quality}")
    if max_size_bytes < 0:
        raise ValueError(f"max_size_bytes must be >= 0, got {max_size_bytes}")

    encoder = encoder or PillowEncoder()
    quality = initial_quality
    attempt = 0

    encoded = await _encode(encoder, source, target_box(attempt), quality)

    while attempt < MAX_ATTEMPTS:
        size = encoded.size
        logger.info(
            "Compression attempt %d: %s (quality %.1f, %dx%d)",
            attempt + 1,
            format_file_size(size),
            quality,
            encoded.width,
            encoded.height,
        )
        if size <= max_size_bytes:
            logger.info("Image compressed to %s", format_file_size(size))
            return encoded

        quality = next_quality(quality)
        attempt += 1
        # Always from the original source, never from the previous pass.
        encoded = await _encode(encoder, source, target_box(attempt), quality)

    logger.warning(
        "Could not compress image below %s. Final size: %s",
        format_file_size(max_size_bytes),
        format_file_size(encoded.size),
    )
    return encoded


async def process_image(
    asset: Optional[ImageAsset],
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
    *,
    encoder: Optional[ImageEncoder] = None,
    on_advisory: Optional[Callable[[str], None]] = None,
) -> CompressionResult:
    """Encode a picked photo, compressing it only when it exceeds the budget.

    Raises:
        InvalidAssetError: the asset has no usable source.
        EncodingFailure: the encoder failed on any pass.
    """
    source = asset.source if asset is not None else None
    if source is None:
        raise InvalidAssetError("Invalid image asset")

    encoder = encoder or PillowEncoder()

    original = await _encode(encoder, source, None, FULL_QUALITY)
    original_size = original.size
    logger.info("Original image size: %s", format_file_size(original_size))

    if original_size <= max_size_bytes:
        return CompressionResult.from_encoded(
            original, compressed=False, max_size_bytes=max_size_bytes
        )

    advisory = (
        f"The selected image is {format_file_size(original_size)}. "
        f"It will be compressed to under {format_file_size(max_size_bytes)}."
    )
    logger.info("Image too large: %s", advisory)
    if on_advisory is not None:
        on_advisory(advisory)

    encoded = await compress_image(source, max_size_bytes, encoder=encoder)
    return CompressionResult.from_encoded(
        encoded,
        compressed=True,
        max_size_bytes=max_size_bytes,
        original_size=original_size,
    )
