"""Base64 image helpers: decode, encode, and size capping for generation."""

import base64
import binascii
import io
import logging

from PIL import Image, UnidentifiedImageError

from .errors import ImageDecodeError
from .models import EncodedImage

logger = logging.getLogger(__name__)

COMPRESSION_SAFETY_FACTOR = 0.9
COMPRESSION_JPEG_QUALITY = 85


def strip_data_url(data: str) -> str:
    """Drop a leading 'data:image/...;base64,' prefix if present."""
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


def decode_image(data: str, label: str = "image") -> Image.Image:
    """Decode a base64 image into an RGBA Pillow image.

    Raises:
        ImageDecodeError: payload is not valid base64, not an image, or has
            zero area.
    """
    try:
        raw = base64.b64decode(strip_data_url(data), validate=False)
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (binascii.Error, UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode {label}: {e}") from e

    width, height = img.size
    if width == 0 or height == 0:
        raise ImageDecodeError(f"{label} has zero area ({width}x{height})")
    return img.convert("RGBA")


def encode_png(img: Image.Image) -> str:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def approx_decoded_size(data: str) -> int:
    """Decoded byte size estimated from base64 length."""
    return len(strip_data_url(data)) * 3 // 4


def compress_for_generation(data: str, max_bytes: int) -> EncodedImage:
    """Cap an image's size before sending it to the generation capability.

    Images at or under max_bytes pass through unchanged as PNG. Larger ones
    are scaled by sqrt(max / size) * 0.9 and re-encoded as JPEG quality 85.

    Args:
        data: Base64 image (PNG expected, data-URL prefix tolerated).
        max_bytes: Upper bound on the decoded payload size.

    Returns:
        EncodedImage with the media type matching the payload.
    """
    payload = strip_data_url(data)
    approx = approx_decoded_size(payload)
    if approx <= max_bytes:
        return EncodedImage(data=payload, media_type="image/png")

    img = decode_image(payload, label="generation input")
    scale = (max_bytes / approx) ** 0.5 * COMPRESSION_SAFETY_FACTOR
    new_size = (max(1, int(img.width * scale)), max(1, int(img.height * scale)))
    resized = img.convert("RGB").resize(new_size)

    buf = io.BytesIO()
    resized.save(buf, format="JPEG", quality=COMPRESSION_JPEG_QUALITY)
    compressed = base64.b64encode(buf.getvalue()).decode("ascii")

    logger.info(
        f"Compressed image {img.width}x{img.height} -> {new_size[0]}x{new_size[1]} "
        f"({approx} -> {len(buf.getvalue())} bytes)"
    )
    return EncodedImage(data=compressed, media_type="image/jpeg")
