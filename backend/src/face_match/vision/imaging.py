"""Image preparation for vision service payloads."""

from io import BytesIO
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from .base import ErrorKind, VisionServiceError

logger = logging.getLogger(__name__)

# Rekognition rejects raw image payloads above 5 MB
MAX_IMAGE_BYTES = 5 * 1024 * 1024
IMAGE_MAX_DIM = 3072


def prepare_image_bytes(
    image_bytes: bytes,
    max_bytes: int = MAX_IMAGE_BYTES,
    max_dim: int = IMAGE_MAX_DIM,
    quality: int = 90
) -> bytes:
    """Shrink an image so it fits in a vision service payload.

    Images already under max_bytes are returned unchanged. Larger images are
    EXIF-transposed, converted to RGB, downscaled so the long side is at most
    max_dim and re-encoded as JPEG.

    Args:
        image_bytes: Encoded image
        max_bytes: Payload limit in bytes
        max_dim: Maximum long side in pixels after downscaling
        quality: JPEG quality for re-encoding

    Returns:
        Encoded image no larger than the original

    Raises:
        VisionServiceError: INVALID_IMAGE if an oversized image cannot be decoded
    """
    if len(image_bytes) <= max_bytes:
        return image_bytes

    try:
        im = Image.open(BytesIO(image_bytes))
        im = ImageOps.exif_transpose(im)
    except (UnidentifiedImageError, OSError) as e:
        raise VisionServiceError(
            ErrorKind.INVALID_IMAGE,
            f"Cannot decode oversized image ({len(image_bytes)} bytes): {e}"
        ) from e

    if im.mode not in ("RGB", "L"):
        im = im.convert("RGB")

    w, h = im.size
    scale = min(1.0, float(max_dim) / float(max(w, h)))
    if scale < 1.0:
        im = im.resize((int(w * scale), int(h * scale)), Image.Resampling.LANCZOS)

    # Lower quality until the payload fits
    while True:
        out = BytesIO()
        im.save(out, format="JPEG", quality=quality, optimize=True)
        data = out.getvalue()
        if len(data) <= max_bytes or quality <= 40:
            break
        quality -= 15

    logger.debug(
        f"Prepared image: {len(image_bytes)} -> {len(data)} bytes, "
        f"{w}x{h} -> {im.size[0]}x{im.size[1]}"
    )
    return data
