"""
Receipt image compression.

Phone photos are large; receipts only need to stay legible. Images are
scaled to fit a bounding box and re-encoded as JPEG, but the result is
only used when it is actually smaller than the original.
"""

from io import BytesIO

import structlog
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class CompressedImage(BaseModel):
    """Bytes to upload, plus what happened to them."""

    data: bytes
    content_type: str
    compressed: bool
    original_size: int

    @property
    def size(self) -> int:
        return len(self.data)


def fit_within(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Scale (width, height) down to fit the box, keeping the aspect ratio."""
    if width > max_width:
        height = round(height * max_width / width)
        width = max_width
    if height > max_height:
        width = round(width * max_height / height)
        height = max_height
    return max(width, 1), max(height, 1)


def compress_image(
    data: bytes,
    content_type: str,
    max_width: int = 1200,
    max_height: int = 1200,
    quality: int = 85,
    threshold_bytes: int = 100 * 1024,
) -> CompressedImage:
    """
    Compress a receipt image for upload.

    Non-images and images below `threshold_bytes` pass through untouched,
    as does anything Pillow can't decode.
    """
    original = CompressedImage(
        data=data,
        content_type=content_type,
        compressed=False,
        original_size=len(data),
    )

    if not (content_type or "").startswith("image/"):
        return original

    if len(data) < threshold_bytes:
        logger.debug("image_compression_skipped", size=len(data))
        return original

    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            width, height = fit_within(img.width, img.height, max_width, max_height)

            if img.mode in ("RGBA", "LA", "P"):
                # JPEG has no alpha channel
                rgba = img.convert("RGBA")
                flattened = Image.new("RGB", rgba.size, (255, 255, 255))
                flattened.paste(rgba, mask=rgba.split()[-1])
            else:
                flattened = img.convert("RGB")

            if (width, height) != flattened.size:
                flattened = flattened.resize((width, height), Image.LANCZOS)

            buffer = BytesIO()
            flattened.save(buffer, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.warning("image_compression_failed", error=str(e))
        return original

    output = buffer.getvalue()
    if len(output) >= len(data):
        logger.info("image_compression_not_beneficial", size=len(data))
        return original

    logger.info(
        "image_compressed",
        original_size=len(data),
        compressed_size=len(output),
        savings=f"{(1 - len(output) / len(data)) * 100:.1f}%",
    )
    return CompressedImage(
        data=output,
        content_type="image/jpeg",
        compressed=True,
        original_size=len(data),
    )
