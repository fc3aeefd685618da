"""
WebP re-encoding of gallery uploads bound for Cloudinary.
"""
import io
import logging
from typing import Optional, Tuple
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

WEBP_QUALITY = 85
WEBP_METHOD = 6  # slowest, smallest output
MAX_DIMENSION = 3840


def _to_saveable_mode(image: Image.Image) -> Image.Image:
    if image.mode == "P":
        return image.convert("RGBA")
    if image.mode in ("RGB", "RGBA", "LA"):
        return image
    return image.convert("RGB")


def convert_to_webp(
    image_bytes: bytes,
    quality: int = WEBP_QUALITY,
    method: int = WEBP_METHOD,
    max_dimension: Optional[int] = MAX_DIMENSION,
) -> Tuple[bytes, bool]:
    """
    Re-encode an uploaded image as WebP, downscaling anything larger than
    max_dimension on either side.

    WebP input and animated images come back untouched. Bytes Pillow cannot
    read are returned as-is so the caller can still store the original.

    Returns:
        (image bytes, whether those bytes are WebP)
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as source:
            if source.format == "WEBP":
                return image_bytes, True
            if getattr(source, "is_animated", False):
                logger.debug("Animated image, keeping original encoding")
                return image_bytes, False

            image = _to_saveable_mode(source)
            original_size = image.size
            if max_dimension and max(original_size) > max_dimension:
                image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
                logger.info(f"Downscaled image from {original_size[0]}x{original_size[1]} to {image.size[0]}x{image.size[1]}")

            buffer = io.BytesIO()
            image.save(buffer, format="WEBP", quality=quality, method=method)
    except UnidentifiedImageError:
        logger.warning("Upload is not an image Pillow can read, storing it unconverted")
        return image_bytes, False
    except (OSError, ValueError) as e:
        logger.error(f"WebP conversion failed: {str(e)}", exc_info=True)
        return image_bytes, False

    webp_bytes = buffer.getvalue()
    logger.info(f"Converted upload to WebP: {len(image_bytes):,} -> {len(webp_bytes):,} bytes")
    return webp_bytes, True
