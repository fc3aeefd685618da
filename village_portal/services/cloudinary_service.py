"""
Cloudinary access for the optional external gallery storage backend
(STORAGE_BACKEND=cloudinary).
"""
from typing import Any, Awaitable, Callable, Dict, List
import asyncio
import logging
import re

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from village_portal.config import settings

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

_DELIVERY_URL_PATTERN = re.compile(r"/image/upload(?:/v\d+)?/(.+)$")

cloudinary.config(
    cloud_name=settings.CLOUDINARY_CLOUD_NAME,
    api_key=settings.CLOUDINARY_API_KEY,
    api_secret=settings.CLOUDINARY_API_SECRET,
    secure=True,
)


async def _call_with_retries(description: str, call: Callable[[], Awaitable[Dict[str, Any]]]) -> Dict[str, Any]:
    """Run a Cloudinary API call, retrying transient errors with 1s, 2s backoff."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            return await call()
        except CloudinaryError as e:
            if attempt == MAX_ATTEMPTS:
                logger.error(f"Cloudinary {description} failed after {MAX_ATTEMPTS} attempts: {str(e)}")
                raise
            logger.warning(f"Cloudinary {description} error (attempt {attempt}/{MAX_ATTEMPTS}): {str(e)}")
            await asyncio.sleep(2 ** (attempt - 1))


async def store_gallery_image(content: bytes, public_id: str, folder: str) -> Dict[str, Any]:
    """
    Upload image bytes under a fixed public_id.

    Returns:
        dict with url (secure delivery URL), public_id and bytes stored

    Raises:
        CloudinaryError: if every attempt fails
    """
    async def call():
        return await asyncio.to_thread(
            cloudinary.uploader.upload,
            content,
            folder=folder,
            public_id=public_id,
            overwrite=False,
            resource_type="image",
        )

    result = await _call_with_retries(f"upload of {public_id}", call)
    logger.info(f"Stored gallery image in Cloudinary: {result['public_id']}")
    return {
        "url": result["secure_url"],
        "public_id": result["public_id"],
        "bytes": result.get("bytes", 0),
    }


async def remove_gallery_image(public_id: str) -> bool:
    """
    Destroy an uploaded asset and invalidate its CDN copies.

    Returns:
        True if Cloudinary reports the asset deleted or already gone
    """
    async def call():
        return await asyncio.to_thread(
            cloudinary.uploader.destroy,
            public_id,
            invalidate=True,
            resource_type="image",
        )

    result = await _call_with_retries(f"delete of {public_id}", call)
    outcome = result.get("result")
    if outcome not in ("ok", "not found"):
        logger.warning(f"Unexpected Cloudinary delete result for {public_id}: {result}")
        return False
    logger.info(f"Removed gallery image from Cloudinary: {public_id} ({outcome})")
    return True


def public_id_from_url(url: str) -> str:
    """
    Recover the public_id (folder segments included, extension dropped) from
    a delivery URL such as
    https://res.cloudinary.com/<cloud>/image/upload/v123/gallery/abc.webp

    Raises:
        ValueError: if the URL is not a Cloudinary image delivery URL
    """
    match = _DELIVERY_URL_PATTERN.search(url or "")
    if not match:
        raise ValueError(f"Invalid Cloudinary URL format: {url}")
    folder, _, name = match.group(1).rpartition("/")
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return f"{folder}/{stem}" if folder else stem


def missing_credentials() -> List[str]:
    """Names of the Cloudinary settings that are still empty."""
    missing = [
        name for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET")
        if not getattr(settings, name)
    ]
    for name in missing:
        logger.warning(f"{name} not configured")
    return missing
