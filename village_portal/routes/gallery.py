"""
Gallery routes for public gallery image retrieval.
Provides endpoints for fetching gallery images to display in the frontend.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List, Optional
import logging

from village_portal.config import settings
from village_portal.database import get_db
from village_portal.models import GalleryImage
from village_portal.schemas import GalleryImageResponse

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "All"

# Create router instance
router = APIRouter()


@router.get("/gallery-images", response_model=List[GalleryImageResponse])
async def get_gallery_images(
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """
    Get gallery images for one category, newest first.

    Args:
        category: Category to show; missing or blank means DEFAULT_GALLERY_CATEGORY,
            "All" means every category
        db: Database session (injected by FastAPI dependency)

    Returns:
        list[GalleryImageResponse]: Images ordered by upload date descending

    Raises:
        HTTPException: 500 if database query fails
    """
    try:
        category = (category or "").strip() or settings.DEFAULT_GALLERY_CATEGORY

        query = select(GalleryImage).order_by(GalleryImage.upload_date.desc(), GalleryImage.id.desc())
        if category != ALL_CATEGORIES:
            query = query.where(GalleryImage.category == category)

        result = await db.execute(query)
        images = result.scalars().all()

        logger.info(f"Retrieved {len(images)} gallery images (category: {category})")

        return [GalleryImageResponse.model_validate(img) for img in images]

    except Exception as e:
        logger.error(f"Failed to retrieve gallery images: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Failed to retrieve gallery images",
                "detail": str(e)
            }
        )


@router.get("/gallery-categories", response_model=List[str])
async def get_gallery_categories(db: AsyncSession = Depends(get_db)):
    """Distinct categories that have at least one image, alphabetical."""
    result = await db.execute(
        select(GalleryImage.category).distinct().order_by(GalleryImage.category.asc())
    )
    return list(result.scalars().all())
