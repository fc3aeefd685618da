"""
CMS API routes for the admin area.
Every endpoint requires a token carrying the Admin role.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List
import logging

from village_portal.config import settings
from village_portal.database import get_db
from village_portal.models import Event, GalleryImage, News, VillageInfo, as_utc
from village_portal.schemas import (
    EventCreate,
    EventResponse,
    EventUpdate,
    GalleryImageResponse,
    NewsCreate,
    NewsResponse,
    NewsUpdate,
    UploadSummaryResponse,
    VillageInfoResponse,
    VillageInfoUpdate,
)
from village_portal.services.gallery_upload import (
    BatchCommitError,
    StorageUnavailableError,
    SubmittedFile,
    UploadValidationError,
    get_persister,
    process_upload,
)
from village_portal.services.identity import ADMIN_ROLE
from village_portal.utils.jwt_auth import require_role
from village_portal.utils.rate_limit import RATE_LIMITS, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cms", tags=["CMS"], dependencies=[Depends(require_role(ADMIN_ROLE))])


async def _read_submitted_files(form) -> List[SubmittedFile]:
    files = []
    for entry in form.getlist("files"):
        # Plain string values under "files" are not uploads
        if not isinstance(entry, UploadFile):
            continue
        content = await entry.read()
        size = entry.size if entry.size is not None else len(content)
        files.append(SubmittedFile(filename=entry.filename or "", size=size, content=content))
    return files


@router.post("/gallery-images", response_model=UploadSummaryResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["upload"])
async def upload_gallery_images(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Upload one or more gallery images under a single category.

    Expects multipart form data with a "files" list and a "category" field.
    Invalid files are skipped and reported; the rest are stored and saved together.

    Returns:
        UploadSummaryResponse: Saved images, per-file errors and a summary message

    Raises:
        HTTPException: 400 if nothing valid was submitted, 500 if storage or the database fails
    """
    try:
        form = await request.form(max_part_size=settings.MAX_FORM_VALUE_BYTES)
        files = await _read_submitted_files(form)
        category = form.get("category")
        if not isinstance(category, str):
            category = ""

        logger.info(f"Found {len(files)} files in form collection")

        result = await process_upload(db, files, category, get_persister())

        return UploadSummaryResponse(
            message=result.message,
            uploaded_count=len(result.images),
            failed_count=len(result.errors),
            errors=result.errors,
            images=[GalleryImageResponse.model_validate(img) for img in result.images],
        )

    except UploadValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": e.message, "errors": e.errors}
        )
    except (StorageUnavailableError, BatchCommitError) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": e.message, "errors": e.errors}
        )
    except StarletteHTTPException:
        # Includes multipart limit errors raised by Starlette and the body size limit
        raise
    except Exception as e:
        logger.error(f"Critical error in upload process: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": f"A critical error occurred: {str(e)}. Please try again or contact support.",
                "errors": []
            }
        )


@router.get("/gallery-images", response_model=List[GalleryImageResponse])
async def get_cms_gallery_images(db: AsyncSession = Depends(get_db)):
    """All gallery images, newest first."""
    result = await db.execute(
        select(GalleryImage).order_by(GalleryImage.upload_date.desc(), GalleryImage.id.desc())
    )
    images = result.scalars().all()
    logger.info(f"Retrieved {len(images)} gallery images for CMS")
    return [GalleryImageResponse.model_validate(img) for img in images]


@router.delete("/gallery-images/{image_id}")
async def delete_cms_gallery_image(image_id: int, db: AsyncSession = Depends(get_db)):
    """
    Delete a gallery image record and its stored file.
    A file that cannot be removed is logged; the record is deleted regardless.
    """
    try:
        image = await db.get(GalleryImage, image_id)
        if not image:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": "Image not found", "detail": f"Image ID {image_id} does not exist"}
            )

        try:
            await get_persister().discard(image.image_path)
        except Exception as e:
            logger.error(f"Failed to delete stored file for image ID {image_id}: {str(e)}", exc_info=True)

        await db.delete(image)
        await db.commit()

        logger.info(f"Successfully deleted image from database: ID {image_id}")
        return {"message": "Image deleted successfully", "image_id": image_id}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting gallery image: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to delete gallery image", "detail": str(e)}
        )


@router.put("/village-info", response_model=VillageInfoResponse)
async def upsert_village_info(payload: VillageInfoUpdate, db: AsyncSession = Depends(get_db)):
    """Replace the village profile, creating it on first use."""
    try:
        result = await db.execute(select(VillageInfo).order_by(VillageInfo.id.asc()).limit(1))
        village_info = result.scalar_one_or_none()
        if village_info is None:
            village_info = VillageInfo()
            db.add(village_info)

        for key, value in payload.model_dump().items():
            setattr(village_info, key, value)

        await db.commit()
        await db.refresh(village_info)
        logger.info("Village information updated")
        return VillageInfoResponse.model_validate(village_info)

    except Exception as e:
        logger.error(f"Error updating village information: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to update village information", "detail": str(e)}
        )


def _apply_update(item, changes: dict, required: set, datetime_fields: set) -> None:
    for key, value in changes.items():
        # null for a required column means "leave unchanged"
        if value is None and key in required:
            continue
        if key in datetime_fields:
            value = as_utc(value)
        setattr(item, key, value)


async def _get_or_404(db: AsyncSession, model, item_id: int, label: str):
    item = await db.get(model, item_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": f"{label} not found", "detail": f"{label} ID {item_id} does not exist"}
        )
    return item


async def _fail(db: AsyncSession, action: str, e: Exception) -> HTTPException:
    logger.error(f"Error trying to {action}: {str(e)}", exc_info=True)
    await db.rollback()
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": f"Failed to {action}", "detail": str(e)}
    )


@router.get("/news", response_model=List[NewsResponse])
async def get_cms_news(db: AsyncSession = Depends(get_db)):
    """All news items including inactive ones, newest first."""
    try:
        result = await db.execute(select(News).order_by(News.published_date.desc(), News.id.desc()))
        return [NewsResponse.model_validate(n) for n in result.scalars().all()]
    except Exception as e:
        raise await _fail(db, "retrieve news", e)


@router.post("/news", response_model=NewsResponse, status_code=status.HTTP_201_CREATED)
async def create_news(payload: NewsCreate, db: AsyncSession = Depends(get_db)):
    try:
        data = payload.model_dump()
        published_date = data.pop("published_date")
        item = News(**data)
        if published_date is not None:
            item.published_date = as_utc(published_date)
        db.add(item)
        await db.commit()
        await db.refresh(item)
        logger.info(f"Created news item: ID {item.id}")
        return NewsResponse.model_validate(item)
    except Exception as e:
        raise await _fail(db, "create news", e)


@router.put("/news/{news_id}", response_model=NewsResponse)
async def update_news(news_id: int, payload: NewsUpdate, db: AsyncSession = Depends(get_db)):
    try:
        item = await _get_or_404(db, News, news_id, "News")
        _apply_update(
            item,
            payload.model_dump(exclude_unset=True),
            required={"title", "content", "published_date", "is_active"},
            datetime_fields={"published_date"},
        )
        await db.commit()
        await db.refresh(item)
        logger.info(f"Updated news item: ID {news_id}")
        return NewsResponse.model_validate(item)
    except HTTPException:
        raise
    except Exception as e:
        raise await _fail(db, "update news", e)


@router.delete("/news/{news_id}")
async def delete_news(news_id: int, db: AsyncSession = Depends(get_db)):
    try:
        item = await _get_or_404(db, News, news_id, "News")
        await db.delete(item)
        await db.commit()
        logger.info(f"Deleted news item: ID {news_id}")
        return {"message": "News deleted successfully", "news_id": news_id}
    except HTTPException:
        raise
    except Exception as e:
        raise await _fail(db, "delete news", e)


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(payload: EventCreate, db: AsyncSession = Depends(get_db)):
    try:
        data = payload.model_dump()
        data["event_date"] = as_utc(data["event_date"])
        item = Event(**data)
        db.add(item)
        await db.commit()
        await db.refresh(item)
        logger.info(f"Created event: ID {item.id}")
        return EventResponse.model_validate(item)
    except Exception as e:
        raise await _fail(db, "create event", e)


@router.put("/events/{event_id}", response_model=EventResponse)
async def update_event(event_id: int, payload: EventUpdate, db: AsyncSession = Depends(get_db)):
    try:
        item = await _get_or_404(db, Event, event_id, "Event")
        _apply_update(
            item,
            payload.model_dump(exclude_unset=True),
            required={"title", "event_date"},
            datetime_fields={"event_date"},
        )
        await db.commit()
        await db.refresh(item)
        logger.info(f"Updated event: ID {event_id}")
        return EventResponse.model_validate(item)
    except HTTPException:
        raise
    except Exception as e:
        raise await _fail(db, "update event", e)


@router.delete("/events/{event_id}")
async def delete_event(event_id: int, db: AsyncSession = Depends(get_db)):
    try:
        item = await _get_or_404(db, Event, event_id, "Event")
        await db.delete(item)
        await db.commit()
        logger.info(f"Deleted event: ID {event_id}")
        return {"message": "Event deleted successfully", "event_id": event_id}
    except HTTPException:
        raise
    except Exception as e:
        raise await _fail(db, "delete event", e)
