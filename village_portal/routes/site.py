"""
Public content routes: village profile, news and events.
"""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List
import logging

from village_portal.database import get_db
from village_portal.models import Event, News, VillageInfo
from village_portal.schemas import EventResponse, HomePageResponse, NewsResponse, VillageInfoResponse

logger = logging.getLogger(__name__)

router = APIRouter()

HOME_NEWS_COUNT = 3
HOME_EVENTS_COUNT = 4


def start_of_today() -> datetime:
    now = datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


async def _get_village_info(db: AsyncSession):
    result = await db.execute(select(VillageInfo).order_by(VillageInfo.id.asc()).limit(1))
    return result.scalar_one_or_none()


def _active_news_query():
    return select(News).where(News.is_active.is_(True)).order_by(News.published_date.desc(), News.id.desc())


def _upcoming_events_query():
    return select(Event).where(Event.event_date >= start_of_today()).order_by(Event.event_date.asc())


@router.get("/home", response_model=HomePageResponse)
async def get_home(db: AsyncSession = Depends(get_db)):
    """
    Landing page payload: village profile, the latest active news
    and the next upcoming events (today included).
    """
    try:
        village_info = await _get_village_info(db)
        news = (await db.execute(_active_news_query().limit(HOME_NEWS_COUNT))).scalars().all()
        events = (await db.execute(_upcoming_events_query().limit(HOME_EVENTS_COUNT))).scalars().all()

        return HomePageResponse(
            village_info=VillageInfoResponse.model_validate(village_info) if village_info else None,
            news=[NewsResponse.model_validate(n) for n in news],
            upcoming_events=[EventResponse.model_validate(e) for e in events],
        )
    except Exception as e:
        logger.error(f"Failed to load home page data: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to load home page", "detail": str(e)}
        )


@router.get("/village-info", response_model=VillageInfoResponse)
async def get_village_info(db: AsyncSession = Depends(get_db)):
    village_info = await _get_village_info(db)
    if not village_info:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Village information not found", "detail": "No village information has been entered yet"}
        )
    return VillageInfoResponse.model_validate(village_info)


@router.get("/news", response_model=List[NewsResponse])
async def get_news(db: AsyncSession = Depends(get_db)):
    """Active news items, newest first."""
    result = await db.execute(_active_news_query())
    return [NewsResponse.model_validate(n) for n in result.scalars().all()]


@router.get("/news/{news_id}", response_model=NewsResponse)
async def get_news_item(news_id: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(News).where(News.id == news_id, News.is_active.is_(True)))
    item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "News not found", "detail": f"News ID {news_id} does not exist"}
        )
    return NewsResponse.model_validate(item)


@router.get("/events", response_model=List[EventResponse])
async def get_events(upcoming: bool = False, db: AsyncSession = Depends(get_db)):
    """All events by date, or only those from today onward when upcoming=true."""
    query = _upcoming_events_query() if upcoming else select(Event).order_by(Event.event_date.asc())
    result = await db.execute(query)
    return [EventResponse.model_validate(e) for e in result.scalars().all()]
