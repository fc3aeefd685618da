"""
Startup seeding of the admin account, the Admin role and default content.
Safe to run on every restart; all state lives in the database.
"""
from datetime import datetime, timedelta, timezone
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from village_portal.config import settings, DEFAULT_ADMIN_PASSWORD
from village_portal.models import Event, News, VillageInfo
from village_portal.services.identity import ADMIN_ROLE, IdentityError, IdentityManager

logger = logging.getLogger(__name__)


async def ensure_admin_role(identity: IdentityManager) -> None:
    if await identity.role_exists(ADMIN_ROLE):
        logger.info(f"Role '{ADMIN_ROLE}' already exists")
        return
    await identity.create_role(ADMIN_ROLE)
    logger.info(f"Role '{ADMIN_ROLE}' created")


async def ensure_admin_user(identity: IdentityManager) -> None:
    """
    Create the designated admin account if neither its email nor its username is taken.
    An existing account is left alone apart from restoring its Admin role membership.
    """
    user = await identity.find_by_email(settings.ADMIN_EMAIL)
    if user is None:
        user = await identity.find_by_username(settings.ADMIN_USERNAME)

    if user is not None:
        if ADMIN_ROLE not in user.role_names:
            await identity.add_to_role(user, ADMIN_ROLE)
            logger.info(f"Restored '{ADMIN_ROLE}' role for existing admin user {user.username}")
        else:
            logger.info(f"Admin user {user.username} already exists")
        return

    if settings.ADMIN_PASSWORD == DEFAULT_ADMIN_PASSWORD:
        logger.warning(
            "Seeding admin account with the default password. "
            "Set ADMIN_PASSWORD or run set_admin_password.py to change it."
        )

    user = await identity.create_user(
        username=settings.ADMIN_USERNAME,
        email=settings.ADMIN_EMAIL,
        password=settings.ADMIN_PASSWORD,
        full_name=settings.ADMIN_FULL_NAME,
        email_confirmed=True,
    )
    await identity.add_to_role(user, ADMIN_ROLE)
    logger.info(f"Admin user {user.username} created successfully")


async def _table_is_empty(db: AsyncSession, model) -> bool:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar() == 0


async def seed_default_content(db: AsyncSession) -> None:
    """Insert one village profile, news item and event into whichever tables are empty."""
    now = datetime.now(timezone.utc)

    if await _table_is_empty(db, VillageInfo):
        db.add(VillageInfo(
            name="Our Village",
            description="Welcome to the official information portal of our village.",
            main_crops="Paddy, Sugarcane, Cashew",
        ))
        logger.info("Seeded default village information")

    if await _table_is_empty(db, News):
        db.add(News(
            title="Village portal launched",
            content="The village information portal is now online with news, events and a photo gallery.",
            published_date=now,
            is_active=True,
        ))
        logger.info("Seeded default news item")

    if await _table_is_empty(db, Event):
        db.add(Event(
            title="Gram Sabha meeting",
            description="Monthly meeting of the village assembly.",
            event_date=now + timedelta(days=7),
            location="Panchayat Office",
        ))
        logger.info("Seeded default event")

    await db.flush()


async def seed_initial_data(db: AsyncSession, identity: IdentityManager) -> bool:
    """
    Run every seeding step, committing each one separately.

    A failing step is logged and rolled back; later steps still run.

    Args:
        db: Database session used for content rows and commits
        identity: Identity manager bound to the same session

    Returns:
        bool: True if every step succeeded
    """
    steps = [
        ("admin role", lambda: ensure_admin_role(identity)),
        ("admin user", lambda: ensure_admin_user(identity)),
    ]
    if settings.SEED_DEFAULT_CONTENT:
        steps.append(("default content", lambda: seed_default_content(db)))

    ok = True
    for name, step in steps:
        try:
            await step()
            await db.commit()
        except IdentityError as e:
            ok = False
            await db.rollback()
            logger.error(f"Failed to seed {name}: {', '.join(e.errors)}")
        except Exception as e:
            ok = False
            await db.rollback()
            logger.error(f"Failed to seed {name}: {str(e)}", exc_info=True)
    return ok


async def run_bootstrap(session_factory) -> None:
    """
    Open a session and seed it. Never raises; startup continues on failure.
    """
    try:
        async with session_factory() as db:
            logger.info("Seeding initial data...")
            if await seed_initial_data(db, IdentityManager(db)):
                logger.info("Database seeding completed successfully")
            else:
                logger.warning("Database seeding completed with errors")
    except Exception as e:
        logger.error(f"Database seeding failed: {str(e)}", exc_info=True)
