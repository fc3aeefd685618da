"""
SQLAlchemy models for the application.
All database models inherit from Base (declarative base).
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import relationship
from village_portal.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to UTC; naive values are taken to already be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GalleryImage(Base):
    """
    Gallery image model.
    Stores the public path of an uploaded image plus its display metadata.
    Rows are created by the bulk upload workflow and never updated in place.
    """
    __tablename__ = "gallery_images"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    image_path = Column(String(500), nullable=False)
    upload_date = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    category = Column(String(50), nullable=False, default="General", index=True)
    description = Column(String(500), nullable=True)


class VillageInfo(Base):
    """General village profile shown on the home page."""
    __tablename__ = "village_info"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    population = Column(Integer, nullable=True)
    area = Column(String(50), nullable=True)
    main_crops = Column(String(500), nullable=True)  # comma separated
    sarpanch_name = Column(String(100), nullable=True)
    contact_email = Column(String(200), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def main_crops_count(self) -> int:
        if not self.main_crops:
            return 0
        return len(self.main_crops.split(","))


class News(Base):
    __tablename__ = "news"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    published_date = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    image_path = Column(String(500), nullable=True)


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    event_date = Column(DateTime(timezone=True), nullable=False, index=True)
    location = Column(String(200), nullable=True)


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("admin_users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True)


class AdminUser(Base):
    """
    Administrative account.
    Password is stored as a bcrypt hash; lockout fields back the failed-login policy.
    """
    __tablename__ = "admin_users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    email = Column(String(200), nullable=False, unique=True, index=True)
    full_name = Column(String(200), nullable=True)
    password_hash = Column(String(200), nullable=False)
    email_confirmed = Column(Boolean, default=False, nullable=False)
    failed_login_count = Column(Integer, default=0, nullable=False)
    lockout_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # selectin: lazy loads are not available on AsyncSession
    roles = relationship("Role", secondary=user_roles, lazy="selectin")

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.roles]
