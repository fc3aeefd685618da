"""
Pydantic schemas for request and response data validation.
Defines data structures for API endpoints with automatic validation and serialization.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Optional, List


class GalleryImageResponse(BaseModel):
    """
    Response schema for gallery image data.
    Used by the public gallery and CMS listing endpoints.
    """
    id: int
    title: str
    image_path: str
    upload_date: datetime
    category: str
    description: Optional[str] = None

    model_config = ConfigDict(
        from_attributes=True,  # Enable conversion from SQLAlchemy models
    )


class UploadSummaryResponse(BaseModel):
    """
    Result of a bulk gallery upload.
    Returned by POST /api/cms/gallery-images on full or partial success.
    """
    message: str
    uploaded_count: int
    failed_count: int
    errors: List[str] = []
    images: List[GalleryImageResponse]


class VillageInfoResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    population: Optional[int] = None
    area: Optional[str] = None
    main_crops: Optional[str] = None
    main_crops_count: int = 0
    sarpanch_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VillageInfoUpdate(BaseModel):
    """
    Request schema for PUT /api/cms/village-info.
    Creates the single village record if none exists yet.
    """
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    population: Optional[int] = Field(default=None, ge=0)
    area: Optional[str] = Field(default=None, max_length=50)
    main_crops: Optional[str] = Field(default=None, max_length=500)
    sarpanch_name: Optional[str] = Field(default=None, max_length=100)
    contact_email: Optional[str] = Field(default=None, max_length=200)
    contact_phone: Optional[str] = Field(default=None, max_length=50)


class NewsResponse(BaseModel):
    id: int
    title: str
    content: str
    published_date: datetime
    is_active: bool
    image_path: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class NewsCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    published_date: Optional[datetime] = None
    is_active: bool = True
    image_path: Optional[str] = Field(default=None, max_length=500)


class NewsUpdate(BaseModel):
    """All fields optional; only provided fields are changed."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[str] = Field(default=None, min_length=1)
    published_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    image_path: Optional[str] = Field(default=None, max_length=500)


class EventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    event_date: datetime
    location: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    event_date: datetime
    location: Optional[str] = Field(default=None, max_length=200)


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    event_date: Optional[datetime] = None
    location: Optional[str] = Field(default=None, max_length=200)


class HomePageResponse(BaseModel):
    """
    Aggregated payload for the public landing page:
    village profile, latest active news and upcoming events.
    """
    village_info: Optional[VillageInfoResponse] = None
    news: List[NewsResponse]
    upcoming_events: List[EventResponse]


class LoginRequest(BaseModel):
    """
    Login with either the account username or its email address.
    """
    username: str
    password: str

    @field_validator('username')
    @classmethod
    def strip_username(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Username is required')
        return v


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    roles: List[str]


class CurrentUserResponse(BaseModel):
    username: str
    roles: List[str]
