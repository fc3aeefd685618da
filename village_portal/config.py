"""
Configuration management for the village portal API.
Uses Pydantic Settings for environment variable management.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    API_TITLE: str = "Village Portal API"
    API_VERSION: str = "0.1.0"
    API_DESCRIPTION: str = "Backend API for village information, news, events and photo gallery"

    # CORS Configuration
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5500",
        "http://localhost:8000",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5500",
        "http://127.0.0.1:8000",
    ]

    # Database Configuration
    # sqlite+aiosqlite for development, postgresql+asyncpg in production
    DATABASE_URL: str = "sqlite+aiosqlite:///./village_portal.db"

    # Static content / uploads
    STATIC_ROOT: str = "wwwroot"
    UPLOAD_SUBDIR: str = "uploads/gallery"
    STORAGE_BACKEND: str = "local"  # "local" or "cloudinary"

    # Cloudinary Configuration (only used when STORAGE_BACKEND=cloudinary)
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    CLOUDINARY_FOLDER: str = "gallery"
    CONVERT_UPLOADS_TO_WEBP: bool = True

    # Upload limits
    MAX_UPLOAD_FILE_BYTES: int = 5 * 1024 * 1024  # 5MB per image
    MAX_REQUEST_BODY_BYTES: int = 50 * 1024 * 1024  # 50MB per request
    MAX_FORM_VALUE_BYTES: int = 10 * 1024 * 1024  # 10MB per buffered form field

    # Gallery
    DEFAULT_GALLERY_CATEGORY: str = "Temple"

    # JWT Configuration
    # SECRET_KEY should be a long random string (e.g., generated with: openssl rand -hex 32)
    JWT_SECRET_KEY: str = "your-secret-key-change-this-in-production-use-openssl-rand-hex-32"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Identity
    BCRYPT_ROUNDS: int = 12
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 30

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True

    # Bootstrap seeding
    # ADMIN_PASSWORD default is publicly known; override it in .env for any real deployment
    ADMIN_USERNAME: str = "admin"
    ADMIN_EMAIL: str = "admin@village-portal.local"
    ADMIN_PASSWORD: str = "Admin@123"
    ADMIN_FULL_NAME: str = "Village Administrator"
    SEED_DEFAULT_CONTENT: bool = True

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings


DEFAULT_ADMIN_PASSWORD = "Admin@123"

# Global settings instance
settings = Settings()
