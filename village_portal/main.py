"""
Village portal API application: middleware, routers, the uploads mount,
JSON error handlers and startup/shutdown hooks.
"""
from fastapi import FastAPI, Request, status, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from pathlib import Path
from typing import Optional
import logging

from village_portal.config import settings
from village_portal.database import AsyncSessionLocal, get_db, init_db, close_db
from village_portal.services.bootstrap import run_bootstrap
from village_portal.services.gallery_upload import StorageUnavailableError, get_persister
from village_portal.utils.rate_limit import limiter
from village_portal.utils.request_limits import RequestBodyLimitMiddleware
from village_portal.routes import auth, cms, gallery, site

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,  # cms_token cookie
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)
app.add_middleware(RequestBodyLimitMiddleware)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.debug(f"{request.method} {request.url.path} started")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            f"{request.method} {request.url.path} failed with {type(e).__name__}: {str(e)}",
            exc_info=True
        )
        raise
    logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
    return response


app.include_router(auth.router, prefix="/api")
app.include_router(site.router, prefix="/api", tags=["site"])
app.include_router(gallery.router, prefix="/api", tags=["gallery"])
app.include_router(cms.router, prefix="/api")

# Local uploads are served as /uploads/gallery/<stored name>
app.mount(
    "/uploads",
    StaticFiles(directory=str(Path(settings.STATIC_ROOT) / "uploads"), check_dir=False),
    name="uploads",
)


def _json_error(request: Request, status_code: int, content: dict, headers: Optional[dict] = None) -> JSONResponse:
    """
    JSON error body that browsers on an allowed origin can still read;
    exception handlers run outside CORSMiddleware's response headers.
    """
    response = JSONResponse(status_code=status_code, content=content, headers=headers)
    origin = request.headers.get("origin")
    if origin and origin in settings.CORS_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Covers FastAPI HTTPExceptions and the ones Starlette raises itself (form parsing, 404 routes)."""
    logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail, "detail": str(exc.detail)}
    return _json_error(request, exc.status_code, content, getattr(exc, "headers", None))


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances that are not JSON serializable
    return [
        {key: (str(value) if key == "ctx" else value) for key, value in error.items()}
        for error in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are reported as 400."""
    logger.error(f"Validation error on {request.method} {request.url.path}: {exc.errors()}")
    return _json_error(
        request,
        status.HTTP_400_BAD_REQUEST,
        {"error": "Validation error", "detail": jsonable_errors(exc)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {str(exc)}",
        exc_info=True
    )
    return _json_error(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "Internal server error", "detail": "An unexpected error occurred"},
    )


@app.get("/")
async def root():
    return {"message": settings.API_TITLE, "status": "healthy", "version": settings.API_VERSION}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Round-trip a trivial query to confirm the database answers."""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}", exc_info=True)
        return {"database": "error", "status": "unhealthy", "error": "Database connection failed"}
    return {"database": "connected", "status": "healthy"}


@app.get("/health/storage")
async def health_check_storage():
    """Run the upload directory write probe (or the Cloudinary credentials check)."""
    try:
        await get_persister().ensure_writable()
    except StorageUnavailableError as e:
        return {"storage": settings.STORAGE_BACKEND, "status": "unhealthy", "error": e.message}
    return {"storage": settings.STORAGE_BACKEND, "status": "healthy"}


@app.on_event("startup")
async def startup_event():
    """
    Prepare upload storage, create tables and seed the admin account.
    Failures are logged; the app still starts.
    """
    try:
        await get_persister().ensure_writable()
    except (StorageUnavailableError, ValueError) as e:
        logger.warning(f"Upload storage not ready: {str(e)}")

    try:
        await init_db()
    except Exception as e:
        logger.error(f"Database unavailable at startup, skipping seeding: {str(e)}")
        return

    await run_bootstrap(AsyncSessionLocal)


@app.on_event("shutdown")
async def shutdown_event():
    try:
        await close_db()
    except Exception as e:
        logger.warning(f"Error during database shutdown: {str(e)}")
