"""
slowapi limiter shared by the login and gallery upload endpoints.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from village_portal.config import settings


def get_client_identifier(request: Request) -> str:
    """Original client address: first X-Forwarded-For hop when proxied, else the peer address."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    client = forwarded_for.split(",")[0].strip()
    return client or get_remote_address(request)


limiter = Limiter(
    key_func=get_client_identifier,
    storage_uri="memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)

RATE_LIMITS = {
    "login": "5/minute",
    "upload": "20/hour",
}
