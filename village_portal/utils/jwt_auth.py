"""
JWT Token-based authentication utilities for admin access.
Provides token generation, verification and the role capability check
guarding every CMS endpoint.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status, Header, Request
from village_portal.config import settings


ALGORITHM = "HS256"
TOKEN_COOKIE_NAME = "cms_token"


def create_access_token(
    username: str,
    roles: List[str],
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        username: Account username, stored as the subject claim
        roles: Role names granted to the account
        expires_delta: Optional custom expiration time

    Returns:
        str: Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": username,
        "roles": list(roles),
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify and decode a JWT token.

    Raises:
        HTTPException: 401 if token is invalid, expired, or malformed
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Invalid token", "message": "Authentication token is invalid or expired"},
            headers={"WWW-Authenticate": "Bearer"}
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Invalid token type", "message": "Token is not an access token"},
            headers={"WWW-Authenticate": "Bearer"}
        )

    return payload


def verify_cms_token(
    request: Request,
    authorization: Optional[str] = Header(None, description="Bearer token for authentication (fallback to cookie)")
) -> dict:
    """
    FastAPI dependency for JWT token authentication.
    Reads the token from the httpOnly cookie (preferred) or the Authorization header.

    Returns:
        dict: Decoded token payload

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    token = request.cookies.get(TOKEN_COOKIE_NAME)

    if not token and authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            token = parts[1]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Missing token", "message": "Authentication required"},
            headers={"WWW-Authenticate": "Bearer"}
        )

    return verify_token(token)


def require_role(role: str):
    """
    Build a dependency that admits only requesters holding `role`.

    Usage:
        @router.post("/x", dependencies=[Depends(require_role("Admin"))])
    """
    def dependency(payload: dict = Depends(verify_cms_token)) -> dict:
        if role not in (payload.get("roles") or []):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "Forbidden", "message": f"Requires role {role}"}
            )
        return payload

    return dependency
