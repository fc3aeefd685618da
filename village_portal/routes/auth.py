"""
Authentication routes for the admin area.
Issues JWT access tokens, stored in an httpOnly cookie and returned in the body.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from village_portal.config import settings
from village_portal.database import get_db
from village_portal.schemas import CurrentUserResponse, LoginRequest, TokenResponse
from village_portal.services.identity import AuthenticationError, IdentityManager
from village_portal.utils.jwt_auth import TOKEN_COOKIE_NAME, create_access_token, verify_cms_token
from village_portal.utils.rate_limit import RATE_LIMITS, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
@limiter.limit(RATE_LIMITS["login"])
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Sign in with username (or email) and password.

    Returns:
        TokenResponse: access token plus the account's roles

    Raises:
        HTTPException: 401 on bad credentials, 423 when the account is locked out
    """
    identity = IdentityManager(db)
    try:
        user = await identity.password_sign_in(credentials.username, credentials.password)
    except AuthenticationError as e:
        # Keep the failed-attempt counter even though the request fails
        await db.commit()
        logger.warning(f"Failed login for {credentials.username}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED if e.locked_out else status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Invalid credentials", "message": str(e)}
        )

    await db.commit()

    roles = user.role_names
    token = create_access_token(user.username, roles)
    max_age = settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    response.set_cookie(
        key=TOKEN_COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        samesite="lax",
    )

    logger.info(f"User {user.username} logged in")
    return TokenResponse(access_token=token, expires_in=max_age, username=user.username, roles=roles)


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE_NAME)
    return {"message": "Logged out"}


@router.get("/me", response_model=CurrentUserResponse)
async def me(payload: dict = Depends(verify_cms_token)):
    return CurrentUserResponse(username=payload.get("sub", ""), roles=payload.get("roles") or [])
