"""
Identity management for administrative accounts.
Wraps the ORM session with role lookup, account creation, password policy
and failed-login lockout.
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging
import re

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from village_portal.config import settings
from village_portal.models import AdminUser, Role, as_utc
from village_portal.utils.auth import hash_password, verify_password

logger = logging.getLogger(__name__)

ADMIN_ROLE = "Admin"

MIN_PASSWORD_LENGTH = 4
ALLOWED_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9\-._@+]+$")


class IdentityError(Exception):
    """Raised when an account operation is rejected; carries every reason."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(", ".join(errors))


class AuthenticationError(Exception):
    """Raised when sign-in fails."""

    def __init__(self, message: str, locked_out: bool = False):
        self.locked_out = locked_out
        super().__init__(message)


def validate_password(password: str) -> List[str]:
    """
    Check a password against the account password policy.

    Returns:
        List of policy violations (empty when the password is acceptable)
    """
    errors = []
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors.append(f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not any(ch.isdigit() for ch in password or ""):
        errors.append("Passwords must have at least one digit ('0'-'9').")
    if not any(ch.islower() for ch in password or ""):
        errors.append("Passwords must have at least one lowercase ('a'-'z').")
    return errors


class IdentityManager:
    """
    Account and role operations bound to one database session.
    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_role(self, name: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def role_exists(self, name: str) -> bool:
        return await self.find_role(name) is not None

    async def create_role(self, name: str) -> Role:
        role = Role(name=name)
        self.db.add(role)
        await self.db.flush()
        logger.info(f"Created role: {name}")
        return role

    async def find_by_email(self, email: str) -> Optional[AdminUser]:
        result = await self.db.execute(
            select(AdminUser).where(func.lower(AdminUser.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def find_by_username(self, username: str) -> Optional[AdminUser]:
        result = await self.db.execute(
            select(AdminUser).where(AdminUser.username == username.strip())
        )
        return result.scalar_one_or_none()

    async def find_by_login(self, login: str) -> Optional[AdminUser]:
        """Look an account up by username or, case-insensitively, by email."""
        login = login.strip()
        result = await self.db.execute(
            select(AdminUser).where(
                or_(AdminUser.username == login, func.lower(AdminUser.email) == login.lower())
            )
        )
        return result.scalars().first()

    async def create_user(
        self,
        username: str,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        email_confirmed: bool = False,
    ) -> AdminUser:
        """
        Create an account after validating username, email uniqueness and password policy.

        Raises:
            IdentityError: with every violation found
        """
        errors = []
        if not username or not ALLOWED_USERNAME_PATTERN.match(username):
            errors.append(f"Username '{username}' is invalid, can only contain letters or digits.")
        elif await self.find_by_username(username):
            errors.append(f"Username '{username}' is already taken.")
        if not email or "@" not in email:
            errors.append(f"Email '{email}' is invalid.")
        elif await self.find_by_email(email):
            errors.append(f"Email '{email}' is already taken.")
        errors.extend(validate_password(password))

        if errors:
            raise IdentityError(errors)

        user = AdminUser(
            username=username,
            email=email.strip(),
            full_name=full_name,
            password_hash=hash_password(password),
            email_confirmed=email_confirmed,
            failed_login_count=0,
            roles=[],
        )
        self.db.add(user)
        await self.db.flush()
        logger.info(f"Created admin account: {username}")
        return user

    async def add_to_role(self, user: AdminUser, role_name: str) -> None:
        role = await self.find_role(role_name)
        if role is None:
            raise IdentityError([f"Role {role_name} does not exist."])
        if role_name in user.role_names:
            return
        user.roles.append(role)
        await self.db.flush()
        logger.info(f"Added {user.username} to role {role_name}")

    async def set_password(self, user: AdminUser, new_password: str) -> None:
        errors = validate_password(new_password)
        if errors:
            raise IdentityError(errors)
        user.password_hash = hash_password(new_password)
        user.failed_login_count = 0
        user.lockout_end = None
        await self.db.flush()
        logger.info(f"Password updated for {user.username}")

    def is_locked_out(self, user: AdminUser, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        lockout_end = as_utc(user.lockout_end)
        return lockout_end is not None and lockout_end > now

    async def password_sign_in(self, login: str, password: str) -> AdminUser:
        """
        Verify credentials, applying the lockout policy.

        Consecutive failures are counted per account; reaching
        MAX_FAILED_LOGIN_ATTEMPTS locks the account for LOCKOUT_MINUTES.

        Raises:
            AuthenticationError: on unknown account, wrong password or lockout
        """
        user = await self.find_by_login(login)
        if user is None:
            raise AuthenticationError("Invalid username or password")

        now = datetime.now(timezone.utc)
        if self.is_locked_out(user, now):
            logger.warning(f"Sign-in attempt for locked out account: {user.username}")
            raise AuthenticationError("Account is locked. Try again later.", locked_out=True)

        if not verify_password(password, user.password_hash):
            user.failed_login_count = (user.failed_login_count or 0) + 1
            locked = user.failed_login_count >= settings.MAX_FAILED_LOGIN_ATTEMPTS
            if locked:
                user.lockout_end = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
                user.failed_login_count = 0
                logger.warning(f"Account locked out after repeated failures: {user.username}")
            await self.db.flush()
            raise AuthenticationError(
                "Account is locked. Try again later." if locked else "Invalid username or password",
                locked_out=locked,
            )

        user.failed_login_count = 0
        user.lockout_end = None
        await self.db.flush()
        return user
