"""
bcrypt password hashing for admin accounts.
The work factor comes from BCRYPT_ROUNDS so tests can lower it.
"""
import bcrypt
from village_portal.config import settings


def hash_password(password: str) -> str:
    """Return the bcrypt hash of `password` as text, ready to store in password_hash."""
    digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS))
    return digest.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Check a candidate password against a stored hash.
    Empty input and hashes bcrypt cannot parse never match.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False
