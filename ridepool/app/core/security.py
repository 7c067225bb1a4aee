"""
Password and PIN hashing utilities.

Uses bcrypt directly. Inputs are pre-hashed with SHA256 so values longer
than bcrypt's 72-byte limit are still fully significant.
"""

import hashlib
import bcrypt


def _pre_hash(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def get_password_hash(password: str) -> str:
    """Hash a password (or admin PIN) for storage."""
    hashed = bcrypt.hashpw(_pre_hash(password), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password (or admin PIN) against its stored hash."""
    if not hashed_password:
        return False
    return bcrypt.checkpw(_pre_hash(plain_password), hashed_password.encode("utf-8"))
