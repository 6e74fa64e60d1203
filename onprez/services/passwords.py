from __future__ import annotations

from passlib.context import CryptContext

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd_context.verify(password, password_hash)
    except ValueError:
        # Malformed or unknown hash format
        return False


def needs_rehash(password_hash: str) -> bool:
    """True when a verified hash was made with outdated bcrypt settings."""
    return _pwd_context.needs_update(password_hash)
