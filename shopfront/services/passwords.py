from __future__ import annotations

import re
import secrets

import bcrypt

MIN_PASSWORD_LENGTH = 8


# bcrypt only looks at the first 72 bytes
def _normalize_password_for_bcrypt(password: str) -> bytes:
    pw = (password or "").encode("utf-8")
    if len(pw) <= 72:
        return pw
    return pw[:72]


def hash_password(password: str) -> str:
    pw = _normalize_password_for_bcrypt(password)
    hashed = bcrypt.hashpw(pw, bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    try:
        pw = _normalize_password_for_bcrypt(plain_password)
        ph = (password_hash or "").encode("utf-8")
        return bcrypt.checkpw(pw, ph)
    except ValueError:
        # malformed or empty stored hash
        return False


def placeholder_password_hash() -> str:
    """Hash of a random secret for accounts that never log in locally."""
    return hash_password(secrets.token_hex(16))


def validate_password_strength(password: str) -> str | None:
    """Return an error message, or None when the password is acceptable."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None
