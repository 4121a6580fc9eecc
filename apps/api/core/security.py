"""
Password hashing and access tokens.

Tokens are HS256 JWTs carrying the user id in `sub`. The role claim is
informational only: authorization always re-reads the role from the users
table (see core.auth.get_request_context), so promotions take effect on the
next request without re-login.

SECRET_KEY must come from the environment and be at least 32 characters.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES
BCRYPT_MAX_BYTES = 72

SECRET_KEY = settings.SECRET_KEY
if len(SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """False (never an exception) for over-long input or a malformed hash."""
    candidate = plain_password.encode("utf-8")
    if len(candidate) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(candidate, hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    claims = dict(data)
    claims["iat"] = now
    claims["exp"] = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Claims for a valid, unexpired token; None otherwise."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
