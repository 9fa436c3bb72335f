"""JWT token creation and decoding.

Token claims:
  - sub:    user ID
  - email:  user email (shown as the default researcher email)
  - type:   "access" | "refresh"
  - exp:    expiry timestamp
  - jti:    random token id (tokens issued in the same second still differ)
  - sid:    sign-in id shared by every token of one sign-in, kept across
            refreshes so sign-out can revoke the whole chain
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config import settings

ALGORITHM = settings.jwt_algorithm


def new_session_id() -> str:
    return uuid.uuid4().hex


def create_access_token(
    user_id: str,
    email: str,
    expires_delta: timedelta | None = None,
    session_id: str | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "email": email,
        "type": "access",
        "exp": expire,
        "jti": uuid.uuid4().hex,
        "sid": session_id or new_session_id(),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def create_refresh_token(user_id: str, email: str, session_id: str | None = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=settings.refresh_token_expire_days)
    payload = {
        "sub": user_id,
        "email": email,
        "type": "refresh",
        "exp": expire,
        "jti": uuid.uuid4().hex,
        "sid": session_id or new_session_id(),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
