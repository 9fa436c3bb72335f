"""FastAPI dependencies for authentication.

Dependencies:
  get_optional_session  → Session | None (bearer header, then session cookie)
  get_current_session   → Session, or 401
  get_current_user      → the signed-in User, or 401
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.session import Session, SessionGate
from app.config import settings
from app.database import get_db
from app.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/verify", auto_error=False)


async def get_optional_session(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[Session]:
    """Resolve the caller's session without failing the request."""
    token = token or request.cookies.get(settings.session_cookie_name)
    return await SessionGate(db).get_current_session(token)


async def get_current_session(
    session: Optional[Session] = Depends(get_optional_session),
) -> Session:
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def get_current_user(session: Session = Depends(get_current_session)) -> User:
    return session.user
