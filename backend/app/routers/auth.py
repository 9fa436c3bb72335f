"""Auth routes: magic link sign-in, refresh, profile, sign-out.

Route overview:
  POST /magic-link  email a single-use sign-in link (creates the user if new)
  POST /verify      exchange the link token for access + refresh tokens
  POST /refresh     exchange a refresh token for a new pair (each works once)
  GET  /me          current user profile
  POST /sign-out    revoke the current access token and every refresh token
                    issued with the same sign-in
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_current_session
from app.auth.magic_link import MagicLinkCooldownError
from app.auth.session import Session, SessionGate, SignInResult
from app.config import settings
from app.database import get_db
from app.schemas.auth import (
    MagicLinkRequest,
    MagicLinkResponse,
    MagicLinkVerify,
    RefreshRequest,
    TokenResponse,
    UserOut,
)

router = APIRouter()


def _build_token_response(result: SignInResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.session.access_token,
        refresh_token=result.refresh_token,
        user=UserOut.model_validate(result.session.user),
    )


# ── POST /magic-link ─────────────────────────────────────────

@router.post("/magic-link", response_model=MagicLinkResponse)
async def request_magic_link(body: MagicLinkRequest, db: AsyncSession = Depends(get_db)):
    """Send a sign-in link to the given address.

    In dev mode (no SMTP host configured), the link is returned in the
    response for testing.
    """
    try:
        dispatch = await SessionGate(db).sign_in_with_email(body.email)
    except MagicLinkCooldownError as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e))

    return MagicLinkResponse(
        message="Check your inbox for a sign-in link",
        dev_link=dispatch.link,
    )


# ── POST /verify ─────────────────────────────────────────────

@router.post("/verify", response_model=TokenResponse)
async def verify_magic_link(body: MagicLinkVerify, db: AsyncSession = Depends(get_db)):
    result = await SessionGate(db).complete_sign_in(body.token)
    if result is None:
        raise HTTPException(status_code=400, detail="Invalid or expired sign-in link")
    return _build_token_response(result)


# ── POST /refresh ────────────────────────────────────────────

@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a refresh token for a new access + refresh token pair."""
    result = await SessionGate(db).refresh(body.refresh_token)
    if result is None:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    return _build_token_response(result)


# ── GET /me ──────────────────────────────────────────────────

@router.get("/me", response_model=UserOut)
async def me(session: Session = Depends(get_current_session)):
    return UserOut.model_validate(session.user)


# ── POST /sign-out ───────────────────────────────────────────

@router.post("/sign-out", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(
    response: Response,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    await SessionGate(db).sign_out(session)
    response.delete_cookie(settings.session_cookie_name)
