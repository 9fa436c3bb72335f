"""Browser-facing routes: session gating and redirects.

  /                      → /login
  /login                 → /reserve when already signed in
  /auth/callback?token=  → sets the session cookie, then /reserve
  /reserve               → /login when signed out; /research?company_key=…
                           when the caller still holds a recent reservation
  /research?company_key= → /login when signed out; /reserve when the key is
                           missing or unknown; "reservation_required" screen
                           when access is denied
  anything else          → /login (unknown /api/... paths are a JSON 404)

Screens are returned as JSON descriptors for the front end to render.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import get_optional_session
from app.auth.session import Session, SessionGate
from app.config import settings
from app.database import get_db
from app.middleware.exceptions import ReservationRequiredError, ResourceNotFoundError
from app.services.drafts import DraftStore
from app.services.research import ResearchService
from app.services.reservations import ReservationManager
from app.utils.cache import get_redis

logger = logging.getLogger("atomity.pages")

router = APIRouter(include_in_schema=False)


def _redirect(path: str, **params) -> RedirectResponse:
    url = f"{path}?{urlencode(params)}" if params else path
    return RedirectResponse(url, status_code=302)


@router.get("/")
async def root():
    return _redirect("/login")


@router.get("/login")
async def login_page(session: Optional[Session] = Depends(get_optional_session)):
    if session is not None:
        return _redirect("/reserve")
    return {"screen": "login"}


@router.get("/auth/callback")
async def magic_link_callback(token: str = "", db: AsyncSession = Depends(get_db)):
    result = await SessionGate(db).complete_sign_in(token)
    if result is None:
        return _redirect("/login", error="link_invalid_or_expired")

    response = _redirect("/reserve")
    response.set_cookie(
        settings.session_cookie_name,
        result.session.access_token,
        max_age=settings.access_token_expire_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )
    return response


@router.get("/reserve")
async def reserve_page(
    session: Optional[Session] = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db),
):
    if session is None:
        return _redirect("/login")

    manager = ReservationManager(db)
    held = await manager.find_resumable(session.user)
    if held is not None:
        logger.info("Resuming reservation %s for %s", held.company_key, session.user_id)
        return _redirect("/research", company_key=held.company_key)

    return {
        "screen": "reserve",
        "email": session.email,
        "inactivity_hours": settings.reservation_inactivity_hours,
        "keep_alive_interval_seconds": settings.keep_alive_interval_seconds,
    }


@router.get("/research")
async def research_page(
    company_key: str = "",
    session: Optional[Session] = Depends(get_optional_session),
    db: AsyncSession = Depends(get_db),
):
    if session is None:
        return _redirect("/login")
    if not company_key:
        return _redirect("/reserve")

    service = ResearchService(db, DraftStore(await get_redis()))
    try:
        screen = await service.open(session.user, company_key)
    except ResourceNotFoundError:
        return _redirect("/reserve")
    except ReservationRequiredError as e:
        return {
            "screen": "reservation_required",
            "company_key": company_key,
            "reason": e.reason,
            "message": e.message,
        }

    return {"screen": "research", "wizard": screen.view().model_dump(mode="json")}


@router.get("/{path:path}")
async def unknown_page(path: str):
    # API clients get a JSON 404, not a page redirect
    if path == "api" or path.startswith("api/"):
        raise ResourceNotFoundError("Endpoint", f"/{path}")
    return _redirect("/login")
