"""Session gate: who is signed in, and telling interested parties when that changes.

SessionGate wraps the identity flow (magic link → JWT) behind four
operations:

  get_current_session(token)   → Session | None (never raises)
  on_session_change(callback)  → unsubscribe callable
  sign_in_with_email(email)    → dispatches a magic link
  sign_out(session)            → revokes the token and its sign-in

The database session and the event hub are injected so the gate can be
exercised with fakes.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.jwt import (
    create_access_token,
    create_refresh_token,
    decode_token,
    new_session_id,
)
from app.auth.magic_link import (
    build_link,
    consume_magic_link,
    discard_magic_link,
    issue_magic_link,
    send_magic_link_email,
)
from app.auth.revocation import TokenRevocation
from app.middleware.exceptions import InvalidEmailError
from app.models.user import User
from app.schemas.validators import is_valid_email, normalize_email
from app.utils.clock import utcnow

logger = logging.getLogger("atomity.auth")


@dataclass
class Session:
    user: User
    access_token: str
    expires_at: Optional[float] = None
    session_id: Optional[str] = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def email(self) -> str:
        return self.user.email


@dataclass
class SignInResult:
    session: Session
    refresh_token: str


@dataclass
class MagicLinkDispatch:
    email: str
    emailed: bool
    link: Optional[str] = None  # only populated when SMTP isn't configured


SessionListener = Callable[[Optional[Session]], Union[None, Awaitable[None]]]


class SessionEvents:
    """Fan-out of sign-in / sign-out notifications to registered listeners."""

    def __init__(self):
        self._listeners: list[SessionListener] = []

    def subscribe(self, callback: SessionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def emit(self, session: Optional[Session]) -> None:
        for callback in list(self._listeners):
            try:
                result = callback(session)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Session listener %r failed", callback)


session_events = SessionEvents()


class SessionGate:
    def __init__(self, db: AsyncSession, events: SessionEvents = session_events):
        self.db = db
        self.events = events

    # ── Reading the session ──────────────────────────────────

    async def get_current_session(self, token: Optional[str]) -> Optional[Session]:
        """Resolve a bearer token to a Session. Any failure means no session."""
        if not token:
            return None

        payload = decode_token(token)
        user_id = payload.get("sub")
        if not user_id or payload.get("type") != "access":
            return None

        if await TokenRevocation.is_revoked(token):
            return None
        if await TokenRevocation.is_session_revoked(payload.get("sid")):
            return None

        try:
            result = await self.db.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()
        except SQLAlchemyError:
            logger.warning("Session lookup failed for user %s", user_id, exc_info=True)
            return None

        if not user or not user.is_active:
            return None
        return Session(
            user=user,
            access_token=token,
            expires_at=payload.get("exp"),
            session_id=payload.get("sid"),
        )

    def on_session_change(self, callback: SessionListener) -> Callable[[], None]:
        return self.events.subscribe(callback)

    # ── Signing in ───────────────────────────────────────────

    async def sign_in_with_email(self, email: str) -> MagicLinkDispatch:
        """Validate the address, make sure a user exists, and send a magic link.

        Raises InvalidEmailError for a malformed address and
        MagicLinkCooldownError when a link was sent too recently.
        """
        if not is_valid_email(email):
            raise InvalidEmailError(email)
        email = normalize_email(email)

        user = await self._get_user_by_email(email)
        if user is None:
            user = User(email=email)
            self.db.add(user)
            await self.db.flush()
            logger.info("Created user %s on first sign-in request", user.id)
        elif not user.is_active:
            # Don't reveal account state; just don't send anything
            logger.warning("Magic link requested for inactive user %s", user.id)
            return MagicLinkDispatch(email=email, emailed=False)

        token = await issue_magic_link(email)
        link = build_link(token)
        try:
            emailed = await asyncio.to_thread(send_magic_link_email, email, link)
        except Exception:
            # Nothing was delivered, so don't hold the address to the cooldown
            await discard_magic_link(email, token)
            logger.exception("Magic link delivery to %s failed", email)
            raise
        logger.info("Magic link dispatched to %s (emailed=%s)", email, emailed)
        return MagicLinkDispatch(email=email, emailed=emailed, link=None if emailed else link)

    async def complete_sign_in(self, token: str) -> Optional[SignInResult]:
        """Exchange a magic link token for a session. None if invalid/expired."""
        email = await consume_magic_link(token)
        if not email:
            return None

        user = await self._get_user_by_email(email)
        if not user or not user.is_active:
            return None

        user.email_verified = True
        user.last_sign_in_at = utcnow()
        await self.db.flush()

        result = self._issue_tokens(user)
        await self.events.emit(result.session)
        logger.info("User %s signed in", user.id)
        return result

    async def refresh(self, refresh_token: str) -> Optional[SignInResult]:
        """Trade a refresh token for a new pair. Each refresh token works once."""
        payload = decode_token(refresh_token)
        if payload.get("type") != "refresh":
            return None
        if await TokenRevocation.is_revoked(refresh_token):
            return None
        if await TokenRevocation.is_session_revoked(payload.get("sid")):
            return None

        result = await self.db.execute(select(User).where(User.id == payload.get("sub")))
        user = result.scalar_one_or_none()
        if not user or not user.is_active:
            return None

        await TokenRevocation.revoke_token(refresh_token, payload.get("exp") or 0)
        return self._issue_tokens(user, session_id=payload.get("sid"))

    # ── Signing out ──────────────────────────────────────────

    async def sign_out(self, session: Session) -> None:
        expires_at = session.expires_at or 0
        await TokenRevocation.revoke_token(session.access_token, expires_at)
        # Also kills refresh tokens handed out with this sign-in
        await TokenRevocation.revoke_session(session.session_id)
        await self.events.emit(None)
        logger.info("User %s signed out", session.user_id)

    # ── Helpers ──────────────────────────────────────────────

    async def _get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    def _issue_tokens(self, user: User, session_id: Optional[str] = None) -> SignInResult:
        session_id = session_id or new_session_id()
        access_token = create_access_token(
            user_id=user.id, email=user.email, session_id=session_id
        )
        payload = decode_token(access_token)
        return SignInResult(
            session=Session(
                user=user,
                access_token=access_token,
                expires_at=payload.get("exp"),
                session_id=session_id,
            ),
            refresh_token=create_refresh_token(
                user_id=user.id, email=user.email, session_id=session_id
            ),
        )
