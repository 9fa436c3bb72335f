"""Email magic links with expiry and rate limiting.

Storage (Redis):
  - magic_link:{sha256(token)}       → email, TTL = MAGIC_LINK_EXPIRY_SECONDS
  - magic_link:cooldown:{email}      → "1",   TTL = MAGIC_LINK_COOLDOWN_SECONDS

Flow:
  1. Client calls POST /api/auth/magic-link with an email address.
  2. We generate a random token, store its hash, and email a link to
     {APP_BASE_URL}/auth/callback?token=...
  3. The link (or POST /api/auth/verify) exchanges the token for a JWT.
     Tokens are single use.
  4. If the email can't be sent, the token and the cooldown are dropped.
"""

import hashlib
import logging
import secrets
import smtplib
from email.message import EmailMessage
from urllib.parse import urlencode

from app.config import settings
from app.utils.cache import get_redis

logger = logging.getLogger(__name__)

MAGIC_LINK_EXPIRY_SECONDS = settings.magic_link_expiry_seconds
MAGIC_LINK_COOLDOWN_SECONDS = settings.magic_link_cooldown_seconds

_TOKEN_PREFIX = "magic_link:"
_COOLDOWN_PREFIX = "magic_link:cooldown:"


class MagicLinkCooldownError(Exception):
    """Raised when a link is requested too soon after the previous one."""
    pass


def _token_key(token: str) -> str:
    digest = hashlib.sha256(token.encode()).hexdigest()
    return f"{_TOKEN_PREFIX}{digest}"


def build_link(token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/auth/callback?{urlencode({'token': token})}"


async def issue_magic_link(email: str) -> str:
    """Generate and store a magic link token for `email`. Returns the token."""
    redis_client = await get_redis()

    # Rate limit: one link per cooldown window per address
    fresh = await redis_client.set(
        f"{_COOLDOWN_PREFIX}{email}", "1",
        ex=MAGIC_LINK_COOLDOWN_SECONDS, nx=True,
    )
    if not fresh:
        remaining = await redis_client.ttl(f"{_COOLDOWN_PREFIX}{email}")
        raise MagicLinkCooldownError(
            f"Wait {max(int(remaining), 1)}s before requesting another link"
        )

    token = secrets.token_urlsafe(32)
    await redis_client.setex(_token_key(token), MAGIC_LINK_EXPIRY_SECONDS, email)
    return token


async def discard_magic_link(email: str, token: str) -> None:
    """Forget an undelivered link and lift the cooldown it started."""
    redis_client = await get_redis()
    await redis_client.delete(_token_key(token), f"{_COOLDOWN_PREFIX}{email}")


async def consume_magic_link(token: str) -> str | None:
    """Return the email a token was issued for, or None if unknown/expired.

    The token is deleted on read (single use).
    """
    if not token:
        return None
    redis_client = await get_redis()
    return await redis_client.getdel(_token_key(token))


def send_magic_link_email(email: str, link: str) -> bool:
    """Email the sign-in link. Returns False when SMTP isn't configured (dev)."""
    if not settings.smtp_host:
        logger.info("SMTP not configured; magic link for %s not emailed", email)
        return False

    msg = EmailMessage()
    msg["Subject"] = "Your Atomity sign-in link"
    msg["From"] = settings.email_from
    msg["To"] = email
    msg.set_content(
        "Use the link below to sign in to Atomity. "
        f"It expires in {MAGIC_LINK_EXPIRY_SECONDS // 60} minutes.\n\n{link}\n"
    )

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_username:
            server.login(settings.smtp_username, settings.smtp_password)
        server.send_message(msg)
    return True
