"""JWT token revocation using a Redis blacklist.

Sign-out revokes the caller's access token and the sign-in it belongs to,
so refresh tokens from that sign-in stop working as well. Entries stay
until the tokens they cover would have expired anyway.
"""

import logging
import time

from app.config import settings
from app.utils.cache import get_redis

logger = logging.getLogger(__name__)


class TokenRevocation:
    """Manage JWT token revocation with Redis."""

    @staticmethod
    async def revoke_token(token: str, expires_at: float) -> bool:
        """Add token to revocation list.

        Args:
            token: JWT token to revoke
            expires_at: Unix timestamp when token naturally expires

        Returns:
            True if successfully revoked
        """
        redis_client = await get_redis()

        # No need to store after natural expiry
        ttl = int(expires_at - time.time())
        if ttl <= 0:
            return True

        try:
            await redis_client.setex(
                f"revoked:{token}",
                ttl,
                str(int(time.time())),
            )
            return True
        except Exception as e:
            logger.error(f"Failed to revoke token: {e}")
            return False

    @staticmethod
    async def is_revoked(token: str) -> bool:
        """Check if token is revoked.

        Fails closed: a Redis error counts as revoked.
        """
        redis_client = await get_redis()

        try:
            exists = await redis_client.exists(f"revoked:{token}")
            return exists > 0
        except Exception as e:
            logger.error(f"Failed to check token revocation: {e}")
            return True

    @staticmethod
    async def revoke_session(session_id: str) -> bool:
        """Revoke every token carrying `session_id`, refresh tokens included.

        The marker lives as long as a refresh token can.
        """
        if not session_id:
            return True
        redis_client = await get_redis()
        ttl = settings.refresh_token_expire_days * 24 * 3600

        try:
            await redis_client.setex(
                f"revoked_session:{session_id}",
                ttl,
                str(int(time.time())),
            )
            return True
        except Exception as e:
            logger.error(f"Failed to revoke session: {e}")
            return False

    @staticmethod
    async def is_session_revoked(session_id: str | None) -> bool:
        """Check if the sign-in a token belongs to was ended.

        Fails closed like is_revoked.
        """
        if not session_id:
            return False
        redis_client = await get_redis()

        try:
            exists = await redis_client.exists(f"revoked_session:{session_id}")
            return exists > 0
        except Exception as e:
            logger.error(f"Failed to check session revocation: {e}")
            return True
