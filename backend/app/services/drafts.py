"""Research draft storage (Redis).

One JSON blob per (user, company_key) under
`research_progress:{user_id}:{company_key}`, rewritten after every wizard
change. A successful submission removes the blob and sets
`research_completed:{user_id}:{company_key}`, which keeps the wizard locked
until the user reopens the submission.

Edits go through `update`, an optimistic WATCH/MULTI transaction, so two
overlapping requests for the same draft can't overwrite each other.

Drafts are a convenience: a Redis hiccup or a corrupt blob is logged and
treated as "no draft" rather than failing the request.
"""

import json
import logging
from typing import Callable, Optional

import redis.asyncio as redis

from app.middleware.exceptions import DraftConflictError

logger = logging.getLogger("atomity.drafts")

DRAFT_PREFIX = "research_progress"
COMPLETED_PREFIX = "research_completed"

# WATCH retries before giving up on a contended draft
MAX_UPDATE_ATTEMPTS = 10


def draft_key(user_id: str, company_key: str) -> str:
    return f"{DRAFT_PREFIX}:{user_id}:{company_key}"


def completed_key(user_id: str, company_key: str) -> str:
    return f"{COMPLETED_PREFIX}:{user_id}:{company_key}"


def _parse(key: str, raw) -> Optional[dict]:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.error("research.init.progressParseError key=%s", key)
        return None
    return data if isinstance(data, dict) else None


class DraftStore:
    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def load(self, user_id: str, company_key: str) -> Optional[dict]:
        key = draft_key(user_id, company_key)
        try:
            raw = await self.redis.get(key)
        except redis.RedisError as e:
            logger.warning(f"Draft load failed for {key}: {e}")
            return None
        return _parse(key, raw)

    async def save(self, user_id: str, company_key: str, draft: dict) -> bool:
        key = draft_key(user_id, company_key)
        try:
            await self.redis.set(key, json.dumps(draft))
            return True
        except redis.RedisError as e:
            logger.warning(f"Draft autosave failed for {key}: {e}")
            return False

    async def update(
        self,
        user_id: str,
        company_key: str,
        change: Callable[[Optional[dict]], dict],
    ) -> dict:
        """Read, change and write the draft as one optimistic transaction.

        `change` gets the stored draft (or None) and returns the new one. It
        runs again whenever another writer touched the draft in between, so
        it must not have side effects beyond its return value. Exceptions
        raised by `change` propagate and nothing is written.
        """
        key = draft_key(user_id, company_key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                for _ in range(MAX_UPDATE_ATTEMPTS):
                    try:
                        await pipe.watch(key)
                        draft = change(_parse(key, await pipe.get(key)))
                        pipe.multi()
                        pipe.set(key, json.dumps(draft))
                        await pipe.execute()
                        return draft
                    except redis.WatchError:
                        logger.info("Draft %s changed during update, retrying", key)
                        continue
        except redis.RedisError as e:
            logger.warning(f"Draft autosave failed for {key}: {e}")
            return change(None)

        logger.error("Draft %s still contended after %d attempts", key, MAX_UPDATE_ATTEMPTS)
        raise DraftConflictError()

    async def clear(self, user_id: str, company_key: str) -> None:
        key = draft_key(user_id, company_key)
        try:
            await self.redis.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Draft clear failed for {key}: {e}")

    # ── Completed marker ─────────────────────────────────────

    async def mark_completed(self, user_id: str, company_key: str) -> None:
        """Drop the draft and lock the wizard in one step."""
        key = completed_key(user_id, company_key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(draft_key(user_id, company_key))
                pipe.set(key, "1")
                await pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Completed marker write failed for {key}: {e}")

    async def is_completed(self, user_id: str, company_key: str) -> bool:
        key = completed_key(user_id, company_key)
        try:
            return await self.redis.exists(key) > 0
        except redis.RedisError as e:
            logger.warning(f"Completed marker read failed for {key}: {e}")
            return False

    async def reopen(self, user_id: str, company_key: str) -> None:
        key = completed_key(user_id, company_key)
        try:
            await self.redis.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Completed marker clear failed for {key}: {e}")
            raise
