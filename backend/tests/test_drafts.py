"""Tests for Redis-backed research drafts."""

import asyncio
import json

import pytest
import redis.asyncio as redis

from app.services.drafts import DraftStore, completed_key, draft_key


class BrokenRedis:
    """Stands in for a Redis server that is unreachable."""

    async def get(self, key):
        raise redis.ConnectionError("connection refused")

    async def set(self, key, value):
        raise redis.ConnectionError("connection refused")

    async def delete(self, *keys):
        raise redis.ConnectionError("connection refused")

    async def exists(self, key):
        raise redis.ConnectionError("connection refused")

    def pipeline(self, transaction=True):
        raise redis.ConnectionError("connection refused")


@pytest.mark.research
@pytest.mark.asyncio
class TestDraftStore:

    async def test_key_layout(self):
        assert draft_key("u-1", "sap-se-abc123") == "research_progress:u-1:sap-se-abc123"

    async def test_save_load_clear(self, redis_client):
        store = DraftStore(redis_client)
        draft = {"form": {"candidate_name": "Ada"}, "current_step": "ANALYSIS"}

        assert await store.save("u-1", "acme-1", draft) is True
        assert await store.load("u-1", "acme-1") == draft

        await store.clear("u-1", "acme-1")
        assert await store.load("u-1", "acme-1") is None

    async def test_drafts_are_per_user_and_company(self, redis_client):
        store = DraftStore(redis_client)
        await store.save("u-1", "acme-1", {"form": {"notes": "mine"}})

        assert await store.load("u-2", "acme-1") is None
        assert await store.load("u-1", "globex-1") is None

    async def test_corrupt_blob_is_treated_as_missing(self, redis_client, caplog):
        await redis_client.set(draft_key("u-1", "acme-1"), "{not json")

        assert await DraftStore(redis_client).load("u-1", "acme-1") is None
        assert "research.init.progressParseError" in caplog.text

    async def test_non_object_blob_is_ignored(self, redis_client):
        await redis_client.set(draft_key("u-1", "acme-1"), json.dumps(["a", "b"]))
        assert await DraftStore(redis_client).load("u-1", "acme-1") is None

    async def test_redis_outage_does_not_raise(self):
        store = DraftStore(BrokenRedis())

        assert await store.load("u-1", "acme-1") is None
        assert await store.save("u-1", "acme-1", {}) is False
        await store.clear("u-1", "acme-1")
        assert await store.update("u-1", "acme-1", lambda draft: {"form": {}}) == {"form": {}}
        assert await store.is_completed("u-1", "acme-1") is False

    async def test_update_changes_stored_draft(self, redis_client):
        store = DraftStore(redis_client)
        await store.save("u-1", "acme-1", {"form": {"notes": "old"}})

        def add_name(draft):
            return {"form": {**draft["form"], "candidate_name": "Ada"}}

        assert await store.update("u-1", "acme-1", add_name) == {
            "form": {"notes": "old", "candidate_name": "Ada"}
        }
        assert (await store.load("u-1", "acme-1"))["form"]["candidate_name"] == "Ada"

    async def test_failed_change_writes_nothing(self, redis_client):
        store = DraftStore(redis_client)
        await store.save("u-1", "acme-1", {"form": {"notes": "kept"}})

        def reject(draft):
            raise ValueError("bad edit")

        with pytest.raises(ValueError):
            await store.update("u-1", "acme-1", reject)
        assert await store.load("u-1", "acme-1") == {"form": {"notes": "kept"}}

    async def test_overlapping_updates_keep_both_changes(self, redis_client):
        store = DraftStore(redis_client)

        def setter(field, value):
            def change(draft):
                form = dict((draft or {}).get("form", {}))
                form[field] = value
                return {"form": form}
            return change

        await asyncio.gather(*[
            store.update("u-1", "acme-1", setter(f"field_{n}", n)) for n in range(5)
        ])

        form = (await store.load("u-1", "acme-1"))["form"]
        assert form == {f"field_{n}": n for n in range(5)}

    async def test_completed_marker(self, redis_client):
        store = DraftStore(redis_client)
        await store.save("u-1", "acme-1", {"form": {"notes": "x"}})

        await store.mark_completed("u-1", "acme-1")
        assert await store.is_completed("u-1", "acme-1") is True
        assert await store.is_completed("u-2", "acme-1") is False
        assert await store.load("u-1", "acme-1") is None
        assert await redis_client.get(completed_key("u-1", "acme-1")) == "1"

        await store.reopen("u-1", "acme-1")
        assert await store.is_completed("u-1", "acme-1") is False
