"""Tests for the session gate and authentication endpoints."""

import smtplib
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.auth import session as session_module
from app.auth.jwt import create_access_token, create_refresh_token
from app.auth.magic_link import issue_magic_link
from app.auth.session import SessionEvents, SessionGate
from app.middleware.exceptions import InvalidEmailError
from app.models.user import User


def token_from_link(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


async def sign_in(client: AsyncClient, email: str) -> dict:
    """Request a magic link and exchange it; returns the token response."""
    response = await client.post("/api/auth/magic-link", json={"email": email})
    assert response.status_code == 200
    token = token_from_link(response.json()["dev_link"])
    response = await client.post("/api/auth/verify", json={"token": token})
    assert response.status_code == 200
    return response.json()


@pytest.mark.auth
@pytest.mark.asyncio
class TestSessionGate:
    """Session gate operations against the database and fake Redis."""

    async def test_sign_in_creates_user_and_returns_dev_link(self, db_session, redis_client):
        dispatch = await SessionGate(db_session).sign_in_with_email("  Ada@Example.com ")
        await db_session.commit()

        assert dispatch.email == "ada@example.com"
        assert dispatch.emailed is False
        assert dispatch.link.startswith("http://localhost:8000/auth/callback?token=")

        user = (await db_session.execute(select(User).where(User.email == "ada@example.com"))).scalar_one()
        assert user.email_verified is False

    async def test_malformed_email_is_rejected(self, db_session, redis_client):
        with pytest.raises(InvalidEmailError):
            await SessionGate(db_session).sign_in_with_email("not-an-email")

    async def test_inactive_user_gets_no_link(self, db_session, redis_client, make_user):
        await make_user("gone@example.com", is_active=False)

        dispatch = await SessionGate(db_session).sign_in_with_email("gone@example.com")

        assert dispatch.emailed is False
        assert dispatch.link is None

    async def test_failed_delivery_lifts_cooldown(self, db_session, redis_client, monkeypatch):
        def smtp_down(email, link):
            raise smtplib.SMTPServerDisconnected("connection lost")

        monkeypatch.setattr(session_module, "send_magic_link_email", smtp_down)
        gate = SessionGate(db_session)

        with pytest.raises(smtplib.SMTPServerDisconnected):
            await gate.sign_in_with_email("ada@example.com")

        assert await redis_client.exists("magic_link:cooldown:ada@example.com") == 0
        assert await redis_client.keys("magic_link:*") == []

        monkeypatch.setattr(session_module, "send_magic_link_email", lambda email, link: False)
        dispatch = await gate.sign_in_with_email("ada@example.com")
        assert dispatch.link is not None

    async def test_session_change_listeners(self, db_session, redis_client, test_user):
        events = SessionEvents()
        gate = SessionGate(db_session, events=events)
        seen = []
        unsubscribe = gate.on_session_change(lambda session: seen.append(session))

        token = await issue_magic_link(test_user.email)
        result = await gate.complete_sign_in(token)
        await gate.sign_out(result.session)

        assert [s.email if s else None for s in seen] == [test_user.email, None]

        unsubscribe()
        assert events.listener_count == 0

    async def test_failing_listener_does_not_break_sign_in(self, db_session, redis_client, test_user):
        events = SessionEvents()

        def broken(session):
            raise RuntimeError("listener bug")

        events.subscribe(broken)
        token = await issue_magic_link(test_user.email)

        result = await SessionGate(db_session, events=events).complete_sign_in(token)
        assert result is not None

    async def test_get_current_session_never_raises(self, db_session, redis_client, test_user):
        gate = SessionGate(db_session)

        assert await gate.get_current_session(None) is None
        assert await gate.get_current_session("garbage") is None
        refresh = create_refresh_token(user_id=test_user.id, email=test_user.email)
        assert await gate.get_current_session(refresh) is None

        access = create_access_token(user_id=test_user.id, email=test_user.email)
        session = await gate.get_current_session(access)
        assert session.user_id == test_user.id
        assert session.email == test_user.email

    async def test_token_for_deleted_user_has_no_session(self, db_session, redis_client):
        access = create_access_token(user_id="no-such-user", email="ghost@example.com")
        assert await SessionGate(db_session).get_current_session(access) is None


@pytest.mark.auth
@pytest.mark.asyncio
class TestAuthEndpoints:
    """Test authentication endpoints."""

    async def test_magic_link_flow(self, client: AsyncClient):
        data = await sign_in(client, "new.researcher@example.com")

        assert "access_token" in data
        assert "refresh_token" in data
        assert data["user"]["email"] == "new.researcher@example.com"
        assert data["user"]["email_verified"] is True
        assert data["user"]["last_sign_in_at"] is not None

    async def test_magic_link_invalid_email(self, client: AsyncClient):
        response = await client.post("/api/auth/magic-link", json={"email": "nope"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_EMAIL"

    async def test_magic_link_cooldown(self, client: AsyncClient):
        first = await client.post("/api/auth/magic-link", json={"email": "ada@example.com"})
        second = await client.post("/api/auth/magic-link", json={"email": "ada@example.com"})

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json()["error"]["code"] == "HTTP_429"

    async def test_magic_link_is_single_use(self, client: AsyncClient):
        response = await client.post("/api/auth/magic-link", json={"email": "ada@example.com"})
        token = token_from_link(response.json()["dev_link"])

        assert (await client.post("/api/auth/verify", json={"token": token})).status_code == 200
        reused = await client.post("/api/auth/verify", json={"token": token})
        assert reused.status_code == 400

    async def test_get_current_user(self, client: AsyncClient, auth_headers: dict, test_user: User):
        response = await client.get("/api/auth/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["email"] == test_user.email

    async def test_get_current_user_unauthorized(self, client: AsyncClient):
        response = await client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"

    async def test_session_cookie_is_accepted(self, client: AsyncClient, test_user: User):
        token = create_access_token(user_id=test_user.id, email=test_user.email)
        response = await client.get("/api/auth/me", headers={"Cookie": f"atomity_session={token}"})

        assert response.status_code == 200

    async def test_sign_out_revokes_token(self, client: AsyncClient):
        data = await sign_in(client, "ada@example.com")
        headers = {"Authorization": f"Bearer {data['access_token']}"}

        response = await client.post("/api/auth/sign-out", headers=headers)
        assert response.status_code == 204

        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 401

    async def test_refresh_token(self, client: AsyncClient):
        data = await sign_in(client, "ada@example.com")

        response = await client.post(
            "/api/auth/refresh", json={"refresh_token": data["refresh_token"]}
        )
        assert response.status_code == 200
        refreshed = response.json()
        assert refreshed["access_token"] != data["access_token"]

        me = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {refreshed['access_token']}"}
        )
        assert me.status_code == 200

    async def test_refresh_rejects_access_token(self, client: AsyncClient):
        data = await sign_in(client, "ada@example.com")
        response = await client.post(
            "/api/auth/refresh", json={"refresh_token": data["access_token"]}
        )
        assert response.status_code == 401

    async def test_refresh_after_sign_out_is_rejected(self, client: AsyncClient):
        data = await sign_in(client, "ada@example.com")
        headers = {"Authorization": f"Bearer {data['access_token']}"}

        assert (await client.post("/api/auth/sign-out", headers=headers)).status_code == 204

        response = await client.post(
            "/api/auth/refresh", json={"refresh_token": data["refresh_token"]}
        )
        assert response.status_code == 401

    async def test_sign_out_after_refresh_ends_whole_sign_in(self, client: AsyncClient):
        data = await sign_in(client, "ada@example.com")
        refreshed = (
            await client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
        ).json()

        headers = {"Authorization": f"Bearer {refreshed['access_token']}"}
        assert (await client.post("/api/auth/sign-out", headers=headers)).status_code == 204

        response = await client.post(
            "/api/auth/refresh", json={"refresh_token": refreshed["refresh_token"]}
        )
        assert response.status_code == 401

    async def test_refresh_token_is_single_use(self, client: AsyncClient):
        data = await sign_in(client, "ada@example.com")
        body = {"refresh_token": data["refresh_token"]}

        assert (await client.post("/api/auth/refresh", json=body)).status_code == 200
        assert (await client.post("/api/auth/refresh", json=body)).status_code == 401

    async def test_other_sign_ins_survive_sign_out(self, client: AsyncClient, redis_client):
        laptop = await sign_in(client, "ada@example.com")
        await redis_client.delete("magic_link:cooldown:ada@example.com")
        phone_token = await issue_magic_link("ada@example.com")
        phone = (await client.post("/api/auth/verify", json={"token": phone_token})).json()

        await client.post(
            "/api/auth/sign-out", headers={"Authorization": f"Bearer {laptop['access_token']}"}
        )

        me = await client.get(
            "/api/auth/me", headers={"Authorization": f"Bearer {phone['access_token']}"}
        )
        assert me.status_code == 200
