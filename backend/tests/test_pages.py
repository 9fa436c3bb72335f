"""Tests for browser route gating and redirects."""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from app.auth.magic_link import issue_magic_link
from app.models.company import CompanyRegistry
from app.utils.clock import utcnow


def location(response) -> str:
    return response.headers["location"]


@pytest.mark.integration
@pytest.mark.asyncio
class TestPageRedirects:

    @pytest.mark.parametrize("path", ["/", "/reserve", "/research?company_key=acme-1", "/nowhere/else"])
    async def test_signed_out_goes_to_login(self, client: AsyncClient, path):
        response = await client.get(path)

        assert response.status_code == 302
        assert location(response) == "/login"

    @pytest.mark.parametrize("path", ["/api/nope", "/api/reservations/current/extra/bits", "/api"])
    async def test_unknown_api_path_is_json_404(self, client: AsyncClient, auth_headers, path):
        response = await client.get(path, headers=auth_headers)

        assert response.status_code == 404
        assert "location" not in response.headers
        assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_login_screen(self, client: AsyncClient):
        response = await client.get("/login")

        assert response.status_code == 200
        assert response.json() == {"screen": "login"}

    async def test_signed_in_login_goes_to_reserve(self, client: AsyncClient, auth_headers):
        response = await client.get("/login", headers=auth_headers)
        assert location(response) == "/reserve"

    async def test_reserve_screen(self, client: AsyncClient, auth_headers, test_user):
        response = await client.get("/reserve", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["screen"] == "reserve"
        assert data["email"] == test_user.email
        assert data["inactivity_hours"] == 24

    async def test_reserve_resumes_held_company(self, client: AsyncClient, auth_headers):
        reservation = (
            await client.post("/api/reservations", json={"company_name": "Acme"}, headers=auth_headers)
        ).json()

        response = await client.get("/reserve", headers=auth_headers)

        assert response.status_code == 302
        assert location(response) == f"/research?company_key={reservation['company_key']}"

    async def test_research_without_key_goes_to_reserve(self, client: AsyncClient, auth_headers):
        response = await client.get("/research", headers=auth_headers)
        assert location(response) == "/reserve"

    async def test_research_unknown_key_goes_to_reserve(self, client: AsyncClient, auth_headers):
        response = await client.get("/research?company_key=nope-000000", headers=auth_headers)
        assert location(response) == "/reserve"

    async def test_research_screen(self, client: AsyncClient, auth_headers):
        key = (
            await client.post("/api/reservations", json={"company_name": "SAP SE"}, headers=auth_headers)
        ).json()["company_key"]

        response = await client.get(f"/research?company_key={key}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["screen"] == "research"
        assert data["wizard"]["company_key"] == key
        assert data["wizard"]["current_step"] == "GENERAL"

    async def test_expired_reservation_screen(self, client: AsyncClient, auth_headers, session_factory):
        key = (
            await client.post("/api/reservations", json={"company_name": "Acme"}, headers=auth_headers)
        ).json()["company_key"]
        async with session_factory() as db:
            await db.execute(
                update(CompanyRegistry)
                .where(CompanyRegistry.company_key == key)
                .values(reservation_expires_at=utcnow() - timedelta(hours=1))
            )
            await db.commit()

        response = await client.get(f"/research?company_key={key}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["screen"] == "reservation_required"
        assert data["reason"] == "expired"
        assert "expired" in data["message"]

    async def test_taken_company_screen(self, client: AsyncClient, auth_headers, other_headers):
        key = (
            await client.post("/api/reservations", json={"company_name": "Acme"}, headers=auth_headers)
        ).json()["company_key"]

        data = (await client.get(f"/research?company_key={key}", headers=other_headers)).json()

        assert data["screen"] == "reservation_required"
        assert data["reason"] == "taken"


@pytest.mark.auth
@pytest.mark.asyncio
class TestMagicLinkCallback:

    async def test_callback_sets_cookie_and_redirects(self, client: AsyncClient, test_user):
        token = await issue_magic_link(test_user.email)

        response = await client.get(f"/auth/callback?token={token}")

        assert response.status_code == 302
        assert location(response) == "/reserve"
        cookie = response.headers["set-cookie"]
        assert cookie.startswith("atomity_session=")
        assert "HttpOnly" in cookie

        session_token = cookie.split(";", 1)[0].split("=", 1)[1]
        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {session_token}"})
        assert me.status_code == 200

    async def test_invalid_callback_goes_to_login(self, client: AsyncClient):
        response = await client.get("/auth/callback?token=bogus")

        assert response.status_code == 302
        url = urlparse(location(response))
        assert url.path == "/login"
        assert parse_qs(url.query)["error"] == ["link_invalid_or_expired"]
