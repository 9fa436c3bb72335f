"""Async HTTP client for the Atomity API.

Used by the front-end integration tests and by scripts that drive the
research flow. It keeps the signed-in tokens, notifies listeners when the
session changes, and can hold a reservation open with a keep-alive timer:

    async with AtomityClient("http://localhost:8000") as client:
        await client.verify(token)
        reservation = await client.reserve("SAP SE")
        async with client.hold(reservation["company_key"]):
            await client.update_fields(reservation["company_key"], {...})

Listeners registered with on_session_change receive the user profile (a
dict) after sign-in and None after sign-out.
An expired access token is refreshed transparently: a 401 triggers one
call to /api/auth/refresh and the request is retried with the new token.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from app.auth.session import SessionEvents
from app.config import settings
from app.services.keep_alive import KeepAliveTask

logger = logging.getLogger("atomity.client")

REFRESH_PATH = "/api/auth/refresh"


class AtomityClientError(Exception):
    """Non-2xx response, unpacked from the API error envelope."""

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"{status_code} {code}: {message}")

    @classmethod
    def from_response(cls, response: httpx.Response) -> "AtomityClientError":
        try:
            error = response.json().get("error") or {}
        except ValueError:
            error = {}
        return cls(
            response.status_code,
            error.get("code", f"HTTP_{response.status_code}"),
            error.get("message", response.text),
            error.get("details"),
        )


class AtomityClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        keep_alive_interval: Optional[float] = None,
        events: Optional[SessionEvents] = None,
    ):
        self.http = httpx.AsyncClient(
            base_url=base_url or settings.app_base_url,
            transport=transport,
            timeout=10.0,
        )
        self.keep_alive_interval = keep_alive_interval
        self.events = events or SessionEvents()
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.user: Optional[dict] = None
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self) -> "AtomityClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http.aclose()

    @property
    def signed_in(self) -> bool:
        return self.access_token is not None

    def on_session_change(self, callback):
        return self.events.subscribe(callback)

    async def _send(self, method: str, path: str, headers: dict, **kwargs) -> httpx.Response:
        if self.access_token:
            headers = {**headers, "Authorization": f"Bearer {self.access_token}"}
        return await self.http.request(method, path, headers=headers, **kwargs)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request; on 401 refresh the tokens once and retry."""
        headers = kwargs.pop("headers", None) or {}
        token = self.access_token
        response = await self._send(method, path, headers, **kwargs)

        if response.status_code == 401 and self.refresh_token and path != REFRESH_PATH:
            if await self._refresh_after(token):
                response = await self._send(method, path, headers, **kwargs)

        if response.status_code >= 400:
            raise AtomityClientError.from_response(response)
        return response

    async def _refresh_after(self, stale_token: Optional[str]) -> bool:
        # Concurrent 401s (keep-alive tick plus a form save) share one refresh;
        # refresh tokens are single use
        async with self._refresh_lock:
            if self.access_token and self.access_token != stale_token:
                return True
            try:
                await self.refresh()
            except AtomityClientError as e:
                logger.warning("Token refresh failed: %s", e)
                return False
            return True

    # ── Session ──────────────────────────────────────────────

    async def request_magic_link(self, email: str) -> dict:
        response = await self._request("POST", "/api/auth/magic-link", json={"email": email})
        return response.json()

    async def verify(self, token: str) -> dict:
        response = await self._request("POST", "/api/auth/verify", json={"token": token})
        data = response.json()
        self.access_token = data["access_token"]
        self.refresh_token = data["refresh_token"]
        self.user = data["user"]
        await self.events.emit(self.user)
        return self.user

    async def refresh(self) -> dict:
        """Swap the refresh token for a new token pair. Returns the user."""
        if not self.refresh_token:
            raise AtomityClientError(401, "NOT_SIGNED_IN", "No refresh token; sign in again")
        response = await self._request(
            "POST", REFRESH_PATH, json={"refresh_token": self.refresh_token}
        )
        data = response.json()
        self.access_token = data["access_token"]
        self.refresh_token = data["refresh_token"]
        self.user = data["user"]
        return self.user

    async def me(self) -> dict:
        return (await self._request("GET", "/api/auth/me")).json()

    async def sign_out(self) -> None:
        try:
            if self.access_token:
                await self._request("POST", "/api/auth/sign-out")
        finally:
            self.access_token = None
            self.refresh_token = None
            self.user = None
            await self.events.emit(None)

    # ── Reservations ─────────────────────────────────────────

    async def reserve(self, company_name: str) -> dict:
        response = await self._request(
            "POST", "/api/reservations", json={"company_name": company_name}
        )
        return response.json()

    async def current_reservation(self) -> Optional[dict]:
        try:
            return (await self._request("GET", "/api/reservations/current")).json()
        except AtomityClientError as e:
            if e.status_code == 404:
                return None
            raise

    async def keep_alive(self, company_key: str) -> dict:
        response = await self._request("POST", f"/api/reservations/{company_key}/keep-alive")
        return response.json()

    @asynccontextmanager
    async def hold(self, company_key: str) -> AsyncIterator[KeepAliveTask]:
        """Keep `company_key` reserved while the block runs.

        The timer stops when the block exits or when the client signs out.
        """
        task = KeepAliveTask(
            lambda: self.keep_alive(company_key),
            interval=self.keep_alive_interval,
            name=company_key,
        )

        async def stop_on_sign_out(user):
            if user is None:
                await task.stop()

        unsubscribe = self.on_session_change(stop_on_sign_out)
        task.start()
        try:
            yield task
        finally:
            unsubscribe()
            await task.stop()

    # ── Research ─────────────────────────────────────────────

    async def research(self, company_key: str) -> dict:
        return (await self._request("GET", f"/api/research/{company_key}")).json()

    async def update_fields(self, company_key: str, fields: dict) -> dict:
        response = await self._request(
            "PATCH", f"/api/research/{company_key}/fields", json={"fields": fields}
        )
        return response.json()

    async def next_step(self, company_key: str) -> dict:
        return (await self._request("POST", f"/api/research/{company_key}/next")).json()

    async def previous_step(self, company_key: str) -> dict:
        return (await self._request("POST", f"/api/research/{company_key}/back")).json()

    async def add_tag(self, company_key: str, field: str, value: str) -> dict:
        response = await self._request(
            "POST", f"/api/research/{company_key}/tags/{field}", json={"value": value}
        )
        return response.json()

    async def toggle_option(self, company_key: str, field: str, option: str) -> dict:
        response = await self._request(
            "POST", f"/api/research/{company_key}/options/{field}", json={"option": option}
        )
        return response.json()

    async def submit(self, company_key: str) -> dict:
        return (await self._request("POST", f"/api/research/{company_key}/submit")).json()

    async def reopen(self, company_key: str) -> dict:
        return (await self._request("POST", f"/api/research/{company_key}/reopen")).json()
