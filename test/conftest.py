import sys
import json
import asyncio
import logging
import secrets
from http.cookies import SimpleCookie
from pathlib import Path
from typing import Callable

import httpx
import pytest
import pytest_asyncio

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from client import ClientConfig, CredentialedClient  # noqa: E402
from auth import InMemoryMarkerStorage, InMemoryNavigator, SessionStateHolder  # noqa: E402

BASE_URL = "http://testserver/api"

CSRF_MISSING = {"detail": "CSRF Failed: CSRF token missing or incorrect."}
NOT_AUTHENTICATED = {"detail": "Authentication credentials were not provided."}


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(level=logging.INFO)


class FakePortalBackend:
    """
    In-process stand-in for the portal backend, served through httpx.MockTransport.

    Issues the ``csrftoken`` cookie from ``GET /api/login/`` (and from the
    fallback origin ``GET /``), checks the double-submitted header on every
    state-changing call, and keeps a tiny session table for login/logout.
    """

    def __init__(self):
        self.calls: list[httpx.Request] = []
        self.token = "csrf-token-1"
        self.users = {"alice": "secret"}
        self.sessions: set[str] = set()
        self.employees = [{"id": 1, "name": "Ada"}]

        self.credential_delay = 0.01
        self.primary_credential_fails = False
        self.fallback_credential_fails = False
        self.issue_cookie = True
        self.reject_csrf_times = 0
        self.require_session = True
        self.unauthenticated_status = 403
        self.logout_fails = False
        self.overrides: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.calls if r.method == method and r.url.path == path)

    def requests_for(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.calls if r.method == method and r.url.path == path]

    @staticmethod
    def cookies_of(request: httpx.Request) -> dict[str, str]:
        jar = SimpleCookie()
        jar.load(request.headers.get("cookie", ""))
        return {name: morsel.value for name, morsel in jar.items()}

    def _csrf_cookie(self) -> list[tuple[str, str]]:
        if not self.issue_cookie:
            return []
        return [("set-cookie", f"csrftoken={self.token}; Path=/")]

    def _has_session(self, request: httpx.Request) -> bool:
        return self.cookies_of(request).get("sessionid") in self.sessions

    def _unauthenticated(self) -> httpx.Response:
        if self.unauthenticated_status == 401:
            return httpx.Response(401, json={"detail": "Invalid session."})
        return httpx.Response(403, json=NOT_AUTHENTICATED)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        method, path = request.method, request.url.path

        override = self.overrides.get((method, path))
        if override is not None:
            return override(request)

        if method == "GET" and path == "/":
            if self.fallback_credential_fails:
                raise httpx.ConnectError("fallback unreachable", request=request)
            return httpx.Response(200, text="<html></html>", headers=self._csrf_cookie())

        if method == "GET" and path == "/api/login/":
            await asyncio.sleep(self.credential_delay)
            if self.primary_credential_fails:
                return httpx.Response(502, json={"detail": "Bad gateway"})
            return httpx.Response(200, json={"csrf_token": self.token}, headers=self._csrf_cookie())

        if method in ("POST", "PUT", "PATCH", "DELETE"):
            sent = request.headers.get("x-csrftoken")
            if self.reject_csrf_times > 0:
                self.reject_csrf_times -= 1
                return httpx.Response(403, json=CSRF_MISSING)
            if not sent or sent != self.token or self.cookies_of(request).get("csrftoken") != self.token:
                return httpx.Response(403, json=CSRF_MISSING)

        if method == "POST" and path == "/api/login/":
            body = json.loads(request.content or b"{}")
            if self.users.get(body.get("username")) != body.get("password"):
                return httpx.Response(200, json={"success": False, "error": "Invalid credentials"})
            session_id = secrets.token_hex(8)
            self.sessions.add(session_id)
            # Django rotates the CSRF token on login
            self.token = f"{self.token}-rotated"
            headers = [("set-cookie", f"sessionid={session_id}; Path=/")] + self._csrf_cookie()
            return httpx.Response(200, json={"success": True}, headers=headers)

        if method == "POST" and path == "/api/logout/":
            if self.logout_fails:
                raise httpx.ConnectError("connection reset", request=request)
            self.sessions.discard(self.cookies_of(request).get("sessionid"))
            return httpx.Response(200, json={"success": True})

        if path == "/api/employees/":
            if self.require_session and not self._has_session(request):
                return self._unauthenticated()
            if method == "GET":
                return httpx.Response(200, json=self.employees)
            if method == "POST":
                employee = {"id": len(self.employees) + 1, **json.loads(request.content or b"{}")}
                self.employees.append(employee)
                return httpx.Response(201, json=employee)

        if method == "GET" and path == "/api/reports/monthly.pdf":
            return httpx.Response(200, content=b"%PDF-1.4 fake", headers={"content-type": "application/pdf"})

        return httpx.Response(404, json={"detail": "Not found."})


@pytest.fixture
def backend() -> FakePortalBackend:
    return FakePortalBackend()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(base_url=BASE_URL, timeout=5.0)


@pytest_asyncio.fixture
async def api_client(backend, config):
    client = CredentialedClient(config, transport=backend.transport)
    yield client
    await client.aclose()


@pytest.fixture
def marker_storage() -> InMemoryMarkerStorage:
    return InMemoryMarkerStorage()


@pytest.fixture
def navigator() -> InMemoryNavigator:
    return InMemoryNavigator(start_path="/dashboard")


@pytest_asyncio.fixture
async def session_holder(api_client, marker_storage, navigator):
    holder = SessionStateHolder(api_client, storage=marker_storage, navigator=navigator)
    yield holder
    await holder.aclose()

