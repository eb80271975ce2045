"""
Tests d'intégration - Session complète contre un portail simulé

login → requête → 401 → refresh → nouvelle tentative → logout,
à travers les vrais transport, coordinateur, exécuteur et client API
(httpx.MockTransport côté serveur).
"""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from portal_client.auth import AuthState, InMemoryTokenStore
from portal_client.core.bootstrap import create_session
from portal_client.core.errors import (
    InvalidCredentials,
    NotAuthenticated,
    RefreshTokenExpired,
)
from portal_client.core.interfaces import ClientConfig
from portal_client.events import AuthEventType

BASE_URL = "https://portal.test/api"


class FakePortal:
    """
    Portail simulé.

    Un seul access token est valide à la fois; expire_access() le
    révoque pour forcer un 401 sur la requête suivante.
    """

    def __init__(self) -> None:
        self.generation = 0
        self.valid_access: Optional[str] = None
        self.valid_refresh: Optional[str] = None
        self.refresh_rejected = False
        self.usage_primary_missing = False
        self.usage_records: List[Dict] = []
        self.calls: List[str] = []
        self.correlation_ids: List[str] = []

    def _issue(self) -> Dict[str, str]:
        self.generation += 1
        self.valid_access = f"access-{self.generation}"
        self.valid_refresh = f"refresh-{self.generation}"
        return {"accessToken": self.valid_access, "refreshToken": self.valid_refresh}

    def expire_access(self) -> None:
        self.valid_access = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/api"):]
        self.calls.append(f"{request.method} {path}")

        if path == "/auth/login":
            body = json.loads(request.content)
            if body.get("password") != "secret":
                return httpx.Response(401, json={"error": "invalid credentials"})
            payload = self._issue()
            payload["user"] = {"id": "u-789", "email": body["email"]}
            return httpx.Response(200, json=payload)

        if path == "/auth/refresh-token":
            body = json.loads(request.content)
            if self.refresh_rejected or body.get("refreshToken") != self.valid_refresh:
                return httpx.Response(401, json={"error": "refresh rejected"})
            return httpx.Response(200, json=self._issue())

        if path == "/auth/logout":
            self.valid_access = None
            self.valid_refresh = None
            return httpx.Response(200, json={"success": True})

        if "X-Correlation-ID" in request.headers:
            self.correlation_ids.append(request.headers["X-Correlation-ID"])
        if request.headers.get("Authorization") != f"Bearer {self.valid_access}":
            return httpx.Response(401)

        if path == "/usage/tokens" and self.usage_primary_missing:
            return httpx.Response(404)
        if path in ("/usage/tokens", "/tokens/usage"):
            self.usage_records.append(json.loads(request.content))
            return httpx.Response(201, json={"success": True})
        if path == "/auth/users/me":
            return httpx.Response(200, json={"user": {"id": "u-789"}})
        return httpx.Response(404)


@pytest.fixture
def portal() -> FakePortal:
    return FakePortal()


@pytest_asyncio.fixture
async def session(portal: FakePortal):
    client = httpx.AsyncClient(transport=httpx.MockTransport(portal.handler), base_url=BASE_URL)
    config = ClientConfig(api_base_url=BASE_URL, refresh_debounce_seconds=0)
    portal_session = create_session(
        config, http_client=client, store=InMemoryTokenStore(), output_handler=None
    )
    yield portal_session
    await portal_session.aclose()
    await client.aclose()


class TestSessionFlow:
    """Parcours nominal."""

    @pytest.mark.asyncio
    async def test_login_record_refresh_logout(self, session, portal: FakePortal) -> None:
        events = []
        session.bus.subscribe_all(lambda e: events.append(e.type))

        user = await session.coordinator.login("dev@example.com", "secret")
        assert user["id"] == "u-789"

        first = await session.api.record_token_usage(1000, "claude-3-opus-20240229")
        assert first.success is True
        assert first.attempts == 1

        portal.expire_access()
        second = await session.api.record_token_usage(250, "claude-3-opus-20240229")

        assert second.success is True
        assert second.attempts == 2
        assert second.refreshes == 1
        assert session.coordinator.current_tokens.access_token == "access-2"
        assert len(portal.usage_records) == 2
        assert len(set(portal.correlation_ids[1:])) == 1

        await session.coordinator.logout()

        assert session.coordinator.state == AuthState.LOGGED_OUT
        assert session.store.load() is None
        assert portal.calls[-1] == "POST /auth/logout"
        assert AuthEventType.LOGIN_SUCCESS in events
        assert AuthEventType.TOKEN_REFRESHED in events
        assert AuthEventType.LOGOUT in events

    @pytest.mark.asyncio
    async def test_usage_falls_back_to_secondary_endpoint(
        self, session, portal: FakePortal
    ) -> None:
        portal.usage_primary_missing = True
        await session.coordinator.login("dev@example.com", "secret")

        result = await session.api.record_token_usage(1000, "claude-3-opus-20240229")

        assert result.success is True
        assert result.endpoint == "/tokens/usage"
        assert portal.calls[-2:] == ["POST /usage/tokens", "POST /tokens/usage"]

    @pytest.mark.asyncio
    async def test_concurrent_401s_trigger_one_refresh(self, session, portal: FakePortal) -> None:
        await session.coordinator.login("dev@example.com", "secret")
        portal.expire_access()

        results = await asyncio.gather(
            *(session.api.record_token_usage(10, "model") for _ in range(5))
        )

        assert all(r.success for r in results)
        assert portal.calls.count("POST /auth/refresh-token") == 1
        assert session.coordinator.current_tokens.access_token == "access-2"


class TestSessionTermination:
    """Fin de session côté serveur."""

    @pytest.mark.asyncio
    async def test_rejected_refresh_ends_session(self, session, portal: FakePortal) -> None:
        await session.coordinator.login("dev@example.com", "secret")
        portal.expire_access()
        portal.refresh_rejected = True

        result = await session.api.record_token_usage(10, "model")

        assert result.success is False
        assert isinstance(result.error, RefreshTokenExpired)
        assert session.coordinator.state == AuthState.UNAUTHENTICATED

        with pytest.raises(NotAuthenticated):
            await session.api.get_current_user()

    @pytest.mark.asyncio
    async def test_wrong_password_keeps_session_closed(self, session, portal: FakePortal) -> None:
        with pytest.raises(InvalidCredentials):
            await session.coordinator.login("dev@example.com", "wrong")

        assert session.coordinator.state == AuthState.UNAUTHENTICATED
        assert not any(c.startswith("POST /usage") for c in portal.calls)

    @pytest.mark.asyncio
    async def test_mirror_tracks_session(self, portal: FakePortal, tmp_path: Path) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(portal.handler), base_url=BASE_URL
        )
        config = ClientConfig(
            api_base_url=BASE_URL,
            credential_sync_enabled=True,
            credential_sync_dir=tmp_path / ".claude",
        )

        async with create_session(
            config, http_client=client, store=InMemoryTokenStore(), output_handler=None
        ) as session:
            await session.coordinator.login("dev@example.com", "secret")
            auth_file = tmp_path / ".claude" / "auth.json"
            assert json.loads(auth_file.read_text())["accessToken"] == "access-1"

            await session.coordinator.logout()
            assert not auth_file.exists()

        await client.aclose()
