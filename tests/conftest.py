"""
Portal Client - Pytest Configuration
Fixtures partagées pour tous les tests.
"""

import asyncio
from typing import List, Optional

import pytest

from portal_client.auth import (
    AuthCoordinator,
    IAuthTransport,
    InMemoryTokenStore,
    LoginResult,
    TokenPair,
)
from portal_client.events import AuthEventBus
from portal_client.logging import LogConfig, LogLevel, StructuredLogger


class FakeAuthTransport(IAuthTransport):
    """
    Transport /auth/* en mémoire.

    login_gate et refresh_gate gardent un appel en vol pour simuler
    des appelants concurrents.
    """

    def __init__(self) -> None:
        self.login_calls = 0
        self.refresh_calls = 0
        self.logout_calls = 0
        self.login_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.login_gate: Optional[asyncio.Event] = None
        self.refresh_gate: Optional[asyncio.Event] = None
        self.refresh_tokens_seen: List[str] = []
        self.logout_tokens_seen: List[str] = []
        self.user = {"id": "u-789", "email": "dev@example.com"}

    async def login(self, email: str, password: str) -> LoginResult:
        self.login_calls += 1
        if self.login_gate is not None:
            await self.login_gate.wait()
        if self.login_error is not None:
            raise self.login_error
        return LoginResult(
            tokens=TokenPair(access_token="access-0", refresh_token="refresh-0"),
            user=dict(self.user),
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        self.refresh_calls += 1
        self.refresh_tokens_seen.append(refresh_token)
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        n = self.refresh_calls
        return TokenPair(access_token=f"access-{n}", refresh_token=f"refresh-{n}")

    async def logout(self, refresh_token: str) -> None:
        self.logout_calls += 1
        self.logout_tokens_seen.append(refresh_token)
        if self.logout_error is not None:
            raise self.logout_error


class FakeClock:
    """Horloge monotone pilotée par le test."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def logger() -> StructuredLogger:
    """Logger capturant toutes les entrées (DEBUG inclus)."""
    return StructuredLogger("test", config=LogConfig(min_level=LogLevel.DEBUG))


@pytest.fixture
def bus(logger: StructuredLogger) -> AuthEventBus:
    return AuthEventBus(logger=logger)


@pytest.fixture
def store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def transport() -> FakeAuthTransport:
    return FakeAuthTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(store, bus, transport, logger, clock) -> AuthCoordinator:
    """Coordinateur non authentifié (fenêtre anti-rebond 10s)."""
    return AuthCoordinator(
        store,
        bus,
        transport,
        logger=logger,
        refresh_debounce_seconds=10.0,
        clock=clock,
    )


@pytest.fixture
def authenticated_coordinator(bus, transport, logger, clock) -> AuthCoordinator:
    """Coordinateur restauré depuis une paire persistée."""
    seeded = InMemoryTokenStore(TokenPair(access_token="access-0", refresh_token="refresh-0"))
    coordinator = AuthCoordinator(
        seeded,
        bus,
        transport,
        logger=logger,
        refresh_debounce_seconds=10.0,
        clock=clock,
    )
    coordinator.restore()
    return coordinator
