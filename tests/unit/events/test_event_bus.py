"""
Tests unitaires pour Events - AuthEventBus

Publication synchrone, ordre d'abonnement, isolation des handlers en
erreur, historique borné.
"""

import pytest

from portal_client.core.interfaces import AuthState
from portal_client.events import (
    AuthErrorEvent,
    AuthEventBus,
    AuthEventType,
    IAuthEventBus,
    LoginSuccess,
    Logout,
    StateChanged,
    TokenRefreshed,
)
from portal_client.logging import LogLevel


class TestPublishSubscribe:
    """Dispatch par type."""

    def test_handler_receives_matching_event(self, bus: AuthEventBus) -> None:
        received = []
        bus.subscribe(AuthEventType.LOGIN_SUCCESS, received.append)

        event = LoginSuccess(user_id="u-1")
        bus.publish(event)

        assert received == [event]

    def test_handler_ignores_other_types(self, bus: AuthEventBus) -> None:
        received = []
        bus.subscribe(AuthEventType.LOGOUT, received.append)

        bus.publish(LoginSuccess())

        assert received == []

    def test_handlers_called_in_subscription_order(self, bus: AuthEventBus) -> None:
        calls = []
        bus.subscribe(AuthEventType.LOGOUT, lambda e: calls.append("first"))
        bus.subscribe(AuthEventType.LOGOUT, lambda e: calls.append("second"))
        bus.subscribe_all(lambda e: calls.append("all"))

        bus.publish(Logout())

        assert calls == ["first", "second", "all"]

    def test_event_type_tags(self) -> None:
        assert LoginSuccess().type == AuthEventType.LOGIN_SUCCESS
        assert Logout().type == AuthEventType.LOGOUT
        assert TokenRefreshed().type == AuthEventType.TOKEN_REFRESHED
        assert (
            StateChanged(previous=AuthState.AUTHENTICATED, current=AuthState.REFRESHING).type
            == AuthEventType.STATE_CHANGED
        )
        assert AuthErrorEvent(reason="x").type == AuthEventType.AUTH_ERROR

    def test_dispatch_by_event_class(self, bus: AuthEventBus) -> None:
        transitions = []
        reasons = []

        def on_event(event) -> None:
            if isinstance(event, StateChanged):
                transitions.append((event.previous, event.current))
            elif isinstance(event, AuthErrorEvent):
                reasons.append(event.reason)

        bus.subscribe_all(on_event)
        bus.publish(StateChanged(previous=AuthState.AUTHENTICATED, current=AuthState.REFRESHING))
        bus.publish(AuthErrorEvent(reason="refresh rejected"))
        bus.publish(Logout())

        assert transitions == [(AuthState.AUTHENTICATED, AuthState.REFRESHING)]
        assert reasons == ["refresh rejected"]

    def test_non_callable_handler_rejected(self, bus: AuthEventBus) -> None:
        with pytest.raises(TypeError):
            bus.subscribe(AuthEventType.LOGOUT, "not callable")

    def test_implements_interface(self, bus: AuthEventBus) -> None:
        assert isinstance(bus, IAuthEventBus)


class TestHandlerErrors:
    """Un handler en erreur n'interrompt pas les suivants."""

    def test_failing_handler_isolated(self, bus: AuthEventBus, logger) -> None:
        calls = []

        def failing(event):
            raise RuntimeError("handler crashed")

        bus.subscribe(AuthEventType.LOGOUT, failing)
        bus.subscribe(AuthEventType.LOGOUT, lambda e: calls.append("after"))

        bus.publish(Logout())

        assert calls == ["after"]
        errors = logger.get_entries_by_level(LogLevel.ERROR)
        assert len(errors) == 1
        assert errors[0].extra["error_type"] == "RuntimeError"


class TestUnsubscribe:
    """Désabonnement et once()."""

    def test_unsubscribe(self, bus: AuthEventBus) -> None:
        received = []
        handle = bus.subscribe(AuthEventType.LOGOUT, received.append)

        assert bus.unsubscribe(handle) is True
        assert bus.unsubscribe(handle) is False
        bus.publish(Logout())

        assert received == []

    def test_unsubscribed_during_publish_not_called(self, bus: AuthEventBus) -> None:
        calls = []
        handles = {}

        def first(event):
            calls.append("first")
            bus.unsubscribe(handles["second"])

        bus.subscribe(AuthEventType.LOGOUT, first)
        handles["second"] = bus.subscribe(AuthEventType.LOGOUT, lambda e: calls.append("second"))

        bus.publish(Logout())

        assert calls == ["first"]

    def test_once_called_once(self, bus: AuthEventBus) -> None:
        received = []
        bus.once(AuthEventType.TOKEN_REFRESHED, received.append)

        bus.publish(TokenRefreshed())
        bus.publish(TokenRefreshed())

        assert len(received) == 1
        assert bus.subscriber_count(AuthEventType.TOKEN_REFRESHED) == 0


class TestHistory:
    """Historique borné, plus récent en premier."""

    def test_history_newest_first(self, bus: AuthEventBus) -> None:
        login = LoginSuccess()
        logout = Logout()
        bus.publish(login)
        bus.publish(logout)

        assert bus.get_history() == [logout, login]
        assert bus.get_history(limit=1) == [logout]
        assert bus.get_history(event_type=AuthEventType.LOGIN_SUCCESS) == [login]

    def test_history_bounded(self, logger) -> None:
        bus = AuthEventBus(logger=logger, history_size=3)

        for _ in range(5):
            bus.publish(Logout())

        assert len(bus.get_history()) == 3

    def test_clear(self, bus: AuthEventBus) -> None:
        bus.subscribe(AuthEventType.LOGOUT, lambda e: None)
        bus.publish(Logout())

        bus.clear()

        assert bus.subscriber_count() == 0
        assert bus.get_history() == []
