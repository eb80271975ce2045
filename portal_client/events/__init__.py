"""
Portal Client - Events

Bus publish/subscribe des événements d'authentification:
LOGIN_SUCCESS, LOGOUT, TOKEN_REFRESHED, STATE_CHANGED, AUTH_ERROR.
"""

from .interfaces import (
    # Enums
    AuthEventType,
    # Variantes
    AuthEvent,
    LoginSuccess,
    Logout,
    TokenRefreshed,
    StateChanged,
    AuthErrorEvent,
    # Types
    AuthEventHandler,
    SubscriptionHandle,
    # Interfaces
    IAuthEventBus,
)
from .event_bus import AuthEventBus

__all__ = [
    "AuthEventType",
    "AuthEvent",
    "LoginSuccess",
    "Logout",
    "TokenRefreshed",
    "StateChanged",
    "AuthErrorEvent",
    "AuthEventHandler",
    "SubscriptionHandle",
    "IAuthEventBus",
    "AuthEventBus",
]
