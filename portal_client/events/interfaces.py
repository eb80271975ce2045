"""
Portal Client - Events Interfaces

Événements du cycle de vie de l'authentification.

Ensemble fermé de variantes (union taguée): les consommateurs
distinguent les événements par leur classe plutôt que par une chaîne.

    if isinstance(event, StateChanged):
        on_state(event.previous, event.current)
    elif isinstance(event, AuthErrorEvent):
        on_error(event.reason)

Les événements sont éphémères: seuls les abonnés présents au moment de
la publication les reçoivent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

from portal_client.core.interfaces import AuthState


class AuthEventType(Enum):
    """Types d'événements publiés par le coordinateur."""

    LOGIN_SUCCESS = "login_success"
    LOGOUT = "logout"
    TOKEN_REFRESHED = "token_refreshed"
    STATE_CHANGED = "state_changed"
    AUTH_ERROR = "auth_error"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LoginSuccess:
    """Login réussi; user_id issu de la réponse serveur si présent."""

    type: ClassVar[AuthEventType] = AuthEventType.LOGIN_SUCCESS

    user_id: Optional[str] = None
    source: str = "coordinator"
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class Logout:
    """
    Session terminée.

    reason: "user" (logout explicite) ou "refresh_rejected" (forcé)
    """

    type: ClassVar[AuthEventType] = AuthEventType.LOGOUT

    reason: str = "user"
    source: str = "coordinator"
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class TokenRefreshed:
    """Paire de tokens remplacée; ne transporte jamais les tokens eux-mêmes."""

    type: ClassVar[AuthEventType] = AuthEventType.TOKEN_REFRESHED

    obtained_at: datetime = field(default_factory=_utc_now)
    source: str = "coordinator"
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class StateChanged:
    """Transition d'état (from → to)."""

    type: ClassVar[AuthEventType] = AuthEventType.STATE_CHANGED

    previous: AuthState
    current: AuthState
    source: str = "coordinator"
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass(frozen=True)
class AuthErrorEvent:
    """Erreur affectant la validité de la session."""

    type: ClassVar[AuthEventType] = AuthEventType.AUTH_ERROR

    reason: str
    error_type: str = ""
    source: str = "coordinator"
    timestamp: datetime = field(default_factory=_utc_now)


AuthEvent = Union[LoginSuccess, Logout, TokenRefreshed, StateChanged, AuthErrorEvent]

AuthEventHandler = Callable[[AuthEvent], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Jeton retourné par subscribe(), requis pour unsubscribe()."""

    subscription_id: int
    event_type: Optional[AuthEventType]


class IAuthEventBus(ABC):
    """
    Interface bus d'événements d'authentification.

    Les handlers sont appelés de façon synchrone, dans l'ordre
    d'abonnement, dans la tâche qui publie. Une exception d'un handler
    est journalisée et n'empêche pas les suivants.
    """

    @abstractmethod
    def subscribe(
        self, event_type: AuthEventType, handler: AuthEventHandler
    ) -> SubscriptionHandle:
        """
        Abonne un handler à un type d'événement.

        Returns:
            Handle pour désabonnement
        """
        pass

    @abstractmethod
    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """
        Retire un abonnement.

        Returns:
            True si retiré, False si inconnu
        """
        pass

    @abstractmethod
    def publish(self, event: AuthEvent) -> None:
        """Publie un événement à tous les abonnés courants."""
        pass
