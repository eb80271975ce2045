"""
Portal Client - Auth Event Bus

Canal publish/subscribe des événements d'authentification,
indépendant du transport HTTP.
"""

import itertools
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from portal_client.logging import StructuredLogger

from .interfaces import (
    AuthEvent,
    AuthEventHandler,
    AuthEventType,
    IAuthEventBus,
    SubscriptionHandle,
)


class AuthEventBus(IAuthEventBus):
    """
    Bus d'événements d'authentification.

    Instance explicite, construite par la racine de composition et
    injectée dans le coordinateur et les collaborateurs.

    Example:
        bus = AuthEventBus()
        handle = bus.subscribe(AuthEventType.LOGOUT, on_logout)
        bus.publish(Logout())
        bus.unsubscribe(handle)
    """

    DEFAULT_HISTORY_SIZE: int = 50

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        """
        Args:
            logger: Logger pour les erreurs de handlers
            history_size: Nombre d'événements conservés dans l'historique
        """
        self._logger = logger or StructuredLogger("portal.events")
        self._ids = itertools.count(1)
        # None = abonnement à tous les types
        self._subscriptions: Dict[int, Tuple[Optional[AuthEventType], AuthEventHandler]] = {}
        self._history: Deque[AuthEvent] = deque(maxlen=max(1, history_size))

    def subscribe(
        self, event_type: AuthEventType, handler: AuthEventHandler
    ) -> SubscriptionHandle:
        """
        Abonne un handler à un type d'événement.

        Raises:
            TypeError: Si handler non appelable
        """
        if not callable(handler):
            raise TypeError("handler must be callable")
        return self._register(event_type, handler)

    def subscribe_all(self, handler: AuthEventHandler) -> SubscriptionHandle:
        """Abonne un handler à tous les types d'événements."""
        if not callable(handler):
            raise TypeError("handler must be callable")
        return self._register(None, handler)

    def once(
        self, event_type: AuthEventType, handler: AuthEventHandler
    ) -> SubscriptionHandle:
        """Abonne un handler qui se retire après sa première invocation."""
        handle: Optional[SubscriptionHandle] = None

        def _once(event: AuthEvent) -> None:
            if handle is not None:
                self.unsubscribe(handle)
            handler(event)

        handle = self.subscribe(event_type, _once)
        return handle

    def _register(
        self, event_type: Optional[AuthEventType], handler: AuthEventHandler
    ) -> SubscriptionHandle:
        subscription_id = next(self._ids)
        self._subscriptions[subscription_id] = (event_type, handler)
        return SubscriptionHandle(subscription_id=subscription_id, event_type=event_type)

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """Retire un abonnement (idempotent)."""
        return self._subscriptions.pop(handle.subscription_id, None) is not None

    def publish(self, event: AuthEvent) -> None:
        """
        Publie un événement.

        Les handlers sont appelés dans l'ordre d'abonnement. La liste est
        figée au début de la publication: un handler ajouté pendant la
        publication ne reçoit pas l'événement courant.
        """
        self._history.append(event)
        self._logger.debug(
            "Auth event published",
            event_type=event.type.value,
            source=event.source,
        )

        # dict conserve l'ordre d'insertion = ordre d'abonnement
        snapshot = list(self._subscriptions.items())
        for subscription_id, (event_type, handler) in snapshot:
            if event_type is not None and event_type != event.type:
                continue
            if subscription_id not in self._subscriptions:
                continue
            try:
                handler(event)
            except Exception as e:
                self._logger.error(
                    "Auth event handler failed",
                    event_type=event.type.value,
                    subscription_id=subscription_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def get_history(
        self,
        limit: Optional[int] = None,
        event_type: Optional[AuthEventType] = None,
    ) -> List[AuthEvent]:
        """
        Retourne l'historique récent (plus récent en premier).

        Args:
            limit: Nombre max d'événements
            event_type: Filtre par type
        """
        history = [e for e in reversed(self._history) if event_type is None or e.type == event_type]
        if limit is not None and limit > 0:
            history = history[:limit]
        return history

    def subscriber_count(self, event_type: Optional[AuthEventType] = None) -> int:
        """Nombre d'abonnés (pour un type, ou total)."""
        if event_type is None:
            return len(self._subscriptions)
        return sum(
            1 for t, _ in self._subscriptions.values() if t is None or t == event_type
        )

    def clear(self) -> None:
        """Retire tous les abonnements et l'historique."""
        self._subscriptions.clear()
        self._history.clear()
