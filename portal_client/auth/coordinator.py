"""
Portal Client - Auth Coordinator

Machine d'état de la session authentifiée.

Transitions:
    UNAUTHENTICATED/LOGGED_OUT --login--> AUTHENTICATING --ok--> AUTHENTICATED
    AUTHENTICATING --échec--> UNAUTHENTICATED (+AUTH_ERROR)
    AUTHENTICATED --refresh--> REFRESHING --ok--> AUTHENTICATED (+TOKEN_REFRESHED)
    REFRESHING --refresh rejeté--> UNAUTHENTICATED (+AUTH_ERROR, +LOGOUT)
    REFRESHING --erreur réseau--> AUTHENTICATED (session conservée)
    * --logout--> LOGGED_OUT (+LOGOUT)

Modèle d'exécution: boucle asyncio unique. Aucune primitive de verrou:
l'exclusion mutuelle vient du champ d'état unique et de la file
d'attente des appelants bloqués sur un refresh en cours.
"""

import asyncio
import contextlib
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from portal_client.core.errors import (
    InvalidCredentials,
    InvalidStateError,
    NetworkError,
    NotAuthenticated,
    PortalClientError,
    RefreshTokenExpired,
    TokenStoreError,
)
from portal_client.core.interfaces import MAX_VERIFY_INTERVAL_SECONDS, AuthState
from portal_client.events import (
    AuthErrorEvent,
    AuthEvent,
    IAuthEventBus,
    LoginSuccess,
    Logout,
    StateChanged,
    TokenRefreshed,
)
from portal_client.logging import StructuredLogger

from .interfaces import IAuthCoordinator, IAuthTransport, ITokenStore, TokenPair

T = TypeVar("T")


class AuthCoordinator(IAuthCoordinator):
    """
    Coordinateur de session: login/logout/refresh/verify.

    Seul écrivain du TokenStore et seul émetteur des événements
    d'authentification de haut niveau.

    Refresh single-flight:
        Un refresh demandé pendant REFRESHING ne déclenche pas de second
        appel réseau: l'appelant est mis en file et reçoit le résultat
        (token ou erreur) du refresh en cours.

    Fenêtre anti-rebond:
        Un refresh non forcé arrivant moins de refresh_debounce_seconds
        après le dernier refresh réussi est servi depuis le token courant.

    Example:
        coordinator = AuthCoordinator(store, bus, transport)
        await coordinator.login("dev@example.com", "secret")
        token = await coordinator.get_valid_token()
    """

    DEFAULT_REFRESH_DEBOUNCE_SECONDS: float = 10.0
    DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 15.0
    # Marge avant expiration JWT déclenchant un refresh anticipé
    EXPIRY_MARGIN_SECONDS: float = 30.0

    def __init__(
        self,
        store: ITokenStore,
        bus: IAuthEventBus,
        transport: IAuthTransport,
        logger: Optional[StructuredLogger] = None,
        refresh_debounce_seconds: float = DEFAULT_REFRESH_DEBOUNCE_SECONDS,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            store: Persistance de la paire de tokens
            bus: Bus d'événements d'authentification
            transport: Appels réseau /auth/*
            logger: Logger structuré
            refresh_debounce_seconds: Fenêtre anti-rebond des refresh (défaut: 10s)
            request_timeout_seconds: Timeout par appel réseau (défaut: 15s)
            clock: Horloge monotone (injectable pour tests)
        """
        if refresh_debounce_seconds < 0:
            raise ValueError("refresh_debounce_seconds must not be negative")
        if request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        self._store = store
        self._bus = bus
        self._transport = transport
        self._logger = logger or StructuredLogger("portal.auth")
        self._refresh_debounce_seconds = refresh_debounce_seconds
        self._request_timeout_seconds = request_timeout_seconds
        self._clock = clock

        self._state = AuthState.UNAUTHENTICATED
        self._tokens: Optional[TokenPair] = None
        self._user: Optional[Dict[str, Any]] = None
        self._last_refresh_at: Optional[float] = None
        # Appelants en attente du refresh en cours
        self._waiters: Deque["asyncio.Future[str]"] = deque()
        # Incrémenté à chaque login/logout: un résultat réseau d'une
        # session précédente est ignoré
        self._epoch = 0
        self._verify_task: Optional["asyncio.Task[None]"] = None

    # ──────────────────────────────────────────────────────────────────────
    # Lecture
    # ──────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> AuthState:
        """État courant."""
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state in (AuthState.AUTHENTICATED, AuthState.REFRESHING)

    @property
    def current_tokens(self) -> Optional[TokenPair]:
        """Instantané de la paire courante (objet immuable)."""
        return self._tokens

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        """Profil utilisateur reçu au login."""
        return dict(self._user) if self._user is not None else None

    @property
    def pending_waiters(self) -> int:
        """Nombre d'appelants bloqués sur le refresh en cours."""
        return sum(1 for w in self._waiters if not w.done())

    @property
    def verification_running(self) -> bool:
        return self._verify_task is not None and not self._verify_task.done()

    # ──────────────────────────────────────────────────────────────────────
    # Cycle de vie
    # ──────────────────────────────────────────────────────────────────────

    def restore(self) -> bool:
        """
        Reprend une session persistée, sans appel réseau.

        Returns:
            True si une paire a été chargée (état AUTHENTICATED)

        Raises:
            InvalidStateError: Si une session est déjà active
        """
        if self._state not in (AuthState.UNAUTHENTICATED, AuthState.LOGGED_OUT):
            raise InvalidStateError(f"Cannot restore session while {self._state.value}")

        pair = self._store.load()
        if pair is None:
            self._logger.info("No persisted session")
            return False

        self._epoch += 1
        self._tokens = pair
        self._last_refresh_at = None
        self._transition(AuthState.AUTHENTICATED)
        self._logger.info("Persisted session restored")
        return True

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """
        Authentifie l'utilisateur.

        Args:
            email: Email utilisateur
            password: Mot de passe

        Returns:
            Profil utilisateur renvoyé par le serveur

        Raises:
            InvalidStateError: Login ou refresh déjà en cours
            InvalidCredentials: Identifiants refusés
            NetworkError: Serveur injoignable / timeout
            ServerError: Erreur 5xx
        """
        if self._state in (AuthState.AUTHENTICATING, AuthState.REFRESHING):
            raise InvalidStateError(f"Cannot login while {self._state.value}")
        if not email or not password:
            raise InvalidCredentials("email and password are required")

        self._epoch += 1
        epoch = self._epoch
        self._transition(AuthState.AUTHENTICATING)

        try:
            result = await self._with_timeout(self._transport.login(email, password))
        except asyncio.CancelledError:
            if epoch == self._epoch:
                self._reset_session()
                self._transition(AuthState.UNAUTHENTICATED)
            raise
        except Exception as e:
            if epoch == self._epoch:
                self._fail_login(e)
            raise

        if epoch != self._epoch:
            # Paire émise après le logout: révoquée côté serveur
            await self._revoke_server_session(result.tokens.refresh_token)
            raise NotAuthenticated("Login superseded by logout")

        self._tokens = result.tokens
        self._user = dict(result.user)
        self._last_refresh_at = None
        self._persist(result.tokens)

        user_id = result.user.get("id")
        self._transition(
            AuthState.AUTHENTICATED,
            LoginSuccess(user_id=str(user_id) if user_id is not None else None),
        )
        self._logger.info("Login succeeded", user_id=user_id)
        return dict(result.user)

    def _fail_login(self, error: Exception) -> None:
        self._logger.warn(
            "Login failed",
            error=str(error),
            error_type=type(error).__name__,
        )
        self._reset_session()
        self._transition(
            AuthState.UNAUTHENTICATED,
            AuthErrorEvent(reason=str(error), error_type=type(error).__name__),
        )

    async def logout(self) -> None:
        """
        Termine la session.

        L'état local est effacé immédiatement (get_valid_token échoue dès
        le retour), puis le serveur est notifié en best-effort: un échec
        réseau est journalisé, jamais levé.
        """
        if self._state == AuthState.LOGGED_OUT and self._tokens is None:
            return

        tokens = self._tokens
        self._epoch += 1
        self._reset_session()
        self._transition(AuthState.LOGGED_OUT, Logout(reason="user"))
        self._settle_waiters(error=NotAuthenticated("Logged out"))
        self._logger.info("Logged out")

        if tokens is not None:
            await self._revoke_server_session(tokens.refresh_token)

    async def _revoke_server_session(self, refresh_token: str) -> None:
        """POST /auth/logout en best-effort: échec journalisé, jamais levé."""
        try:
            await self._with_timeout(self._transport.logout(refresh_token))
        except PortalClientError as e:
            self._logger.warn(
                "Server-side logout failed",
                error=str(e),
                error_type=type(e).__name__,
            )

    # ──────────────────────────────────────────────────────────────────────
    # Tokens
    # ──────────────────────────────────────────────────────────────────────

    async def get_valid_token(self) -> str:
        """
        Retourne un access token utilisable.

        - AUTHENTICATED: token courant (refresh anticipé si le JWT a expiré)
        - REFRESHING: attend le refresh en cours
        - autres états: NotAuthenticated

        Raises:
            NotAuthenticated: Aucune session
            RefreshTokenExpired: Le refresh attendu a été rejeté
            NetworkError: Le refresh attendu a échoué (session conservée)
        """
        if self._state == AuthState.REFRESHING:
            return await self._wait_for_refresh()

        tokens = self._tokens
        if self._state != AuthState.AUTHENTICATED or tokens is None:
            raise NotAuthenticated()

        if tokens.is_access_expired(margin_seconds=self.EXPIRY_MARGIN_SECONDS):
            self._logger.info("Access token expired, refreshing")
            return await self.refresh(force=True, rejected_token=tokens.access_token)

        return tokens.access_token

    async def refresh(self, force: bool = False, rejected_token: Optional[str] = None) -> str:
        """
        Rafraîchit la paire de tokens (single-flight).

        Args:
            force: Ignore la fenêtre anti-rebond (ex: réponse 401)
            rejected_token: Access token refusé par le serveur; si la paire
                a déjà été remplacée depuis, le token courant est retourné
                sans appel réseau

        Returns:
            Nouvel access token (ou token courant si servi depuis le cache)

        Raises:
            NotAuthenticated: Aucune session
            RefreshTokenExpired: Refresh rejeté, session terminée
            NetworkError/ServerError: Échec transitoire, session conservée
        """
        if self._state == AuthState.REFRESHING:
            return await self._wait_for_refresh()

        current = self._tokens
        if self._state != AuthState.AUTHENTICATED or current is None:
            raise NotAuthenticated()

        if rejected_token is not None and rejected_token != current.access_token:
            self._logger.debug("Token already replaced, skipping refresh")
            return current.access_token

        if not force and self._within_debounce_window():
            self._logger.debug("Refresh debounced, serving cached token")
            return current.access_token

        return await self._run_refresh(current)

    async def _run_refresh(self, current: TokenPair) -> str:
        epoch = self._epoch
        self._transition(AuthState.REFRESHING)
        self._logger.info("Token refresh started")

        try:
            new_pair = await self._with_timeout(self._transport.refresh(current.refresh_token))
        except asyncio.CancelledError:
            if epoch == self._epoch:
                self._transition(AuthState.AUTHENTICATED)
                self._settle_waiters(error=NetworkError("Token refresh cancelled"))
            raise
        except RefreshTokenExpired as e:
            if epoch == self._epoch:
                self._expire_session(e)
                self._settle_waiters(error=e)
            raise
        except Exception as e:
            if epoch == self._epoch:
                self._logger.warn(
                    "Token refresh failed, session kept",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._transition(AuthState.AUTHENTICATED)
                self._settle_waiters(error=e)
            raise

        if epoch != self._epoch:
            # logout pendant le refresh: les attentes ont déjà été rejetées
            raise NotAuthenticated("Session ended during token refresh")

        self._tokens = new_pair
        self._last_refresh_at = self._clock()
        self._persist(new_pair)
        self._transition(
            AuthState.AUTHENTICATED,
            TokenRefreshed(obtained_at=new_pair.obtained_at),
        )
        self._settle_waiters(token=new_pair.access_token)
        self._logger.info("Token refresh succeeded")
        return new_pair.access_token

    def _expire_session(self, error: RefreshTokenExpired) -> None:
        self._logger.warn("Refresh token rejected, session terminated", error=str(error))
        self._epoch += 1
        self._reset_session()
        self._transition(
            AuthState.UNAUTHENTICATED,
            AuthErrorEvent(reason=str(error), error_type=type(error).__name__),
            Logout(reason="refresh_rejected"),
        )

    def _within_debounce_window(self) -> bool:
        if self._last_refresh_at is None:
            return False
        return (self._clock() - self._last_refresh_at) < self._refresh_debounce_seconds

    async def _wait_for_refresh(self) -> str:
        waiter: "asyncio.Future[str]" = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return await waiter

    def _settle_waiters(
        self, token: Optional[str] = None, error: Optional[BaseException] = None
    ) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)

    # ──────────────────────────────────────────────────────────────────────
    # Vérification
    # ──────────────────────────────────────────────────────────────────────

    async def verify(self) -> bool:
        """
        Vérifie que la session est utilisable.

        Returns:
            True si une session reste active après vérification
        """
        if not self.is_authenticated:
            return False

        try:
            await self.get_valid_token()
        except (NotAuthenticated, RefreshTokenExpired):
            return False
        except PortalClientError as e:
            self._logger.warn(
                "Session verification inconclusive",
                error=str(e),
                error_type=type(e).__name__,
            )
        return self.is_authenticated

    def start_background_verification(
        self, interval_seconds: float = MAX_VERIFY_INTERVAL_SECONDS
    ) -> None:
        """
        Lance verify() périodiquement sur la boucle courante.

        Args:
            interval_seconds: Période (plafonnée à 300s)
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._verify_task is not None and not self._verify_task.done():
            return

        interval = min(interval_seconds, MAX_VERIFY_INTERVAL_SECONDS)
        self._verify_task = asyncio.get_running_loop().create_task(
            self._verification_loop(interval)
        )
        self._logger.info("Background verification started", interval_seconds=interval)

    async def stop_background_verification(self) -> None:
        """Arrête la vérification périodique."""
        task = self._verify_task
        self._verify_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._logger.info("Background verification stopped")

    async def _verification_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self.is_authenticated:
                continue
            try:
                await self.verify()
            except Exception as e:
                self._logger.error(
                    "Background verification failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    # ──────────────────────────────────────────────────────────────────────
    # Erreurs remontées par les consommateurs
    # ──────────────────────────────────────────────────────────────────────

    def report_auth_error(self, reason: str, error_type: str = "AuthError") -> None:
        """Publie AUTH_ERROR (ex: 401 persistant après refresh)."""
        self._logger.warn("Auth error reported", reason=reason, error_type=error_type)
        self._bus.publish(AuthErrorEvent(reason=reason, error_type=error_type))

    # ──────────────────────────────────────────────────────────────────────
    # Interne
    # ──────────────────────────────────────────────────────────────────────

    def _transition(self, new_state: AuthState, *events: AuthEvent) -> None:
        """
        Applique une transition puis publie ses événements.

        L'état est modifié avant toute publication: un handler qui lit
        state voit déjà le nouvel état.
        """
        previous = self._state
        self._state = new_state

        if previous != new_state:
            self._logger.debug(
                "Auth state changed",
                previous=previous.value,
                current=new_state.value,
            )

        for event in events:
            self._bus.publish(event)
        if previous != new_state:
            self._bus.publish(StateChanged(previous=previous, current=new_state))

    def _reset_session(self) -> None:
        self._tokens = None
        self._user = None
        self._last_refresh_at = None
        try:
            self._store.clear()
        except TokenStoreError as e:
            self._logger.error("Token store clear failed", error=str(e))

    def _persist(self, pair: TokenPair) -> None:
        # Session conservée en mémoire même si la persistance échoue
        try:
            self._store.save(pair)
        except TokenStoreError as e:
            self._logger.error("Token store save failed", error=str(e))

    async def _with_timeout(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._request_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Auth request timed out after {self._request_timeout_seconds}s"
            ) from e
