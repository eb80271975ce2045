"""
Portal Client - Bootstrap

Racine de composition: construit explicitement chaque composant de la
session (aucun singleton). L'unicité par processus relève de l'appelant.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from portal_client.api import PortalApiClient
from portal_client.auth import (
    AuthCoordinator,
    FileTokenStore,
    HttpAuthTransport,
    ITokenStore,
)
from portal_client.events import AuthEventBus
from portal_client.logging import (
    InvalidLogLevelError,
    LogConfig,
    LogLevel,
    StructuredLogger,
    stderr_handler,
)
from portal_client.network import RetryingRequestExecutor, RetryPolicy
from portal_client.sync import CredentialMirror

from .errors import ConfigError
from .interfaces import ClientConfig


@dataclass
class PortalSession:
    """
    Composants d'une session client assemblés.

    Attributes:
        config: Configuration utilisée
        logger: Logger racine ("portal")
        bus: Bus d'événements d'authentification
        store: Persistance des tokens
        transport: Transport /auth/*
        coordinator: Coordinateur de session
        executor: Exécuteur des requêtes authentifiées
        api: Client des opérations métier
        mirror: Miroir des credentials (None si désactivé)
    """

    config: ClientConfig
    logger: StructuredLogger
    bus: AuthEventBus
    store: ITokenStore
    transport: HttpAuthTransport
    coordinator: AuthCoordinator
    executor: RetryingRequestExecutor
    api: PortalApiClient
    http_client: httpx.AsyncClient
    mirror: Optional[CredentialMirror] = None
    _owns_http_client: bool = field(default=True, repr=False)

    async def aclose(self) -> None:
        """Arrête la vérification périodique et ferme les clients HTTP."""
        await self.coordinator.stop_background_verification()
        if self.mirror is not None:
            self.mirror.detach()
        await self.transport.aclose()
        if self._owns_http_client:
            await self.http_client.aclose()
        self.logger.info("Session closed")

    async def __aenter__(self) -> "PortalSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def create_session(
    config: ClientConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    store: Optional[ITokenStore] = None,
    output_handler: Optional[Callable[[str], None]] = stderr_handler,
    restore: bool = True,
) -> PortalSession:
    """
    Assemble une session à partir de la configuration.

    Args:
        config: Configuration client
        http_client: Client httpx partagé (tests: httpx.MockTransport);
            son base_url doit être config.api_base_url
        store: Persistance des tokens (défaut: FileTokenStore de la config)
        output_handler: Sortie des lignes de log JSON (None: capture seule)
        restore: Recharge la paire persistée s'il y en a une

    Returns:
        PortalSession prête à l'emploi

    Raises:
        ConfigError: Si niveau de log ou clé de chiffrement invalide
    """
    try:
        min_level = LogLevel.from_string(config.log_level)
    except InvalidLogLevelError as e:
        raise ConfigError(f"Invalid log level: {config.log_level}") from e
    if config.credential_sync_enabled and config.credential_sync_dir is None:
        raise ConfigError("credential_sync_dir is required when credential sync is enabled")

    logger = StructuredLogger(
        "portal",
        config=LogConfig(min_level=min_level),
        output_handler=output_handler,
    )

    if store is None:
        try:
            store = FileTokenStore(
                config.token_store_path,
                encryption_key=config.token_store_key,
                logger=logger.child("store"),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid token store key: {e}") from e

    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(
            base_url=config.api_base_url, timeout=config.request_timeout_seconds
        )

    bus = AuthEventBus(logger=logger.child("events"))
    transport = HttpAuthTransport(
        config.api_base_url,
        client_id=config.client_id,
        client_secret=config.client_secret,
        timeout_seconds=config.request_timeout_seconds,
        http_client=http_client,
    )
    coordinator = AuthCoordinator(
        store,
        bus,
        transport,
        logger=logger.child("auth"),
        refresh_debounce_seconds=config.refresh_debounce_seconds,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    executor = RetryingRequestExecutor(
        coordinator,
        logger=logger.child("network"),
        default_policy=RetryPolicy.from_settings(config.retry),
        timeout_seconds=config.request_timeout_seconds,
    )
    api = PortalApiClient(http_client, executor, logger=logger.child("api"))

    mirror: Optional[CredentialMirror] = None
    if config.credential_sync_enabled:
        mirror = CredentialMirror(
            config.credential_sync_dir,
            lambda: coordinator.current_tokens,
            logger=logger.child("sync"),
        )
        mirror.attach(bus)

    if restore:
        coordinator.restore()

    logger.info(
        "Session created",
        api_base_url=config.api_base_url,
        mirror_enabled=mirror is not None,
    )
    return PortalSession(
        config=config,
        logger=logger,
        bus=bus,
        store=store,
        transport=transport,
        coordinator=coordinator,
        executor=executor,
        api=api,
        http_client=http_client,
        mirror=mirror,
        _owns_http_client=owns_http_client,
    )
