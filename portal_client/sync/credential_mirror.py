"""
Portal Client - Credential Mirror

Recopie les credentials courants dans le répertoire de configuration
d'un outil externe (fichier auth.json, permissions 0600).

Collaborateur du bus d'événements:
    LOGIN_SUCCESS / TOKEN_REFRESHED → écriture de auth.json
    LOGOUT                          → suppression de auth.json

Les échecs sont journalisés et jamais propagés: la session ne dépend
pas du succès du miroir.
"""

import contextlib
import json
import os
from pathlib import Path
from typing import Callable, List, Optional, Union

from portal_client.auth.interfaces import TokenPair
from portal_client.events import (
    AuthEvent,
    AuthEventType,
    IAuthEventBus,
    SubscriptionHandle,
)
from portal_client.logging import StructuredLogger


class CredentialMirror:
    """
    Miroir des credentials vers un outil externe.

    Example:
        mirror = CredentialMirror(Path("~/.claude"), lambda: coordinator.current_tokens)
        mirror.attach(bus)
    """

    AUTH_FILE_NAME: str = "auth.json"
    FILE_MODE: int = 0o600
    DIR_MODE: int = 0o700
    SOURCE: str = "portal-client"

    def __init__(
        self,
        target_dir: Union[str, Path],
        tokens_provider: Callable[[], Optional[TokenPair]],
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            target_dir: Répertoire de configuration de l'outil externe
            tokens_provider: Retourne la paire courante (ex: coordinator.current_tokens)
            logger: Logger structuré
        """
        self._target_dir = Path(target_dir).expanduser()
        self._tokens_provider = tokens_provider
        self._logger = logger or StructuredLogger("portal.sync")
        self._handles: List[SubscriptionHandle] = []
        self._bus: Optional[IAuthEventBus] = None

    @property
    def auth_file(self) -> Path:
        return self._target_dir / self.AUTH_FILE_NAME

    @property
    def attached(self) -> bool:
        return bool(self._handles)

    def attach(self, bus: IAuthEventBus) -> None:
        """Abonne le miroir aux événements de session."""
        if self._handles:
            return
        self._bus = bus
        self._handles = [
            bus.subscribe(AuthEventType.LOGIN_SUCCESS, self._on_credentials_changed),
            bus.subscribe(AuthEventType.TOKEN_REFRESHED, self._on_credentials_changed),
            bus.subscribe(AuthEventType.LOGOUT, self._on_logout),
        ]
        self._logger.info("Credential mirror attached", target=str(self._target_dir))

    def detach(self) -> None:
        """Désabonne le miroir."""
        if self._bus is not None:
            for handle in self._handles:
                self._bus.unsubscribe(handle)
        self._handles = []
        self._bus = None

    def _on_credentials_changed(self, event: AuthEvent) -> None:
        pair = self._tokens_provider()
        if pair is None:
            self._logger.warn("No credentials to mirror", event_type=event.type.value)
            return
        self.write(pair)

    def _on_logout(self, event: AuthEvent) -> None:
        self.remove()

    def write(self, pair: TokenPair) -> bool:
        """
        Écrit auth.json de façon atomique.

        Returns:
            True si écrit
        """
        expires_at = pair.access_expires_at()
        payload = {
            "accessToken": pair.access_token,
            "refreshToken": pair.refresh_token,
            "obtainedAt": pair.obtained_at.isoformat(),
            "expiresAt": expires_at.isoformat() if expires_at else None,
            "source": self.SOURCE,
        }
        target = self.auth_file
        tmp_path = target.with_name(target.name + ".tmp")
        try:
            self._target_dir.mkdir(parents=True, exist_ok=True, mode=self.DIR_MODE)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, target)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            self._logger.error("Credential mirror write failed", path=str(target), error=str(e))
            return False

        self._logger.info("Credentials mirrored", path=str(target))
        return True

    def remove(self) -> bool:
        """
        Supprime auth.json (succès si déjà absent).

        Returns:
            True si le fichier n'existe plus
        """
        try:
            self.auth_file.unlink(missing_ok=True)
        except OSError as e:
            self._logger.error(
                "Credential mirror removal failed", path=str(self.auth_file), error=str(e)
            )
            return False
        self._logger.info("Mirrored credentials removed", path=str(self.auth_file))
        return True
