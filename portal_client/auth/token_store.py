"""
Portal Client - Token Store

Persistance de la paire de tokens courante.

Limite connue: aucun verrou inter-processus. Deux processus partageant
le même fichier peuvent s'écraser mutuellement.
"""

import contextlib
import json
import os
from pathlib import Path
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken

from portal_client.core.errors import TokenStoreError
from portal_client.logging import StructuredLogger

from .interfaces import ITokenStore, TokenPair


class InMemoryTokenStore(ITokenStore):
    """
    Stockage en mémoire (sessions éphémères, tests).

    Example:
        store = InMemoryTokenStore()
        store.save(TokenPair("a", "r"))
    """

    def __init__(self, initial: Optional[TokenPair] = None) -> None:
        self._pair: Optional[TokenPair] = initial

    def load(self) -> Optional[TokenPair]:
        return self._pair

    def save(self, pair: TokenPair) -> None:
        self._pair = pair

    def clear(self) -> None:
        self._pair = None


class FileTokenStore(ITokenStore):
    """
    Stockage fichier JSON, optionnellement chiffré (Fernet).

    Écriture atomique: fichier temporaire dans le même répertoire puis
    os.replace. Permissions 0600.

    Un fichier illisible (JSON corrompu, clé différente) est traité comme
    absent et journalisé: l'utilisateur devra se reconnecter.

    Example:
        store = FileTokenStore(Path("~/.portal-client/tokens.json").expanduser(),
                               encryption_key=Fernet.generate_key())
    """

    FILE_MODE: int = 0o600
    DIR_MODE: int = 0o700

    def __init__(
        self,
        path: Union[str, Path],
        encryption_key: Optional[Union[str, bytes]] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            path: Chemin du fichier de tokens
            encryption_key: Clé Fernet (urlsafe base64, 32 octets) optionnelle
            logger: Logger structuré

        Raises:
            ValueError: Si clé Fernet invalide
        """
        self._path = Path(path).expanduser()
        self._fernet: Optional[Fernet] = Fernet(encryption_key) if encryption_key else None
        self._logger = logger or StructuredLogger("portal.auth.store")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def load(self) -> Optional[TokenPair]:
        """Charge la paire; None si fichier absent ou illisible."""
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            self._logger.warn("Token file unreadable", path=str(self._path), error=str(e))
            return None

        if self._fernet is not None:
            try:
                raw = self._fernet.decrypt(raw)
            except InvalidToken:
                self._logger.warn("Token file could not be decrypted", path=str(self._path))
                return None

        try:
            data = json.loads(raw.decode("utf-8"))
            return TokenPair.from_dict(data)
        except (UnicodeDecodeError, ValueError) as e:
            self._logger.warn("Token file corrupted", path=str(self._path), error=str(e))
            return None

    def save(self, pair: TokenPair) -> None:
        """
        Écrit la paire de façon atomique.

        Raises:
            TokenStoreError: Échec d'écriture
        """
        payload = json.dumps(pair.to_dict()).encode("utf-8")
        if self._fernet is not None:
            payload = self._fernet.encrypt(payload)

        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True, mode=self.DIR_MODE)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise TokenStoreError(f"Cannot write token file {self._path}: {e}") from e

    def clear(self) -> None:
        """
        Supprime le fichier (succès si déjà absent).

        Raises:
            TokenStoreError: Échec de suppression
        """
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise TokenStoreError(f"Cannot remove token file {self._path}: {e}") from e
