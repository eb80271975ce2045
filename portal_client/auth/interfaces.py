"""
Portal Client - Auth Interfaces

Définit les contrats pour la persistance des tokens, le transport
d'authentification et le coordinateur de session.
Toute implémentation DOIT respecter ces interfaces.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt

from portal_client.core.interfaces import AuthState


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    """
    Paire access/refresh token.

    Toujours complète: un refresh remplace l'objet entier, jamais un
    champ isolé.

    Attributes:
        access_token: Token court autorisant les appels API
        refresh_token: Token long servant à obtenir un nouvel access token
        obtained_at: Horodatage d'obtention (UTC)
    """

    access_token: str
    refresh_token: str
    obtained_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        """Validation des contraintes."""
        if not isinstance(self.access_token, str) or not self.access_token:
            raise ValueError("access_token must be a non-empty string")
        if not isinstance(self.refresh_token, str) or not self.refresh_token:
            raise ValueError("refresh_token must be a non-empty string")
        if self.obtained_at.tzinfo is None:
            raise ValueError("obtained_at must be timezone-aware")

    def access_expires_at(self) -> Optional[datetime]:
        """
        Expiration de l'access token (claim exp), sans vérifier la signature.

        Le client ne détient pas la clé du serveur: cette lecture sert
        uniquement à anticiper un refresh.

        Returns:
            Date d'expiration UTC, ou None si token non-JWT ou sans exp
        """
        try:
            payload = jwt.decode(self.access_token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None

        exp = payload.get("exp")
        if exp is None:
            return None
        try:
            return datetime.fromtimestamp(float(exp), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            return None

    def is_access_expired(
        self, margin_seconds: float = 0.0, now: Optional[datetime] = None
    ) -> bool:
        """
        True si l'access token expire dans moins de margin_seconds.

        Un token sans expiration lisible n'est jamais considéré expiré:
        c'est le serveur (401) qui tranche.
        """
        expires_at = self.access_expires_at()
        if expires_at is None:
            return False
        current = now or datetime.now(timezone.utc)
        return (expires_at - current).total_seconds() <= margin_seconds

    def to_dict(self) -> Dict[str, str]:
        """Format de persistance (clés du contrat HTTP)."""
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "obtainedAt": self.obtained_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenPair":
        """
        Reconstruit une paire depuis le format de persistance.

        Raises:
            ValueError: Si champs manquants ou invalides
        """
        try:
            access_token = data["accessToken"]
            refresh_token = data["refreshToken"]
        except (KeyError, TypeError) as e:
            raise ValueError(f"incomplete token pair: {e}") from e

        obtained_raw = data.get("obtainedAt")
        try:
            obtained_at = datetime.fromisoformat(obtained_raw) if obtained_raw else _utc_now()
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid obtainedAt: {obtained_raw!r}") from e
        if obtained_at.tzinfo is None:
            obtained_at = obtained_at.replace(tzinfo=timezone.utc)

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            obtained_at=obtained_at,
        )


@dataclass(frozen=True)
class LoginResult:
    """Résultat d'un login réussi."""

    tokens: TokenPair
    user: Dict[str, Any] = field(default_factory=dict)


class ITokenStore(ABC):
    """
    Interface persistance de la paire de tokens.

    Aucune validation, aucun accès réseau. Seul AuthCoordinator écrit.
    """

    @abstractmethod
    def load(self) -> Optional[TokenPair]:
        """
        Charge la paire persistée.

        Returns:
            TokenPair ou None si absente (jamais d'exception pour absence)
        """
        pass

    @abstractmethod
    def save(self, pair: TokenPair) -> None:
        """
        Persiste la paire (remplacement complet).

        Raises:
            TokenStoreError: Échec d'écriture
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """
        Supprime la paire persistée. Idempotent.

        Raises:
            TokenStoreError: Échec de suppression
        """
        pass


class IAuthTransport(ABC):
    """
    Interface des appels réseau d'authentification.

    Les implémentations lèvent uniquement des erreurs de la taxonomie
    portal_client.core.errors.
    """

    @abstractmethod
    async def login(self, email: str, password: str) -> LoginResult:
        """
        POST /auth/login.

        Raises:
            InvalidCredentials, NetworkError, ServerError
        """
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        POST /auth/refresh-token.

        Raises:
            RefreshTokenExpired, NetworkError, ServerError
        """
        pass

    @abstractmethod
    async def logout(self, refresh_token: str) -> None:
        """POST /auth/logout."""
        pass


class IAuthCoordinator(ABC):
    """
    Interface coordinateur de session.

    Seul écrivain du TokenStore et seul émetteur des événements
    d'authentification de haut niveau.
    """

    @property
    @abstractmethod
    def state(self) -> AuthState:
        """État courant."""
        pass

    @abstractmethod
    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Authentifie l'utilisateur et retourne son profil."""
        pass

    @abstractmethod
    async def logout(self) -> None:
        """Termine la session (locale puis serveur, best-effort)."""
        pass

    @abstractmethod
    async def refresh(self, force: bool = False, rejected_token: Optional[str] = None) -> str:
        """Rafraîchit la paire (single-flight) et retourne l'access token."""
        pass

    @abstractmethod
    async def get_valid_token(self) -> str:
        """
        Retourne un access token utilisable.

        Raises:
            NotAuthenticated: Aucune session
        """
        pass

    @abstractmethod
    async def verify(self) -> bool:
        """Vérifie la session, avec refresh si l'access token a expiré."""
        pass

    @abstractmethod
    def report_auth_error(self, reason: str, error_type: str = "AuthError") -> None:
        """Publie AUTH_ERROR pour une erreur remontée par un consommateur."""
        pass
