"""
Portal Client - Core Interfaces

Modèles de configuration du client.
"""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# Intervalle max de vérification périodique de la session
MAX_VERIFY_INTERVAL_SECONDS: float = 300.0


# ══════════════════════════════════════════════════════════════════════════════
# TYPES
# ══════════════════════════════════════════════════════════════════════════════


class AuthState(Enum):
    """
    États d'authentification du client.

    Une seule valeur à un instant donné; les transitions sont sérialisées
    par AuthCoordinator.
    """

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


class RetrySettings(BaseModel):
    """Paramètres de retry par défaut des opérations métier."""

    max_attempts: int = 4
    base_delay_ms: int = 1000
    jitter_ms: int = 1000
    max_delay_ms: int = 30000
    retryable_statuses: set[int] = Field(default_factory=lambda: {500, 502, 503, 504})

    @field_validator("max_attempts")
    @classmethod
    def _check_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be >= 1")
        return value

    @field_validator("base_delay_ms", "jitter_ms", "max_delay_ms")
    @classmethod
    def _check_delays(cls, value: int) -> int:
        if value < 0:
            raise ValueError("delays must not be negative")
        return value


class ClientConfig(BaseModel):
    """
    Configuration complète du client portail.

    Attributes:
        api_base_url: URL de base de l'API (ex: https://portal/api)
        client_id: Identifiant client envoyé au login/refresh
        client_secret: Secret client envoyé au login/refresh
        refresh_debounce_seconds: Fenêtre minimale entre deux refresh réseau
        request_timeout_ms: Timeout par tentative réseau
        credential_sync_enabled: Active le miroir externe des credentials
        credential_sync_dir: Répertoire cible du miroir
        token_store_path: Fichier de persistance de la paire de tokens
        token_store_key: Clé Fernet (chiffrement du fichier) optionnelle
        verify_interval_seconds: Période de vérification de session
        log_level: Niveau de log minimum
        retry: Politique de retry par défaut
    """

    api_base_url: str = "http://localhost:3000/api"
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_debounce_seconds: float = 10.0
    request_timeout_ms: int = 15000
    credential_sync_enabled: bool = False
    credential_sync_dir: Optional[Path] = None
    token_store_path: Path = Field(
        default_factory=lambda: Path.home() / ".portal-client" / "tokens.json"
    )
    token_store_key: Optional[str] = None
    verify_interval_seconds: float = MAX_VERIFY_INTERVAL_SECONDS
    log_level: str = "INFO"
    retry: RetrySettings = Field(default_factory=RetrySettings)

    @field_validator("api_base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("api_base_url cannot be empty")
        return value.strip().rstrip("/")

    @field_validator("request_timeout_ms")
    @classmethod
    def _check_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("request_timeout_ms must be positive")
        return value

    @field_validator("refresh_debounce_seconds")
    @classmethod
    def _check_debounce(cls, value: float) -> float:
        if value < 0:
            raise ValueError("refresh_debounce_seconds must not be negative")
        return value

    @field_validator("verify_interval_seconds")
    @classmethod
    def _check_verify_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("verify_interval_seconds must be positive")
        return min(value, MAX_VERIFY_INTERVAL_SECONDS)

    @property
    def request_timeout_seconds(self) -> float:
        """Timeout par tentative en secondes."""
        return self.request_timeout_ms / 1000.0


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class IConfigLoader(ABC):
    """Charge la configuration depuis fichier YAML et environnement."""

    @abstractmethod
    def load(self, path: Optional[Path] = None) -> ClientConfig:
        """
        Charge et valide la configuration.

        Raises:
            ConfigError: Si fichier illisible ou valeurs invalides
        """
        pass
