"""
Portal Client - Errors

Taxonomie des erreurs du client authentifié.

Classes transitoires (retryables par l'exécuteur):
    NetworkError, ServerError

Classes terminales:
    NotFoundError, AuthError, RefreshTokenExpired, NotAuthenticated,
    InvalidCredentials, RequestError
"""

from typing import Optional, Type


class PortalClientError(Exception):
    """Erreur de base du client portail."""

    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NetworkError(PortalClientError):
    """Erreur niveau connexion (reset, DNS, timeout)."""

    retryable = True


class ServerError(PortalClientError):
    """Réponse 5xx du serveur."""

    retryable = True


class NotFoundError(PortalClientError):
    """Réponse 404 - endpoint absent ou retiré."""


class AuthError(PortalClientError):
    """401 persistant après une tentative de refresh."""


class RefreshTokenExpired(PortalClientError):
    """Refresh rejeté par le serveur - force la déconnexion."""


class NotAuthenticated(PortalClientError):
    """Aucune session valide disponible."""

    def __init__(self, message: str = "No authenticated session") -> None:
        super().__init__(message)


class InvalidCredentials(PortalClientError):
    """Identifiants refusés au login."""


class RequestError(PortalClientError):
    """Autre réponse 4xx non retryable (400, 403, 409...)."""


class InvalidStateError(PortalClientError):
    """Opération interdite dans l'état d'authentification courant."""


class TokenStoreError(PortalClientError):
    """Échec d'écriture/suppression du stockage des tokens."""


class ConfigError(PortalClientError):
    """Configuration manquante ou invalide."""


def classify_status(status_code: int) -> Type[PortalClientError]:
    """
    Associe un code HTTP d'échec à sa classe d'erreur.

    Args:
        status_code: Code HTTP (>= 400)

    Returns:
        Classe d'erreur correspondante
    """
    if status_code == 401:
        return AuthError
    if status_code == 404:
        return NotFoundError
    if status_code >= 500:
        return ServerError
    return RequestError


def error_for_status(status_code: int, message: Optional[str] = None) -> PortalClientError:
    """Construit l'erreur typée pour un code HTTP."""
    error_class = classify_status(status_code)
    return error_class(message or f"HTTP {status_code}", status_code=status_code)
