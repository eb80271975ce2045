"""
Portal Client - Auth

Session authentifiée:
- TokenPair immuable (access/refresh), expiration JWT lue via PyJWT
- Stockage mémoire ou fichier (atomique, chiffrement Fernet optionnel)
- Transport HTTP /auth/* (httpx)
- AuthCoordinator: login/logout/refresh single-flight/verify
"""

from portal_client.core.interfaces import AuthState

from .interfaces import (
    # Dataclasses
    TokenPair,
    LoginResult,
    # Interfaces
    ITokenStore,
    IAuthTransport,
    IAuthCoordinator,
)
from .token_store import InMemoryTokenStore, FileTokenStore
from .transport import HttpAuthTransport
from .coordinator import AuthCoordinator

__all__ = [
    # Enums
    "AuthState",
    # Dataclasses
    "TokenPair",
    "LoginResult",
    # Interfaces
    "ITokenStore",
    "IAuthTransport",
    "IAuthCoordinator",
    # Implementations
    "InMemoryTokenStore",
    "FileTokenStore",
    "HttpAuthTransport",
    "AuthCoordinator",
]
