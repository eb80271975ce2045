"""
Portal Client - Sync

Miroir des credentials vers un outil externe, piloté par le bus
d'événements d'authentification.
"""

from .credential_mirror import CredentialMirror

__all__ = [
    "CredentialMirror",
]
