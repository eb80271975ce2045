"""
Portal Client - API

Opérations métier authentifiées (consommation de tokens, profil, prompts).
"""

from .client import (
    PortalApiClient,
    TOKEN_USAGE_ENDPOINTS,
    CURRENT_USER_ENDPOINTS,
    PROMPTS_ENDPOINTS,
    PROMPT_USAGE_ENDPOINTS,
    PROMPT_SYNC_ENDPOINTS,
)

__all__ = [
    "PortalApiClient",
    "TOKEN_USAGE_ENDPOINTS",
    "CURRENT_USER_ENDPOINTS",
    "PROMPTS_ENDPOINTS",
    "PROMPT_USAGE_ENDPOINTS",
    "PROMPT_SYNC_ENDPOINTS",
]
