"""
Portal Client - Network Interfaces

Contrats de l'exécution des requêtes authentifiées:
- RetryPolicy: bornes de retry et backoff, immuable par site d'appel
- EndpointSpec: chemins ordonnés [principal, repli...]
- ExecutionResult: issue d'un appel logique
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Tuple

import httpx

from portal_client.core.errors import PortalClientError
from portal_client.core.interfaces import RetrySettings

# Appel réseau d'une tentative: (chemin, en-têtes) -> réponse HTTP
Operation = Callable[[str, Dict[str, str]], Awaitable[httpx.Response]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Politique de retry d'une opération.

    Délai avant le retry n (1-indexed):
        min(base_delay_ms * 2^(n-1) + uniform(0, jitter_ms), max_delay_ms)

    Attributes:
        max_attempts: Tentatives max, appel initial compris
        base_delay_ms: Délai de base du backoff
        jitter_ms: Amplitude max du jitter aléatoire
        retryable_statuses: Codes HTTP retentés sur le même endpoint
        max_delay_ms: Plafond d'un délai
    """

    max_attempts: int = 4
    base_delay_ms: int = 1000
    jitter_ms: int = 1000
    retryable_statuses: FrozenSet[int] = field(
        default_factory=lambda: frozenset({500, 502, 503, 504})
    )
    max_delay_ms: int = 30000

    def __post_init__(self):
        """Validation des contraintes."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_ms < 0 or self.jitter_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must not be negative")
        if not isinstance(self.retryable_statuses, frozenset):
            object.__setattr__(self, "retryable_statuses", frozenset(self.retryable_statuses))

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        """Construit la politique depuis la configuration client."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_ms=settings.base_delay_ms,
            jitter_ms=settings.jitter_ms,
            retryable_statuses=frozenset(settings.retryable_statuses),
            max_delay_ms=settings.max_delay_ms,
        )


@dataclass(frozen=True)
class EndpointSpec:
    """
    Chemins d'une opération logique, par ordre de préférence.

    L'exécuteur passe au chemin suivant uniquement sur 404.

    Example:
        EndpointSpec.of("/usage/tokens", "/tokens/usage")
    """

    paths: Tuple[str, ...]

    def __post_init__(self):
        if isinstance(self.paths, str):
            raise TypeError("paths must be a sequence of paths, not a string")
        paths = tuple(self.paths)
        if not paths:
            raise ValueError("EndpointSpec requires at least one path")
        for path in paths:
            if not path or not path.startswith("/"):
                raise ValueError(f"Invalid endpoint path: {path!r}")
        object.__setattr__(self, "paths", paths)

    @classmethod
    def of(cls, *paths: str) -> "EndpointSpec":
        return cls(paths=paths)

    @property
    def primary(self) -> str:
        return self.paths[0]

    @property
    def fallbacks(self) -> Tuple[str, ...]:
        return self.paths[1:]

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterable[str]:
        return iter(self.paths)


@dataclass
class ExecutionResult:
    """
    Résultat d'un appel logique exécuté avec retry.

    Attributes:
        success: True si une tentative a reçu une réponse 2xx/3xx
        response: Dernière réponse reçue (None si aucune)
        attempts: Tentatives réseau effectuées
        refreshes: Refresh de token demandés au coordinateur
        total_delay: Somme des délais de backoff (secondes)
        endpoint: Chemin de la dernière tentative
        error: Erreur terminale typée (None si succès)
        correlation_id: Identifiant de corrélation de l'appel
    """

    success: bool
    response: Optional[httpx.Response]
    attempts: int
    refreshes: int = 0
    total_delay: float = 0.0
    endpoint: Optional[str] = None
    error: Optional[PortalClientError] = None
    correlation_id: Optional[str] = None

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    def raise_for_result(self) -> httpx.Response:
        """
        Retourne la réponse ou lève l'erreur terminale.

        Raises:
            PortalClientError: Erreur typée de l'échec
        """
        if not self.success:
            if self.error is not None:
                raise self.error
            raise PortalClientError("Request failed", status_code=self.status_code)
        return self.response


class IRequestExecutor(ABC):
    """Interface exécution d'une opération authentifiée."""

    @abstractmethod
    async def execute(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy],
        endpoints: EndpointSpec,
    ) -> ExecutionResult:
        """
        Exécute l'opération jusqu'à succès ou échec terminal.

        Args:
            operation: Appel réseau d'une tentative
            policy: Politique de retry (None: politique par défaut)
            endpoints: Chemins ordonnés de l'opération

        Returns:
            ExecutionResult (jamais d'exception pour un échec réseau/HTTP)
        """
        pass

    @abstractmethod
    def calculate_delay(self, retry_number: int, policy: RetryPolicy) -> float:
        """
        Calcule le délai avant un retry.

        Args:
            retry_number: Rang du retry (1-indexed)
            policy: Politique de retry

        Returns:
            Délai en secondes
        """
        pass
