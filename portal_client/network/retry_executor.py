"""
Portal Client - Retrying Request Executor

Exécution d'une opération authentifiée avec:
- Retry avec backoff exponentiel + jitter (5xx retentables, erreurs réseau)
- Repli d'endpoint sur 404, sans délai
- 401 → refresh forcé → un seul nouvel essai
- Timeout par tentative (traité comme erreur réseau)
"""

import asyncio
import random
import uuid
from typing import Dict, Optional

import httpx

from portal_client.auth.interfaces import IAuthCoordinator
from portal_client.core.errors import (
    AuthError,
    NetworkError,
    PortalClientError,
    RequestError,
    error_for_status,
)
from portal_client.logging import ContextualLogger, StructuredLogger

from .interfaces import (
    EndpointSpec,
    ExecutionResult,
    IRequestExecutor,
    Operation,
    RetryPolicy,
)

CORRELATION_HEADER = "X-Correlation-ID"


class RetryingRequestExecutor(IRequestExecutor):
    """
    Exécuteur de requêtes authentifiées.

    Lit le token via le coordinateur, n'écrit jamais de token.
    Plusieurs execute() peuvent tourner en parallèle: chacun lit un
    instantané du token courant.

    Budget: au plus policy.max_attempts tentatives réseau par appel,
    quel que soit le mélange d'erreurs (404, 401, 5xx, réseau).

    Example:
        executor = RetryingRequestExecutor(coordinator)
        result = await executor.execute(
            lambda path, headers: client.post(path, headers=headers, json=body),
            RetryPolicy(),
            EndpointSpec.of("/usage/tokens", "/tokens/usage"),
        )
    """

    DEFAULT_TIMEOUT_SECONDS: float = 15.0

    def __init__(
        self,
        coordinator: IAuthCoordinator,
        logger: Optional[StructuredLogger] = None,
        default_policy: Optional[RetryPolicy] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Args:
            coordinator: Coordinateur de session (source des tokens)
            logger: Logger structuré
            default_policy: Politique utilisée si execute() n'en reçoit pas
            timeout_seconds: Timeout par tentative (défaut: 15s)
            rng: Générateur aléatoire du jitter (injectable pour tests)
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self._coordinator = coordinator
        self._logger = logger or StructuredLogger("portal.network")
        self._default_policy = default_policy or RetryPolicy()
        self._timeout_seconds = timeout_seconds
        self._rng = rng or random.Random()
        self._stats: Dict[str, int] = {
            "calls": 0,
            "attempts": 0,
            "retries": 0,
            "fallbacks": 0,
            "refreshes": 0,
            "failures": 0,
        }

    @property
    def default_policy(self) -> RetryPolicy:
        return self._default_policy

    async def execute(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy],
        endpoints: EndpointSpec,
    ) -> ExecutionResult:
        """
        Exécute l'opération jusqu'à succès ou échec terminal.

        Classification de chaque tentative:
            - 2xx/3xx: succès
            - 404 avec repli restant: chemin suivant, sans délai
            - premier 401: refresh forcé puis nouvel essai, sans délai
            - second 401: AuthError terminal (AUTH_ERROR publié)
            - statut retentable ou erreur réseau: backoff puis même chemin
            - autre: échec terminal

        Returns:
            ExecutionResult; l'erreur terminale porte la classe du
            dernier statut observé
        """
        retry_policy = policy or self._default_policy
        correlation_id = str(uuid.uuid4())
        log = self._logger.with_context(correlation_id)
        self._stats["calls"] += 1

        try:
            token = await self._coordinator.get_valid_token()
        except PortalClientError as e:
            log.warn("No valid token for request", error_type=type(e).__name__)
            return self._failure(e, None, 0, 0, 0.0, endpoints.primary, correlation_id)

        endpoint_index = 0
        attempts = 0
        retries = 0
        refreshes = 0
        total_delay = 0.0
        saw_unauthorized = False
        response: Optional[httpx.Response] = None
        error: Optional[PortalClientError] = None

        while attempts < retry_policy.max_attempts:
            attempts += 1
            self._stats["attempts"] += 1
            path = endpoints.paths[endpoint_index]
            headers = {
                "Authorization": f"Bearer {token}",
                CORRELATION_HEADER: correlation_id,
            }

            response, error = await self._attempt(operation, path, headers)
            if error is None:
                if attempts > 1:
                    log.info("Request succeeded after retry", path=path, attempts=attempts)
                return ExecutionResult(
                    success=True,
                    response=response,
                    attempts=attempts,
                    refreshes=refreshes,
                    total_delay=total_delay,
                    endpoint=path,
                    correlation_id=correlation_id,
                )

            status = error.status_code
            log.debug(
                "Request attempt failed",
                path=path,
                attempt=attempts,
                status_code=status,
                error_type=type(error).__name__,
            )

            if (
                status == 404
                and endpoint_index + 1 < len(endpoints)
                and attempts < retry_policy.max_attempts
            ):
                endpoint_index += 1
                self._stats["fallbacks"] += 1
                log.warn(
                    "Endpoint not found, falling back",
                    path=path,
                    fallback=endpoints.paths[endpoint_index],
                )
                continue

            if status == 401:
                if saw_unauthorized:
                    error = AuthError(
                        f"Unauthorized on {path} after token refresh", status_code=401
                    )
                    self._coordinator.report_auth_error(str(error), "AuthError")
                    break
                saw_unauthorized = True
                if attempts >= retry_policy.max_attempts:
                    break
                refreshes += 1
                self._stats["refreshes"] += 1
                try:
                    token = await self._coordinator.refresh(force=True, rejected_token=token)
                except PortalClientError as e:
                    log.warn("Token refresh failed during request", error_type=type(e).__name__)
                    error = e
                    break
                continue

            if not self._is_retryable(error, retry_policy):
                break

            if attempts < retry_policy.max_attempts:
                retries += 1
                self._stats["retries"] += 1
                delay = self.calculate_delay(retries, retry_policy)
                total_delay += delay
                log.info(
                    "Retrying request",
                    path=path,
                    attempt=attempts,
                    delay_seconds=round(delay, 3),
                    error_type=type(error).__name__,
                )
                await asyncio.sleep(delay)

        return self._failure(
            error, response, attempts, refreshes, total_delay,
            endpoints.paths[endpoint_index], correlation_id, log,
        )

    async def _attempt(self, operation: Operation, path: str, headers: Dict[str, str]):
        """Une tentative réseau; retourne (réponse, erreur typée ou None)."""
        try:
            response = await asyncio.wait_for(
                operation(path, dict(headers)), timeout=self._timeout_seconds
            )
        except asyncio.TimeoutError:
            return None, NetworkError(f"Request to {path} timed out after {self._timeout_seconds}s")
        except httpx.TransportError as e:
            return None, NetworkError(f"Connection error on {path}: {e}")
        except httpx.HTTPError as e:
            # TooManyRedirects, DecodingError: non retentable
            return None, RequestError(f"HTTP error on {path}: {type(e).__name__}: {e}")
        except PortalClientError as e:
            return None, e

        if response.status_code < 400:
            return response, None
        return response, error_for_status(
            response.status_code, f"HTTP {response.status_code} on {path}"
        )

    def calculate_delay(self, retry_number: int, policy: RetryPolicy) -> float:
        """
        Calcule le délai avant un retry, en secondes.

        Formula: min(base * 2^(n-1) + uniform(0, jitter), max_delay)
        - Retry 1: 1s + jitter
        - Retry 2: 2s + jitter
        - Retry 3: 4s + jitter

        Args:
            retry_number: Rang du retry (1-indexed)
            policy: Politique de retry

        Returns:
            Délai en secondes
        """
        if retry_number < 1:
            raise ValueError("retry_number must be >= 1")
        backoff_ms = policy.base_delay_ms * (2 ** (retry_number - 1))
        jitter = self._rng.uniform(0, policy.jitter_ms) if policy.jitter_ms else 0.0
        return min(backoff_ms + jitter, policy.max_delay_ms) / 1000.0

    def _is_retryable(self, error: PortalClientError, policy: RetryPolicy) -> bool:
        if isinstance(error, NetworkError):
            return True
        return error.status_code is not None and error.status_code in policy.retryable_statuses

    def _failure(
        self,
        error: Optional[PortalClientError],
        response: Optional[httpx.Response],
        attempts: int,
        refreshes: int,
        total_delay: float,
        endpoint: Optional[str],
        correlation_id: str,
        log: Optional[ContextualLogger] = None,
    ) -> ExecutionResult:
        self._stats["failures"] += 1
        if log is not None:
            log.error(
                "Request failed",
                path=endpoint,
                attempts=attempts,
                status_code=error.status_code if error else None,
                error_type=type(error).__name__ if error else None,
            )
        return ExecutionResult(
            success=False,
            response=response,
            attempts=attempts,
            refreshes=refreshes,
            total_delay=total_delay,
            endpoint=endpoint,
            error=error,
            correlation_id=correlation_id,
        )

    def get_stats(self) -> Dict[str, int]:
        """
        Retourne les compteurs d'exécution.

        Returns:
            Dict avec calls, attempts, retries, fallbacks, refreshes, failures
        """
        return dict(self._stats)

    def reset_stats(self) -> None:
        """Remet les compteurs à zéro."""
        for key in self._stats:
            self._stats[key] = 0
