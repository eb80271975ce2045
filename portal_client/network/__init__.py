"""
Portal Client - Network

Exécution résiliente des opérations authentifiées:
- Retry avec backoff exponentiel et jitter
- Repli d'endpoint sur 404
- Refresh forcé et nouvel essai unique sur 401
- Timeout par tentative
"""

from .interfaces import (
    # Data classes
    RetryPolicy,
    EndpointSpec,
    ExecutionResult,
    # Types
    Operation,
    # Interfaces
    IRequestExecutor,
)
from .retry_executor import CORRELATION_HEADER, RetryingRequestExecutor

__all__ = [
    # Data classes
    "RetryPolicy",
    "EndpointSpec",
    "ExecutionResult",
    # Types
    "Operation",
    # Interfaces
    "IRequestExecutor",
    # Implementations
    "RetryingRequestExecutor",
    "CORRELATION_HEADER",
]
