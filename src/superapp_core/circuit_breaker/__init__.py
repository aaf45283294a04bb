"""Async circuit breaker guarding calls to the hosted backend.

Key behavior notes:
  - ``OPEN`` rejects calls until ``recovery_timeout`` seconds have passed
    since the last counted failure. The next call then moves the breaker to
    ``HALF_OPEN`` and is the only one allowed through; concurrent callers are
    rejected while it is in flight.
  - A failed probe reopens the breaker regardless of the threshold and
    restarts the cooldown. A successful probe closes it and zeroes the count.
  - Excluded exceptions pass through untouched. During a probe they put the
    breaker back to ``OPEN`` without counting, so a later call probes again.
  - ``reset()`` is the manual escape hatch and always yields ``CLOSED``/0.
"""

from superapp_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from superapp_core.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from superapp_core.circuit_breaker.metrics import (
    BreakerListener,
    LoggingBreakerListener,
)
from superapp_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from superapp_core.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

__all__ = [
    "AbstractBreakerStorage",
    "BreakerListener",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "InMemoryBreakerStorage",
    "LoggingBreakerListener",
]
