"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals for status badges and logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Failures counted since the last success or reset.
        last_failure_at: Timestamp of the last counted failure, if any. The
            recovery cooldown is measured from this value.
        opened_at: Timestamp when the breaker last entered ``OPEN``, if open.
    """

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
    opened_at: datetime | None = None

    def as_dict(self) -> dict[str, object]:
        """Return the public ``{state, failure_count, last_failure_at}`` view."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_at": (
                None
                if self.last_failure_at is None
                else self.last_failure_at.isoformat()
            ),
        }
