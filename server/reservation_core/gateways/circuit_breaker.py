"""
Circuit breakers for payment provider calls.

- CLOSED: calls pass through
- OPEN: too many consecutive failures, calls fail fast
- HALF_OPEN: one trial call decides whether to close again
"""

import logging

from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener

from ..core.config import settings

logger = logging.getLogger(__name__)


class StateChangeLogger(CircuitBreakerListener):
    """Logs breaker state transitions."""

    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "Circuit breaker state changed",
            extra={
                "breaker_name": cb.name,
                "old_state": old_state.name if old_state else None,
                "new_state": new_state.name,
            }
        )


def build_breaker(provider: str, exclude: tuple = ()) -> CircuitBreaker:
    """Breaker for one provider; ``exclude`` lists errors that are the caller's fault."""
    return CircuitBreaker(
        fail_max=settings.gateway_failure_threshold,
        reset_timeout=settings.gateway_reset_timeout_seconds,
        exclude=list(exclude),
        listeners=[StateChangeLogger()],
        name=f"{provider}_circuit_breaker",
    )


__all__ = ["CircuitBreakerError", "build_breaker"]
