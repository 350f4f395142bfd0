"""
Circuit breaker for outbound payment processor calls.

Only checkout creation talks to Stripe from this service, so a single named
breaker guards it. When Stripe keeps failing, checkout requests fail fast with
a 503 instead of piling up on a dead upstream; bookings and webhooks are not
affected.

pybreaker's own async support needs Tornado, so the breaker is driven here
through its public state methods (open / half_open / close) while the
consecutive-failure count and open timestamp are tracked alongside it.
"""

import logging
import time
from typing import Any, Awaitable, Callable

import pybreaker

from shared.config import get_settings

logger = logging.getLogger(__name__)


class BreakerStateLogger(pybreaker.CircuitBreakerListener):
    """Log every state transition of a breaker."""

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        old = old_state.name if old_state else "none"
        if new_state.name == pybreaker.STATE_OPEN:
            logger.warning(f"Circuit breaker '{cb.name}' opened, failing fast for {cb.reset_timeout}s")
        else:
            logger.info(f"Circuit breaker '{cb.name}': {old} -> {new_state.name}")


_breakers: dict[str, pybreaker.CircuitBreaker] = {}
_failures: dict[str, int] = {}
_opened_at: dict[str, float] = {}


def get_circuit_breaker(name: str, fail_max: int, reset_timeout: int) -> pybreaker.CircuitBreaker:
    """Return the breaker registered under ``name``, creating it on first use."""
    if name not in _breakers:
        _breakers[name] = pybreaker.CircuitBreaker(
            name=name,
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            listeners=[BreakerStateLogger()],
        )
        _failures[name] = 0
    return _breakers[name]


_settings = get_settings()
stripe_breaker = get_circuit_breaker(
    "stripe",
    fail_max=_settings.STRIPE_BREAKER_FAIL_MAX,
    reset_timeout=_settings.STRIPE_BREAKER_RESET_SECONDS,
)


def _trip(breaker: pybreaker.CircuitBreaker) -> None:
    _opened_at[breaker.name] = time.monotonic()
    breaker.open()


def reset_breaker(breaker: pybreaker.CircuitBreaker) -> None:
    """Force a breaker back to closed with a clean failure count."""
    _failures[breaker.name] = 0
    _opened_at.pop(breaker.name, None)
    if breaker.current_state != pybreaker.STATE_CLOSED:
        breaker.close()


async def call_with_breaker(
    breaker: pybreaker.CircuitBreaker,
    func: Callable[..., Awaitable[Any]],
    *args,
    **kwargs,
) -> Any:
    """
    Await ``func`` under the protection of ``breaker``.

    Raises:
        pybreaker.CircuitBreakerError: the breaker is open and the reset
            timeout has not elapsed yet
        Exception: whatever ``func`` raised (after being counted)
    """
    if breaker.current_state == pybreaker.STATE_OPEN:
        opened = _opened_at.get(breaker.name, 0.0)
        if time.monotonic() - opened < breaker.reset_timeout:
            raise pybreaker.CircuitBreakerError(f"Circuit breaker '{breaker.name}' is open")
        breaker.half_open()

    try:
        result = await func(*args, **kwargs)
    except Exception as e:
        if not breaker.is_system_error(e):
            raise
        _failures[breaker.name] = _failures.get(breaker.name, 0) + 1
        logger.warning(
            f"Circuit breaker '{breaker.name}' failure {_failures[breaker.name]}/{breaker.fail_max}: "
            f"{type(e).__name__}: {e}"
        )
        if (
            breaker.current_state == pybreaker.STATE_HALF_OPEN
            or _failures[breaker.name] >= breaker.fail_max
        ):
            _trip(breaker)
        raise

    if breaker.current_state == pybreaker.STATE_HALF_OPEN:
        breaker.close()
    _failures[breaker.name] = 0
    return result


def get_breaker_status() -> dict[str, dict[str, Any]]:
    """Breaker states for the health endpoint."""
    return {
        name: {
            "state": breaker.current_state,
            "failures": _failures.get(name, 0),
            "reset_timeout": breaker.reset_timeout,
        }
        for name, breaker in _breakers.items()
    }
