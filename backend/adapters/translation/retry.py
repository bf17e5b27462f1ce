"""
Upstream reconnect policy.

Purpose:
- Centralize the reconnect budget and backoff rules
- Keep the session state machine free of arithmetic
- Allow deterministic tests of delays without timers

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import (
    MAX_RECONNECT_ATTEMPTS,
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_DELAY_MS,
)


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable reconnect counter.

    Semantics:
    - attempt == 0: no reconnect performed since the last READY.
    - attempt >= 1: the Nth consecutive reconnect has been started.
    """
    attempt: int


def reset_attempt() -> RetryAttempt:
    """Returns a fresh counter (used on every READY transition)."""
    return RetryAttempt(attempt=0)


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Returns a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


# =============================================================================
# Policy
# =============================================================================

def should_retry(
    attempt: RetryAttempt,
    *,
    max_attempts: int = MAX_RECONNECT_ATTEMPTS,
) -> bool:
    """
    Returns True if another reconnect is allowed.

    attempt = number of reconnects already performed
    """
    return attempt.attempt < max_attempts


def get_retry_delay_ms(attempt: RetryAttempt) -> int:
    """
    Delay before the next reconnect, given the reconnects already performed.

    min(1000 * 2**n, 8000): 1000, 2000, 4000, 8000, 8000, ...
    """
    return min(RECONNECT_BASE_DELAY_MS * (2 ** attempt.attempt), RECONNECT_MAX_DELAY_MS)
