"""
Retry policy helpers.

Purpose:
- Centralize the one-shot request retry rules
- Let the analysis path make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
The live audio channel is never retried.
"""
from __future__ import annotations

from dataclasses import dataclass

from biosyn.constants import (
    ANALYSIS_MAX_ATTEMPTS,
    ANALYSIS_RETRY_BASE_DELAY_MS,
    ANALYSIS_RETRY_MULTIPLIER,
)
from biosyn.errors import TransientServerOverload


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable attempt counter.

    Semantics:
    - attempt == 0 represents the initial attempt (no retry yet).
    - attempt >= 1 represents the Nth retry.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def is_retryable(error: BaseException) -> bool:
    """Only transient server overload is retried."""
    return isinstance(error, TransientServerOverload)


def should_retry(
    *,
    error: BaseException,
    attempt: RetryAttempt,
    max_attempts: int = ANALYSIS_MAX_ATTEMPTS,
) -> bool:
    """
    Returns True if another try is allowed.

    attempt = number of retries already performed; max_attempts counts
    the initial try.
    """
    return is_retryable(error) and attempt.attempt + 1 < max_attempts


# =============================================================================
# Delay Calculation
# =============================================================================

def get_retry_delay_ms(
    attempt: RetryAttempt,
    *,
    base_delay_ms: int = ANALYSIS_RETRY_BASE_DELAY_MS,
    multiplier: int = ANALYSIS_RETRY_MULTIPLIER,
) -> int:
    """
    Delay before the retry that follows `attempt`.

    Exponential: base, base * m, base * m^2, ...
    """
    return base_delay_ms * (multiplier ** attempt.attempt)
