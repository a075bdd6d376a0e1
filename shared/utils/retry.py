"""
Retry Utilities.

Exponential backoff with jitter, retrying until cancelled. Shared by the
Redis transport reconnect loop and the client subscription manager. Jitter
keeps a fleet of clients from reconnecting in lockstep after a gateway
restart.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Final


# =============================================================================
# Constants
# =============================================================================


# Default jitter range: ±25% of calculated delay
DEFAULT_JITTER_FACTOR: Final[float] = 0.25

DEFAULT_BACKOFF_BASE: Final[float] = 2.0

DEFAULT_INITIAL_DELAY: Final[float] = 1.0


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        initial_delay: Base delay in seconds (default: 1.0).
        max_delay: Maximum delay cap in seconds (default: 30.0).
        backoff_base: Exponential backoff multiplier (default: 2.0).
        jitter_factor: Random jitter range as fraction (default: 0.25 = ±25%).
    """

    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = 30.0
    backoff_base: float = DEFAULT_BACKOFF_BASE
    jitter_factor: float = DEFAULT_JITTER_FACTOR

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.backoff_base < 1:
            raise ValueError("backoff_base must be >= 1")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")


# =============================================================================
# Retry Functions
# =============================================================================


def calculate_delay_with_jitter(
    attempt: int,
    config: RetryConfig | None = None,
) -> float:
    """
    Calculate retry delay with exponential backoff and jitter.

    The delay is calculated as:
        base_delay = initial_delay * (backoff_base ^ attempt)
        capped_delay = min(base_delay, max_delay)
        final_delay = capped_delay * (1 ± jitter_factor)

    Args:
        attempt: Current attempt number (0-indexed).
        config: Retry configuration (uses defaults if None).

    Returns:
        Delay in seconds with jitter applied, never negative.

    Example:
        >>> config = RetryConfig(initial_delay=1.0, max_delay=30.0)
        >>> delay = calculate_delay_with_jitter(0, config)  # ~1.0s ± 25%
        >>> delay = calculate_delay_with_jitter(5, config)  # ~30.0s ± 25% (capped)
    """
    if config is None:
        config = RetryConfig()

    # Exponent is clamped so large attempt counts cannot overflow the float
    base_delay = config.initial_delay * (config.backoff_base ** min(attempt, 32))
    capped_delay = min(base_delay, config.max_delay)

    jitter_range = capped_delay * config.jitter_factor
    jitter = random.uniform(-jitter_range, jitter_range)

    return max(0.0, capped_delay + jitter)


# =============================================================================
# Factory Functions
# =============================================================================


def create_redis_retry_config(
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
) -> RetryConfig:
    """Retry config for Redis pub/sub reconnection (unbounded)."""
    return RetryConfig(
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff_base=2.0,
        jitter_factor=0.25,
    )


def create_client_retry_config(
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
) -> RetryConfig:
    """
    Retry config for client reconnection to the gateway.

    Slightly more jitter than the server side: many browsers reconnect at once
    after a gateway deploy.
    """
    return RetryConfig(
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff_base=2.0,
        jitter_factor=0.3,
    )
