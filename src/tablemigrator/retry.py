"""
Retry utilities for batch writes.

Provides the exponential backoff used between attempts of a failed batch
write. The defaults reproduce a delay of 2^attempt seconds (2s, 4s, 8s)
without jitter, so a resumed run behaves the same way every time.

This module provides:
- RetryConfig: Configuration for retry behavior
- calculate_backoff: Calculate delay with exponential backoff and jitter
"""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for batch retry behavior.

    Attributes:
        max_retries: Maximum number of attempts for one batch before failing
        initial_delay: Delay in seconds after the first failure
        max_delay: Maximum delay in seconds between attempts
        exponential_base: Base for exponential backoff calculation
        jitter: Fraction of delay to add as random jitter (0-1)

    Example:
        >>> config = RetryConfig(max_retries=5, initial_delay=1.0)
        >>> calculate_backoff(0, config)
        1.0
    """

    max_retries: int = 3
    initial_delay: float = 2.0
    max_delay: float = 300.0
    exponential_base: float = 2.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}.")

        if self.initial_delay <= 0:
            raise ValueError(f"initial_delay must be positive, got {self.initial_delay}.")

        if self.max_delay < self.initial_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})."
            )

        if self.exponential_base <= 1.0:
            raise ValueError(f"exponential_base must be > 1.0, got {self.exponential_base}.")

        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}.")


def calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """
    Calculate backoff delay with exponential growth and optional jitter.

    Args:
        attempt: Current attempt number (0-based, 0 after the first failure)
        config: Retry configuration

    Returns:
        Delay in seconds

    Example:
        >>> config = RetryConfig()
        >>> calculate_backoff(0, config)
        2.0
        >>> calculate_backoff(2, config)
        8.0
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_range = delay * config.jitter
        delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0.0, delay)


__all__ = [
    "RetryConfig",
    "calculate_backoff",
]
