"""
Unit tests for retry utilities.

Tests cover:
- RetryConfig validation
- Exponential backoff growth and capping
- Jitter bounds
"""

import pytest

from tablemigrator.retry import RetryConfig, calculate_backoff


class TestRetryConfig:
    """Tests for RetryConfig validation."""

    def test_defaults(self) -> None:
        """Test defaults give three attempts starting at two seconds."""
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.initial_delay == 2.0
        assert config.jitter == 0.0

    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"max_retries": 0}, "max_retries"),
            ({"initial_delay": 0}, "initial_delay"),
            ({"initial_delay": 10.0, "max_delay": 5.0}, "max_delay"),
            ({"exponential_base": 1.0}, "exponential_base"),
            ({"jitter": 1.5}, "jitter"),
        ],
    )
    def test_invalid_values(self, kwargs: dict, match: str) -> None:
        """Test invalid values raise ValueError naming the field."""
        with pytest.raises(ValueError, match=match):
            RetryConfig(**kwargs)


class TestCalculateBackoff:
    """Tests for calculate_backoff."""

    def test_power_of_two_delays(self) -> None:
        """Test the default delays are 2, 4 and 8 seconds."""
        config = RetryConfig()
        assert [calculate_backoff(n, config) for n in range(3)] == [2.0, 4.0, 8.0]

    def test_delay_is_capped(self) -> None:
        """Test delays never exceed max_delay."""
        config = RetryConfig(initial_delay=1.0, max_delay=5.0)
        assert calculate_backoff(10, config) == 5.0

    def test_jitter_stays_in_range(self) -> None:
        """Test jittered delays stay within the jitter fraction."""
        config = RetryConfig(initial_delay=10.0, max_delay=10.0, jitter=0.1)
        for _ in range(50):
            assert 9.0 <= calculate_backoff(0, config) <= 11.0
