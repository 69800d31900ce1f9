"""Tests for configuration models.

This module tests:
- RunnableConfig defaults, validation and dictionary construction
- RetryPolicy matching and backoff delays
- StreamConfig defaults
"""

import pytest
from pydantic import ValidationError

from stepgraph.core.graph import BackoffStrategy, RetryPolicy, RunnableConfig, StreamConfig, StreamMode
from stepgraph.core.graph.config import ensure_config


class TestRunnableConfig:
    """Test suite for RunnableConfig."""

    def test_defaults(self):
        config = RunnableConfig()
        assert config.callbacks == []
        assert config.interrupt_before == []
        assert config.resume_from == []
        assert config.timeout is None
        assert config.max_steps is None
        assert config.thread_id is None

    def test_from_dict(self):
        config = ensure_config({
            "configurable": {"thread_id": "t-1", "checkpoint_id": "cp-1"},
            "interrupt_after": ["review"],
        })
        assert config.thread_id == "t-1"
        assert config.checkpoint_id == "cp-1"
        assert config.interrupt_after == ["review"]

    def test_ensure_config_passthrough(self):
        config = RunnableConfig(run_name="x")
        assert ensure_config(config) is config
        assert isinstance(ensure_config(None), RunnableConfig)

    def test_invalid_timeout(self):
        with pytest.raises(ValidationError):
            RunnableConfig(timeout=0)

    def test_invalid_max_steps(self):
        with pytest.raises(ValidationError):
            RunnableConfig(max_steps=-1)


class TestRetryPolicy:
    """Test suite for RetryPolicy."""

    def test_substring_match(self):
        policy = RetryPolicy(max_retries=2, retryable_errors=["timeout", "rate limit"])
        assert policy.is_retryable(RuntimeError("upstream timeout after 3s"))
        assert not policy.is_retryable(ValueError("bad input"))

    def test_no_patterns_never_retries(self):
        assert not RetryPolicy(max_retries=3).is_retryable(RuntimeError("anything"))

    @pytest.mark.parametrize(
        "strategy, delays",
        [
            (BackoffStrategy.FIXED, [1.0, 1.0, 1.0]),
            (BackoffStrategy.LINEAR, [1.0, 2.0, 3.0]),
            (BackoffStrategy.EXPONENTIAL, [1.0, 2.0, 4.0]),
        ],
    )
    def test_backoff(self, strategy, delays):
        policy = RetryPolicy(backoff_strategy=strategy)
        assert [policy.delay(attempt) for attempt in range(3)] == delays

    def test_base_delay(self):
        policy = RetryPolicy(backoff_strategy=BackoffStrategy.EXPONENTIAL, base_delay=0.5)
        assert policy.delay(2) == 2.0

    def test_rejects_negative_retries(self):
        with pytest.raises(ValidationError):
            RetryPolicy(max_retries=-1)


class TestStreamConfig:
    """Test suite for StreamConfig."""

    def test_defaults(self):
        config = StreamConfig()
        assert config.buffer_size == 1000
        assert config.enable_backpressure
        assert config.max_dropped_events == 100
        assert config.mode == StreamMode.DEBUG

    def test_rejects_empty_buffer(self):
        with pytest.raises(ValidationError):
            StreamConfig(buffer_size=0)
