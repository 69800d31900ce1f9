"""Configuration models for graph invocation, retries and streaming.

All configuration is expressed as Pydantic models so it can be validated,
copied and built from plain dictionaries:

    config = RunnableConfig.model_validate({
        "configurable": {"thread_id": "t-1"},
        "interrupt_before": ["review"],
    })
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunnableConfig(BaseModel):
    """Per-invocation configuration.

    Attributes:
        callbacks: CallbackHandler instances notified during execution
        listeners: Node listeners notified for every node of this invocation only
        metadata: Opaque metadata passed to callbacks
        tags: Tags passed to callbacks
        configurable: Free-form options; ``thread_id`` and ``checkpoint_id``
            are recognised by checkpointing
        run_name: Name reported to callbacks for the run
        timeout: Seconds allowed for the whole invocation
        interrupt_before: Pause before any of these nodes runs
        interrupt_after: Pause after any of these nodes runs
        resume_from: Start from these nodes instead of the entry point
        resume_value: Value returned by ``interrupt()`` while resuming
        max_steps: Optional super-step budget
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    callbacks: List[Any] = Field(default_factory=list)
    listeners: List[Any] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    configurable: Dict[str, Any] = Field(default_factory=dict)
    run_name: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)
    interrupt_before: List[str] = Field(default_factory=list)
    interrupt_after: List[str] = Field(default_factory=list)
    resume_from: List[str] = Field(default_factory=list)
    resume_value: Any = None
    max_steps: Optional[int] = Field(default=None, gt=0)

    @property
    def thread_id(self) -> Optional[str]:
        value = self.configurable.get("thread_id")
        return str(value) if value else None

    @property
    def checkpoint_id(self) -> Optional[str]:
        value = self.configurable.get("checkpoint_id")
        return str(value) if value else None


class BackoffStrategy(str, Enum):
    """Delay growth between retry attempts."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryPolicy(BaseModel):
    """How the scheduler retries a failing node.

    Total attempts are ``max_retries + 1``. An error is retried only when its
    text contains one of ``retryable_errors``.
    """

    max_retries: int = Field(default=0, ge=0)
    backoff_strategy: BackoffStrategy = Field(default=BackoffStrategy.FIXED)
    retryable_errors: List[str] = Field(default_factory=list)
    base_delay: float = Field(default=1.0, ge=0)

    def is_retryable(self, error: BaseException) -> bool:
        text = str(error)
        return any(pattern and pattern in text for pattern in self.retryable_errors)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        if self.backoff_strategy == BackoffStrategy.EXPONENTIAL:
            return self.base_delay * (2 ** attempt)
        if self.backoff_strategy == BackoffStrategy.LINEAR:
            return self.base_delay * (attempt + 1)
        return self.base_delay


class StreamMode(str, Enum):
    """Which events reach a stream's event channel."""
    VALUES = "values"      # graph_step events with the full state
    UPDATES = "updates"    # node/tool completions with partial outputs
    MESSAGES = "messages"  # LLM events and tokens
    DEBUG = "debug"        # everything


class StreamConfig(BaseModel):
    """Streaming behaviour."""

    buffer_size: int = Field(default=1000, gt=0)
    enable_backpressure: bool = Field(default=True)
    max_dropped_events: int = Field(default=100, ge=0)
    mode: StreamMode = Field(default=StreamMode.DEBUG)


def ensure_config(config: Any = None) -> RunnableConfig:
    """Accept a RunnableConfig, a plain dict or None."""
    if config is None:
        return RunnableConfig()
    if isinstance(config, RunnableConfig):
        return config
    return RunnableConfig.model_validate(config)
