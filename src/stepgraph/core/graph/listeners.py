"""Typed lifecycle events and node listeners.

Listeners are notified after the transition that triggered the event. Each
listener runs on its own task and a failing listener is logged and ignored,
so user observers can never break a run.
"""

import asyncio
import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from stepgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.LISTENERS)


class NodeEvent(str, Enum):
    """Event kinds emitted during execution."""
    CHAIN_START = "chain_start"
    CHAIN_END = "chain_end"
    CHAIN_ERROR = "chain_error"
    NODE_START = "node_start"
    NODE_PROGRESS = "node_progress"
    NODE_COMPLETE = "node_complete"
    NODE_ERROR = "node_error"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    TOOL_ERROR = "tool_error"
    LLM_START = "llm_start"
    LLM_END = "llm_end"
    LLM_ERROR = "llm_error"
    RETRIEVER_START = "retriever_start"
    RETRIEVER_END = "retriever_end"
    RETRIEVER_ERROR = "retriever_error"
    TOKEN = "token"
    GRAPH_STEP = "graph_step"
    CUSTOM = "custom"


class StreamEvent(BaseModel):
    """A single execution event.

    Attributes:
        event: The kind of event
        node_name: Node (or step label) that produced it, if any
        state: State snapshot or payload attached to the event
        error: Exception for error events
        metadata: Event-specific extra data
        duration: Seconds the node took (completion events only)
        timestamp: When the event was created
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    event: NodeEvent
    node_name: Optional[str] = None
    state: Any = None
    error: Optional[BaseException] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    duration: Optional[float] = None
    timestamp: datetime = Field(default_factory=datetime.now)


@runtime_checkable
class NodeListener(Protocol):
    """Observer of node events."""

    def on_node_event(self, event: StreamEvent) -> Optional[Awaitable[None]]:
        ...


class NodeListenerFunc:
    """Adapts a plain (sync or async) function into a NodeListener."""

    def __init__(self, func: Callable[[StreamEvent], Any]) -> None:
        self.func = func

    def on_node_event(self, event: StreamEvent) -> Optional[Awaitable[None]]:
        return self.func(event)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, NodeListenerFunc):
            return self.func == other.func
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.func)


ListenerLike = Union[NodeListener, Callable[[StreamEvent], Any]]


def as_listener(listener: ListenerLike) -> NodeListener:
    """Return ``listener`` as a NodeListener, wrapping bare functions."""
    if isinstance(listener, NodeListener):
        return listener
    if callable(listener):
        return NodeListenerFunc(listener)
    raise TypeError(f"not a node listener: {listener!r}")


async def _deliver(listener: NodeListener, event: StreamEvent) -> None:
    try:
        result = listener.on_node_event(event)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Listener {listener!r} failed on {event.event.value}: {e}")


async def notify_listeners(listeners: Iterable[NodeListener], event: StreamEvent) -> None:
    """Deliver ``event`` to every listener on its own task and wait for all of them."""
    tasks = [asyncio.ensure_future(_deliver(listener, event)) for listener in listeners]
    if tasks:
        await asyncio.gather(*tasks)
