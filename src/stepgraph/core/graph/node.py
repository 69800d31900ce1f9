"""Node definition for the graph system.

A Node is a named unit of work wrapping a user function
``(ctx, state) -> partial_update | Command``. The function may be a coroutine
function or a plain callable; nodes notify their listeners as they start,
complete or fail.

Typical Usage:
    ```python
    async def summarize(ctx: RunContext, state: dict) -> dict:
        await ctx.progress(stage="calling model")
        return {"summary": "..."}

    graph.add_node("summarize", summarize)
    graph.nodes["summarize"].add_listener(print_event)
    ```
"""

import inspect
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from stepgraph.core.graph.listeners import (
    ListenerLike,
    NodeEvent,
    NodeListener,
    StreamEvent,
    as_listener,
    notify_listeners,
)
from stepgraph.core.logging import LogComponent, get_logger

if TYPE_CHECKING:
    from stepgraph.core.graph.context import RunContext

logger = get_logger(LogComponent.GRAPH)

NodeFunction = Callable[..., Any]


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call ``func`` and await the result when it is awaitable."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Node(BaseModel):
    """
    A named node holding the user's function and its listeners.

    Attributes:
        name: Unique node name
        function: ``(ctx, state) -> update | Command``, sync or async
        metadata: Optional node metadata
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str = Field(..., description="Unique name for this node")
    function: NodeFunction = Field(..., description="Node function")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    _listeners: List[NodeListener] = PrivateAttr(default_factory=list)
    _lock: threading.Lock = PrivateAttr(default_factory=threading.Lock)

    @model_validator(mode='after')
    def validate_node(self) -> 'Node':
        if not self.name:
            raise ValueError("Node must have a name")
        if not callable(self.function):
            raise ValueError(f"Node {self.name} function is not callable")
        return self

    def add_listener(self, listener: ListenerLike) -> "Node":
        """Add a listener; plain functions are wrapped automatically."""
        with self._lock:
            self._listeners.append(as_listener(listener))
        return self

    def remove_listener(self, listener: ListenerLike) -> None:
        """Remove the first registration of ``listener``, if present."""
        # Bare functions were wrapped on registration; wrappers compare by function
        target = as_listener(listener)
        with self._lock:
            for index, registered in enumerate(self._listeners):
                if registered is target or registered == target:
                    del self._listeners[index]
                    return

    def get_listeners(self) -> List[NodeListener]:
        with self._lock:
            return list(self._listeners)

    async def notify_listeners(
        self,
        event: NodeEvent,
        state: Any = None,
        error: Optional[BaseException] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration: Optional[float] = None,
        extra: Sequence[ListenerLike] = (),
    ) -> None:
        """Notify the node's own listeners plus ``extra`` (the invocation's)."""
        listeners = self.get_listeners() + [as_listener(listener) for listener in extra]
        if not listeners:
            return
        await notify_listeners(
            listeners,
            StreamEvent(
                event=event,
                node_name=self.name,
                state=state,
                error=error,
                metadata=dict(metadata or {}),
                duration=duration,
            ),
        )

    async def execute(self, ctx: "RunContext", state: Any) -> Any:
        """Run the node function once, notifying listeners around it."""
        extra = ctx.config.listeners
        await self.notify_listeners(NodeEvent.NODE_START, state=state, extra=extra)
        started = time.monotonic()
        try:
            result = await call_maybe_async(self.function, ctx.for_node(self), state)
        except Exception as e:
            await self.notify_listeners(NodeEvent.NODE_ERROR, state=state, error=e, extra=extra)
            raise
        await self.notify_listeners(
            NodeEvent.NODE_COMPLETE,
            state=result,
            duration=time.monotonic() - started,
            extra=extra,
        )
        return result
