"""Invocation context handed to node functions and conditional edges.

The active ``RunnableConfig`` is also published through a context variable, so
helpers such as ``interrupt()`` and ``get_config()`` work anywhere inside a
node, including code that never sees the ``RunContext`` object.
"""

from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Dict, Optional

from stepgraph.core.graph.config import RunnableConfig
from stepgraph.core.graph.errors import NodeInterrupt
from stepgraph.core.graph.listeners import NodeEvent

if TYPE_CHECKING:
    from stepgraph.core.graph.node import Node

_current_config: ContextVar[Optional[RunnableConfig]] = ContextVar(
    "stepgraph_current_config", default=None
)


def get_config() -> Optional[RunnableConfig]:
    """Return the config of the invocation running in this task, if any."""
    return _current_config.get()


def get_resume_value() -> Any:
    config = _current_config.get()
    return config.resume_value if config is not None else None


def interrupt(value: Any) -> Any:
    """Pause the graph and surface ``value`` to the caller.

    When the invocation was resumed with a ``resume_value``, that value is
    returned instead and the node carries on.

    Raises:
        NodeInterrupt: When no resume value is available
    """
    resume_value = get_resume_value()
    if resume_value is not None:
        return resume_value
    raise NodeInterrupt(value)


class RunContext:
    """What a node knows about the invocation it is running in.

    Attributes:
        config: The invocation config
        run_id: Identifier of this invocation
        node_name: Node currently executing (None outside nodes)
    """

    def __init__(
        self,
        config: RunnableConfig,
        run_id: str,
        node: Optional["Node"] = None,
    ) -> None:
        self.config = config
        self.run_id = run_id
        self._node = node

    @property
    def node_name(self) -> Optional[str]:
        return self._node.name if self._node is not None else None

    @property
    def resume_value(self) -> Any:
        return self.config.resume_value

    def for_node(self, node: "Node") -> "RunContext":
        return RunContext(self.config, self.run_id, node)

    def interrupt(self, value: Any) -> Any:
        """Same as the module-level ``interrupt`` for this invocation."""
        if self.config.resume_value is not None:
            return self.config.resume_value
        raise NodeInterrupt(value, node=self.node_name)

    async def emit(
        self,
        event: NodeEvent,
        state: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Send a progress, token, LLM or custom event to the node's listeners."""
        if self._node is None:
            return
        await self._node.notify_listeners(
            event, state=state, metadata=metadata, extra=self.config.listeners
        )

    async def progress(self, state: Any = None, **metadata: Any) -> None:
        await self.emit(NodeEvent.NODE_PROGRESS, state=state, metadata=metadata)
