"""Error types raised by the graph engine.

Everything derives from GraphError so callers can catch engine failures in one
place. GraphInterrupt and NodeInterrupt are control-flow signals rather than
failures: they carry enough information for the caller to resume.
"""

from typing import Any, List, Optional


class GraphError(Exception):
    """Base class for all graph engine errors."""


# Structural errors

class EntryPointNotSet(GraphError):
    """Raised by compile() when no entry point was declared."""

    def __init__(self) -> None:
        super().__init__("entry point not set")


class NodeNotFound(GraphError):
    """Raised when the frontier names a node that was never added."""

    def __init__(self, node: str) -> None:
        self.node = node
        super().__init__(f"node not found: {node}")


class DuplicateNodeError(GraphError):
    """Raised when a node name is reserved or already registered."""

    def __init__(self, node: str, reason: str = "already registered") -> None:
        self.node = node
        super().__init__(f"cannot add node {node!r}: {reason}")


class NoOutgoingEdge(GraphError):
    """Raised when a node that ran has neither a conditional nor a static edge."""

    def __init__(self, node: str) -> None:
        self.node = node
        super().__init__(f"no outgoing edge found for node: {node}")


class ConditionalEmpty(GraphError):
    """Raised when a conditional edge returns an empty successor."""

    def __init__(self, node: str) -> None:
        self.node = node
        super().__init__(f"conditional edge returned empty next node from {node}")


# Schema / reducer errors

class SchemaError(GraphError):
    """Base class for schema and reducer failures."""


class SchemaTypeMismatch(SchemaError):
    """Raised when a schema receives a state or update that is not a mapping."""


class ReducerError(SchemaError):
    """Raised when a reducer fails while merging a key."""

    def __init__(self, key: str, cause: Exception) -> None:
        self.key = key
        super().__init__(f"failed to reduce key {key}: {cause}")


class AppendTypeMismatch(SchemaError):
    """Raised by the append reducer on incompatible element types."""


class ShapeError(SchemaError):
    """Raised by the add-messages reducer when the current value is not a sequence."""


# Control flow

class NodeInterrupt(GraphError):
    """Raised inside a node to pause the graph and surface a value to the caller."""

    def __init__(self, value: Any, node: Optional[str] = None) -> None:
        self.value = value
        self.node = node
        super().__init__(f"node interrupt: {value!r}")


class GraphInterrupt(GraphError):
    """Raised by the scheduler when execution pauses.

    Attributes:
        node: The node that caused the pause
        state: State at the pause point (pre-step for interrupt-before and
            dynamic interrupts, post-merge for interrupt-after)
        next_nodes: Nodes that would run on resume
        interrupt_value: Value from a dynamic interrupt, if any
    """

    def __init__(
        self,
        node: str,
        state: Any,
        next_nodes: Optional[List[str]] = None,
        interrupt_value: Any = None,
    ) -> None:
        self.node = node
        self.state = state
        self.next_nodes = list(next_nodes or [])
        self.interrupt_value = interrupt_value
        if interrupt_value is not None:
            message = f"graph interrupted at node {node} with value: {interrupt_value!r}"
        else:
            message = f"graph interrupted at node {node}"
        super().__init__(message)


# Execution errors

class NodeError(GraphError):
    """Wraps a user node failure with the node's name, after retries are exhausted."""

    def __init__(self, node: str, cause: BaseException) -> None:
        self.node = node
        super().__init__(f"error in node {node}: {cause}")


class ContextCancelled(GraphError):
    """Raised when an invocation is cancelled."""


class DeadlineExceeded(GraphError):
    """Raised when an invocation runs past its configured timeout."""


class GraphRecursionError(GraphError):
    """Raised when an invocation exceeds its super-step budget."""

    def __init__(self, max_steps: int) -> None:
        self.max_steps = max_steps
        super().__init__(f"graph exceeded the maximum of {max_steps} super-steps")


# Checkpoint store errors

class CheckpointError(GraphError):
    """Base class for checkpoint store failures."""


class CheckpointNotFound(CheckpointError):
    """Raised when a checkpoint id is unknown to the store."""

    def __init__(self, checkpoint_id: str) -> None:
        self.checkpoint_id = checkpoint_id
        super().__init__(f"checkpoint not found: {checkpoint_id}")


class CheckpointStoreError(CheckpointError):
    """Raised when the store cannot read or write a checkpoint."""
