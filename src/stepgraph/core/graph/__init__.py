"""Graph package initialization.

Exposes the builder, the compiled runnables and the helpers used to write
nodes, schemas, listeners and checkpointed workflows.
"""

from stepgraph.core.graph.base import END, Edge, StateGraph
from stepgraph.core.graph.callbacks import (
    CallbackHandler,
    GraphCallbackHandler,
    NoOpCallbackHandler,
)
from stepgraph.core.graph.checkpoint import (
    Checkpoint,
    CheckpointableRunnable,
    CheckpointConfig,
    CheckpointListener,
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
    StateSnapshot,
)
from stepgraph.core.graph.command import Command
from stepgraph.core.graph.config import (
    BackoffStrategy,
    RetryPolicy,
    RunnableConfig,
    StreamConfig,
    StreamMode,
)
from stepgraph.core.graph.context import RunContext, get_config, interrupt
from stepgraph.core.graph.errors import (
    AppendTypeMismatch,
    CheckpointError,
    CheckpointNotFound,
    CheckpointStoreError,
    ConditionalEmpty,
    ContextCancelled,
    DeadlineExceeded,
    DuplicateNodeError,
    EntryPointNotSet,
    GraphError,
    GraphInterrupt,
    GraphRecursionError,
    NodeError,
    NodeInterrupt,
    NodeNotFound,
    NoOutgoingEdge,
    ReducerError,
    SchemaError,
    SchemaTypeMismatch,
    ShapeError,
)
from stepgraph.core.graph.executor import CompiledGraph
from stepgraph.core.graph.listeners import NodeEvent, NodeListener, NodeListenerFunc, StreamEvent
from stepgraph.core.graph.messages import Message, MessagesStateGraph, add_messages
from stepgraph.core.graph.node import Node
from stepgraph.core.graph.state import (
    CleaningStateSchema,
    MapSchema,
    StateSchema,
    append_reducer,
    overwrite_reducer,
)
from stepgraph.core.graph.streaming import (
    StreamingExecutor,
    StreamingListener,
    StreamingRunnable,
    StreamResult,
)
from stepgraph.core.graph.viz import GraphVisualizer

__all__ = [
    # Builder and runnables
    "StateGraph",
    "Edge",
    "END",
    "Node",
    "CompiledGraph",
    "StreamingRunnable",
    "StreamingExecutor",
    "StreamResult",
    "CheckpointableRunnable",
    "GraphVisualizer",

    # State
    "StateSchema",
    "CleaningStateSchema",
    "MapSchema",
    "overwrite_reducer",
    "append_reducer",
    "add_messages",
    "Message",
    "MessagesStateGraph",

    # Control flow
    "Command",
    "RunContext",
    "interrupt",
    "get_config",

    # Configuration
    "RunnableConfig",
    "RetryPolicy",
    "BackoffStrategy",
    "StreamConfig",
    "StreamMode",
    "CheckpointConfig",

    # Events, listeners and callbacks
    "NodeEvent",
    "StreamEvent",
    "NodeListener",
    "NodeListenerFunc",
    "StreamingListener",
    "CallbackHandler",
    "GraphCallbackHandler",
    "NoOpCallbackHandler",

    # Checkpoints
    "Checkpoint",
    "CheckpointStore",
    "MemoryCheckpointStore",
    "FileCheckpointStore",
    "CheckpointListener",
    "StateSnapshot",

    # Errors
    "GraphError",
    "EntryPointNotSet",
    "NodeNotFound",
    "DuplicateNodeError",
    "NoOutgoingEdge",
    "ConditionalEmpty",
    "SchemaError",
    "SchemaTypeMismatch",
    "ReducerError",
    "AppendTypeMismatch",
    "ShapeError",
    "NodeInterrupt",
    "GraphInterrupt",
    "NodeError",
    "ContextCancelled",
    "DeadlineExceeded",
    "GraphRecursionError",
    "CheckpointError",
    "CheckpointNotFound",
    "CheckpointStoreError",
]
