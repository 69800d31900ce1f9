"""Graph Builder

This module defines the declarative side of the graph system. A StateGraph
collects:
1. Nodes: named functions ``(ctx, state) -> update | Command``
2. Static edges, including fan-out (several edges from one node)
3. Conditional edges that pick the successor at runtime
4. The entry point, state schema, optional state merger and retry policy

``compile()`` turns the declaration into a CompiledGraph that runs it in
super-steps.

Example:
    ```python
    schema = MapSchema().register_reducer("logs", append_reducer)

    graph = StateGraph()
    graph.set_schema(schema)
    graph.add_node("plan", plan)
    graph.add_node("search", search)
    graph.add_node("write", write)

    graph.add_edge("plan", "search")
    graph.add_conditional_edge("search", lambda ctx, s: "write" if s["hits"] else END)
    graph.add_edge("write", END)
    graph.set_entry_point("plan")

    state = await graph.compile().invoke({"query": "..."})
    ```
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from stepgraph.core.graph.config import RetryPolicy, StreamConfig
from stepgraph.core.graph.errors import DuplicateNodeError, EntryPointNotSet
from stepgraph.core.graph.node import Node, NodeFunction
from stepgraph.core.graph.state import StateSchema
from stepgraph.core.logging import LogComponent, StepgraphLoggingConfig, get_logger, log_verbose

if TYPE_CHECKING:
    from stepgraph.core.graph.checkpoint import CheckpointableRunnable, CheckpointConfig
    from stepgraph.core.graph.executor import CompiledGraph
    from stepgraph.core.graph.streaming import StreamingRunnable

END = "END"
"""Reserved node name that terminates a branch."""

ConditionFunction = Callable[..., Any]
StateMerger = Callable[..., Any]


class Edge(BaseModel):
    """A directed edge between two node names."""
    from_node: str
    to_node: str


class StateGraph(BaseModel):
    """A declarative graph of nodes sharing a schema-merged state.

    Attributes:
        nodes: Mapping of node names to Node instances
        edges: Static edges in declaration order (duplicates are tolerated)
        conditional_edges: Mapping of source node to its condition function
        conditional_targets: Nodes a conditional edge may route to, when declared
        entry_point: Name of the first node to run
        state_schema: Optional schema merging node updates into the state
        state_merger: Optional ``(ctx, state, updates) -> state``, used only
            when no schema is set
        retry_policy: Optional policy applied around every node call
        logging_config: Controls logging verbosity
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    nodes: Dict[str, Node] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)
    conditional_edges: Dict[str, ConditionFunction] = Field(default_factory=dict)
    conditional_targets: Dict[str, List[str]] = Field(default_factory=dict)
    entry_point: Optional[str] = None
    state_schema: Optional[Any] = None
    state_merger: Optional[StateMerger] = None
    retry_policy: Optional[RetryPolicy] = None
    logging_config: StepgraphLoggingConfig = Field(default_factory=StepgraphLoggingConfig)
    stream_config: StreamConfig = Field(default_factory=StreamConfig)

    _logger: Any = PrivateAttr()

    def __init__(self, **data):
        super().__init__(**data)
        self._logger = get_logger(LogComponent.GRAPH)

    def add_node(self, name: str, function: NodeFunction) -> Node:
        """Register a node function under ``name``.

        Returns:
            The created Node, so listeners can be attached

        Raises:
            DuplicateNodeError: If the name is END or already registered
        """
        if name == END:
            raise DuplicateNodeError(name, "END is reserved")
        if name in self.nodes:
            raise DuplicateNodeError(name)
        node = Node(name=name, function=function)
        self.nodes[name] = node
        log_verbose(self._logger, f"Added node: {name}")
        return node

    def add_edge(self, from_node: str, to_node: str) -> None:
        """Add a directed edge. Several edges from one node fan out."""
        self.edges.append(Edge(from_node=from_node, to_node=to_node))
        log_verbose(self._logger, f"Added edge: {from_node} --> {to_node}")

    def add_conditional_edge(
        self,
        from_node: str,
        condition: ConditionFunction,
        targets: Optional[List[str]] = None,
    ) -> None:
        """Route from ``from_node`` to whatever ``condition(ctx, state)`` returns.

        A conditional edge takes precedence over static edges from the same node.
        ``targets`` optionally lists the nodes the condition can return; it is
        used for validation and visualization only.
        """
        self.conditional_edges[from_node] = condition
        if targets is not None:
            self.conditional_targets[from_node] = list(targets)
        else:
            self.conditional_targets.pop(from_node, None)
        log_verbose(self._logger, f"Added conditional edge from: {from_node}")

    def set_entry_point(self, name: str) -> None:
        self.entry_point = name
        self._logger.debug(f"Set entry point to node: {name}")

    def set_schema(self, schema: StateSchema) -> None:
        self.state_schema = schema

    def set_state_merger(self, merger: StateMerger) -> None:
        self.state_merger = merger

    def set_retry_policy(self, policy: Optional[RetryPolicy]) -> None:
        self.retry_policy = policy

    def set_stream_config(self, config: Union[StreamConfig, Dict[str, Any]]) -> None:
        """Streaming settings used by ``compile_streaming()``."""
        if not isinstance(config, StreamConfig):
            config = StreamConfig.model_validate(config)
        self.stream_config = config

    def add_subgraph(self, name: str, child: Union["StateGraph", "CompiledGraph"]) -> Node:
        """Expose a child graph as a single node.

        The node invokes the child on the incoming state and returns the
        child's final state as its partial update. Interrupts raised inside the
        child surface as an ordinary node error.

        Raises:
            EntryPointNotSet: If the child graph cannot be compiled
        """
        runnable = child.compile() if isinstance(child, StateGraph) else child

        async def run_subgraph(ctx, state):
            return await runnable.invoke(state)

        node = self.add_node(name, run_subgraph)
        node.metadata["subgraph"] = True
        return node

    def chain(self, names: List[str]) -> None:
        """Connect already-added nodes in sequence.

        The first node becomes the entry point if none is set.
        """
        for current, following in zip(names, names[1:]):
            self.add_edge(current, following)
        if names and not self.entry_point:
            self.set_entry_point(names[0])

    def successors(self, name: str) -> List[str]:
        """Static successors of ``name`` in declaration order, without duplicates."""
        targets: List[str] = []
        for edge in self.edges:
            if edge.from_node == name and edge.to_node not in targets:
                targets.append(edge.to_node)
        return targets

    def validate(self) -> List[str]:
        """Validate the graph configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors: List[str] = []

        if not self.nodes:
            errors.append("Graph has no nodes")
            return errors

        if not self.entry_point:
            errors.append("Entry point not set")
        elif self.entry_point not in self.nodes:
            errors.append(f"Entry point references unknown node: {self.entry_point}")

        for edge in self.edges:
            if edge.from_node not in self.nodes:
                errors.append(f"Edge starts at unknown node: {edge.from_node}")
            if edge.to_node != END and edge.to_node not in self.nodes:
                errors.append(f"Node {edge.from_node} references unknown node: {edge.to_node}")

        for name in self.conditional_edges:
            if name not in self.nodes:
                errors.append(f"Conditional edge starts at unknown node: {name}")
            for target in self.conditional_targets.get(name, []):
                if target != END and target not in self.nodes:
                    errors.append(f"Conditional edge from {name} references unknown node: {target}")

        for name in self.nodes:
            if name not in self.conditional_edges and not self.successors(name):
                errors.append(f"Node {name} has no outgoing edge")

        return errors

    def compile(self) -> "CompiledGraph":
        """Compile the declaration into a runnable graph.

        Raises:
            EntryPointNotSet: If no entry point was set
        """
        from stepgraph.core.graph.executor import CompiledGraph

        if not self.entry_point:
            raise EntryPointNotSet()
        return CompiledGraph(self)

    def compile_streaming(self, config: Optional[StreamConfig] = None) -> "StreamingRunnable":
        from stepgraph.core.graph.streaming import StreamingRunnable

        return StreamingRunnable(self.compile(), config or self.stream_config)

    def compile_checkpointable(
        self, config: Optional["CheckpointConfig"] = None
    ) -> "CheckpointableRunnable":
        from stepgraph.core.graph.checkpoint import CheckpointableRunnable, CheckpointConfig

        return CheckpointableRunnable(self.compile(), config or CheckpointConfig())
