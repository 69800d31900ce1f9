"""Node functions, reducers and handlers reused across the graph tests."""

from typing import Any, List, Tuple

from stepgraph.core.graph import GraphCallbackHandler


def sum_reducer(current: Any, new: Any) -> Any:
    """Add numbers, treating a missing value as zero."""
    return (current or 0) + new


def returning(update: Any):
    """Build a node function that always returns ``update``."""

    async def node(ctx, state):
        return update

    return node


class RecordingHandler(GraphCallbackHandler):
    """Callback handler that records every hook it receives."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any]] = []

    def on_chain_start(self, serialized, inputs, run_id, parent_run_id=None, tags=None, metadata=None):
        self.calls.append(("chain_start", inputs))

    def on_chain_end(self, outputs, run_id):
        self.calls.append(("chain_end", outputs))

    def on_chain_error(self, error, run_id):
        self.calls.append(("chain_error", error))

    def on_tool_start(self, serialized, input_str, run_id, parent_run_id=None, tags=None, metadata=None):
        self.calls.append(("tool_start", serialized["name"]))

    def on_tool_end(self, output, run_id):
        self.calls.append(("tool_end", output))

    def on_tool_error(self, error, run_id):
        self.calls.append(("tool_error", error))

    def on_graph_step(self, step_node, state):
        self.calls.append(("graph_step", (step_node, state)))

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def steps(self) -> List[Tuple[str, Any]]:
        return [payload for name, payload in self.calls if name == "graph_step"]
