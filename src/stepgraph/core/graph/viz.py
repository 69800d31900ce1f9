"""Graph visualization tools."""

from typing import List

from stepgraph.core.graph.base import END, StateGraph


class GraphVisualizer:
    """Render a graph's structure as a Mermaid flowchart."""

    def __init__(self, graph: StateGraph) -> None:
        self.graph = graph

    @staticmethod
    def _id(name: str) -> str:
        return "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in name)

    def render_mermaid(self) -> str:
        """Static edges are solid, conditional edges dotted.

        A conditional edge without declared targets points at an opaque
        router, since its destinations are only known at run time.
        """
        lines: List[str] = ["flowchart TD"]
        lines.append("    __start__([START])")
        for name in self.graph.nodes:
            lines.append(f"    {self._id(name)}[\"{name}\"]")
        lines.append(f"    {self._id(END)}([END])")

        if self.graph.entry_point:
            lines.append(f"    __start__ --> {self._id(self.graph.entry_point)}")
        for edge in self.graph.edges:
            lines.append(f"    {self._id(edge.from_node)} --> {self._id(edge.to_node)}")
        for name in self.graph.conditional_edges:
            targets = self.graph.conditional_targets.get(name)
            if targets:
                for target in targets:
                    lines.append(f"    {self._id(name)} -.-> {self._id(target)}")
            else:
                router = f"{self._id(name)}__router"
                lines.append(f"    {router}{{{{\"runtime route\"}}}}")
                lines.append(f"    {self._id(name)} -.-> {router}")
        return "\n".join(lines)

    def render_graph(self) -> str:
        return self.render_mermaid()
