"""Tests for graph visualization."""

from stepgraph.core.graph import END, GraphVisualizer, StateGraph
from tests.core.graph.helpers import returning


class TestMermaid:
    """Test suite for Mermaid rendering."""

    def test_render(self, linear_graph: StateGraph):
        diagram = linear_graph.compile().get_graph().render_mermaid()
        lines = diagram.splitlines()

        assert lines[0] == "flowchart TD"
        assert "    __start__ --> A" in lines
        assert "    A --> B" in lines
        assert "    C --> END" in lines
        assert '    B["B"]' in lines

    def test_conditional_edges_are_dotted(self):
        graph = StateGraph()
        graph.add_node("check-input", returning({}))
        graph.add_conditional_edge("check-input", lambda ctx, state: END)
        graph.set_entry_point("check-input")

        diagram = GraphVisualizer(graph).render_mermaid()

        assert '    check_input["check-input"]' in diagram
        assert '    check_input__router{{"runtime route"}}' in diagram
        assert "    check_input -.-> check_input__router" in diagram

    def test_declared_targets_are_drawn(self):
        graph = StateGraph()
        graph.add_node("review", returning({}))
        graph.add_node("plan", returning({}))
        graph.add_edge("plan", "review")
        graph.add_conditional_edge("review", lambda ctx, state: END, targets=["plan", END])
        graph.set_entry_point("plan")

        lines = GraphVisualizer(graph).render_mermaid().splitlines()

        assert "    review -.-> plan" in lines
        assert "    review -.-> END" in lines
        assert not any("__router" in line for line in lines)
