"""Tests for subgraphs exposed as parent nodes."""

import pytest

from stepgraph.core.graph import (
    END,
    GraphInterrupt,
    MapSchema,
    NodeError,
    StateGraph,
    append_reducer,
    interrupt,
)
from tests.core.graph.helpers import returning


def child_graph() -> StateGraph:
    """Child that appends two log entries."""
    child = StateGraph()
    child.set_schema(MapSchema().register_reducer("logs", append_reducer))
    child.add_node("child_a", returning({"logs": ["child_a"]}))
    child.add_node("child_b", returning({"logs": ["child_b"]}))
    child.chain(["child_a", "child_b"])
    child.add_edge("child_b", END)
    return child


@pytest.fixture
def parent() -> StateGraph:
    graph = StateGraph()
    graph.set_schema(MapSchema().register_reducer("logs", append_reducer))
    graph.add_node("start", returning({"logs": ["start"]}))
    graph.add_node("finish", returning({"logs": ["finish"]}))
    return graph


class TestSubgraphs:
    """Test suite for add_subgraph."""

    async def test_child_state_becomes_update(self, parent: StateGraph):
        """The child's final state is merged by the parent's schema."""
        node = parent.add_subgraph("child", child_graph())
        parent.chain(["start", "child", "finish"])
        parent.add_edge("finish", END)

        result = await parent.compile().invoke({"logs": []})

        assert node.metadata["subgraph"] is True
        # The child returns its whole log, which the parent appends again
        assert result["logs"] == ["start", "start", "child_a", "child_b", "finish"]

    async def test_compiled_child(self):
        parent = StateGraph()
        parent.set_schema(MapSchema())
        child = StateGraph()
        child.set_schema(MapSchema())
        child.add_node("inner", returning({"inner": True}))
        child.add_edge("inner", END)
        child.set_entry_point("inner")

        parent.add_subgraph("child", child.compile())
        parent.add_edge("child", END)
        parent.set_entry_point("child")

        assert await parent.compile().invoke({"outer": True}) == {"outer": True, "inner": True}

    async def test_child_interrupt_surfaces_as_node_error(self, parent: StateGraph):
        async def ask(ctx, state):
            return {"answer": interrupt("question")}

        child = StateGraph()
        child.add_node("ask", ask)
        child.add_edge("ask", END)
        child.set_entry_point("ask")

        parent.add_subgraph("child", child)
        parent.chain(["start", "child"])
        parent.add_edge("child", END)

        with pytest.raises(NodeError) as exc_info:
            await parent.compile().invoke({"logs": []})
        assert exc_info.value.node == "child"
        assert isinstance(exc_info.value.__cause__, GraphInterrupt)
