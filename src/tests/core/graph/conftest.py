"""Shared fixtures for the graph test suite."""

import pytest

from stepgraph.core.graph import END, MapSchema, StateGraph
from tests.core.graph.helpers import RecordingHandler, returning, sum_reducer


@pytest.fixture
def count_schema() -> MapSchema:
    """Schema summing the ``count`` key."""
    return MapSchema().register_reducer("count", sum_reducer)


@pytest.fixture
def linear_graph(count_schema: MapSchema) -> StateGraph:
    """A -> B -> C -> END, contributing 1, 2 and 3 to ``count``."""
    graph = StateGraph()
    graph.set_schema(count_schema)
    graph.add_node("A", returning({"count": 1}))
    graph.add_node("B", returning({"count": 2}))
    graph.add_node("C", returning({"count": 3}))
    graph.chain(["A", "B", "C"])
    graph.add_edge("C", END)
    return graph


@pytest.fixture
def recorder() -> RecordingHandler:
    return RecordingHandler()
