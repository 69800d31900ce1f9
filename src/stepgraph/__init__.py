"""Stepgraph - stateful graph execution for agent workflows."""

from stepgraph.core.graph import (
    END,
    Command,
    GraphInterrupt,
    MapSchema,
    RunnableConfig,
    StateGraph,
    interrupt,
)
from stepgraph.core.logging import configure_logging, LogLevel, LogComponent

__all__ = [
    'StateGraph',
    'END',
    'Command',
    'GraphInterrupt',
    'MapSchema',
    'RunnableConfig',
    'interrupt',
    'configure_logging',
    'LogLevel',
    'LogComponent'
]
