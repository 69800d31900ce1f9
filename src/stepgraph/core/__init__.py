"""Core modules for stepgraph."""

from stepgraph.core.logging import configure_logging, get_logger, LogLevel, LogComponent

__all__ = [
    'configure_logging',
    'get_logger',
    'LogLevel',
    'LogComponent'
]
