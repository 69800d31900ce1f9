"""Chat message support.

Provides the ``add_messages`` reducer, which upserts messages by identity,
a ``Message`` model built on Mirascope's ``BaseMessageParam``, and
``MessagesStateGraph``, a builder pre-wired with a ``messages`` channel.
"""

from collections.abc import Mapping
from typing import Any, List, Optional, Protocol, runtime_checkable

from mirascope.core import BaseMessageParam

from stepgraph.core.graph.base import StateGraph
from stepgraph.core.graph.errors import ShapeError
from stepgraph.core.graph.state import MapSchema


@runtime_checkable
class MessageWithID(Protocol):
    """Capability for messages that carry an identity used for upserts."""

    def get_id(self) -> str:
        ...


class Message(BaseMessageParam):
    """A chat message with an optional identity.

    Messages sharing an ``id`` replace each other under ``add_messages``;
    messages without one are always appended.
    """

    id: Optional[str] = None

    def get_id(self) -> str:
        return self.id or ""


def get_message_id(message: Any) -> str:
    """Extract an identity from a message-shaped value ("" when absent).

    Looks for, in order: a ``get_id()`` method, an ``"id"`` key on a mapping,
    and an ``id`` (or ``ID``) string attribute.
    """
    if isinstance(message, MessageWithID):
        return message.get_id() or ""
    if isinstance(message, Mapping):
        value = message.get("id")
        return value if isinstance(value, str) else ""
    for attr in ("id", "ID"):
        value = getattr(message, attr, None)
        if isinstance(value, str):
            return value
    return ""


def add_messages(current: Any, new: Any) -> List[Any]:
    """Merge chat messages, replacing those whose identity is already present.

    The order of ``current`` is preserved; unmatched incoming messages are
    appended in arrival order. ``new`` may be one message or a sequence.

    Raises:
        ShapeError: If current is present but not a sequence
    """
    incoming = list(new) if isinstance(new, (list, tuple)) else [new]
    if current is None:
        current = []
    elif not isinstance(current, (list, tuple)):
        raise ShapeError(f"current value is not a sequence: {type(current).__name__}")

    result = list(current)
    positions = {}
    for index, message in enumerate(result):
        message_id = get_message_id(message)
        if message_id:
            positions[message_id] = index

    for message in incoming:
        message_id = get_message_id(message)
        if message_id and message_id in positions:
            result[positions[message_id]] = message
            continue
        result.append(message)
        if message_id:
            positions[message_id] = len(result) - 1
    return result


def MessagesStateGraph() -> StateGraph:
    """Create a StateGraph whose ``messages`` key merges with ``add_messages``.

    This is the usual starting point for chat-style agents.
    """
    graph = StateGraph()
    graph.set_schema(MapSchema().register_reducer("messages", add_messages))
    return graph
