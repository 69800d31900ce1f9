"""State schemas and reducers.

This module provides:
1. Reducer: the per-key merge function signature
2. StateSchema / CleaningStateSchema: protocols the scheduler merges through
3. MapSchema: a dict-backed schema with per-key reducers and ephemeral keys
4. overwrite_reducer / append_reducer: the canonical reducers

The add-messages reducer lives in the messages module.
"""

import numbers
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Protocol, Set, runtime_checkable

from stepgraph.core.graph.errors import (
    AppendTypeMismatch,
    ReducerError,
    SchemaTypeMismatch,
)
from stepgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.SCHEMA)

Reducer = Callable[[Any, Any], Any]
"""Merge ``(current_value, incoming_value) -> merged_value``. Must not mutate its inputs."""


@runtime_checkable
class StateSchema(Protocol):
    """Protocol defining how the graph state is created and updated."""

    def init(self) -> Any:
        """Return the initial state."""
        ...

    def update(self, current: Any, partial: Any) -> Any:
        """Merge a partial update into the current state, returning a new state."""
        ...


@runtime_checkable
class CleaningStateSchema(StateSchema, Protocol):
    """A schema that also clears ephemeral values at the end of every super-step."""

    def cleanup(self, state: Any) -> Any:
        ...


class MapSchema:
    """Schema for ``dict`` states with per-key reducers.

    Keys without a registered reducer are overwritten. Keys registered as
    ephemeral are dropped by ``cleanup`` once the super-step that wrote them
    has merged.

    Example:
        ```python
        schema = MapSchema()
        schema.register_reducer("logs", append_reducer)
        schema.register_channel("scratch", overwrite_reducer, ephemeral=True)
        ```
    """

    def __init__(
        self,
        reducers: Dict[str, Reducer] = None,
        ephemeral_keys: Set[str] = None,
    ) -> None:
        self.reducers: Dict[str, Reducer] = dict(reducers or {})
        self.ephemeral_keys: Set[str] = set(ephemeral_keys or ())

    def register_reducer(self, key: str, reducer: Reducer) -> "MapSchema":
        """Add a reducer for a specific key."""
        self.reducers[key] = reducer
        return self

    def register_channel(self, key: str, reducer: Reducer, ephemeral: bool = False) -> "MapSchema":
        """Add a channel definition: a reducer plus the ephemeral flag."""
        self.reducers[key] = reducer
        if ephemeral:
            self.ephemeral_keys.add(key)
        else:
            self.ephemeral_keys.discard(key)
        return self

    def init(self) -> Dict[str, Any]:
        return {}

    def update(self, current: Any, partial: Any) -> Dict[str, Any]:
        """Return a shallow copy of ``current`` with ``partial`` merged in key by key.

        Raises:
            SchemaTypeMismatch: If either argument is not a mapping
            ReducerError: If a reducer raises while merging a key
        """
        if current is None:
            current = {}
        if not isinstance(current, Mapping):
            raise SchemaTypeMismatch(
                f"current state is not a mapping: {type(current).__name__}"
            )
        if not isinstance(partial, Mapping):
            raise SchemaTypeMismatch(
                f"state update is not a mapping: {type(partial).__name__}"
            )

        result = dict(current)
        for key, value in partial.items():
            reducer = self.reducers.get(key)
            if reducer is None:
                result[key] = value
                continue
            try:
                result[key] = reducer(result.get(key), value)
            except Exception as e:
                logger.debug(f"Reducer for key {key!r} failed: {e}")
                raise ReducerError(key, e) from e
        return result

    def cleanup(self, state: Any) -> Any:
        """Drop ephemeral keys; returns the same object when nothing was dropped."""
        if not self.ephemeral_keys or not isinstance(state, Mapping):
            return state
        if not any(key in state for key in self.ephemeral_keys):
            return state
        return {k: v for k, v in state.items() if k not in self.ephemeral_keys}


# Canonical reducers

def overwrite_reducer(current: Any, new: Any) -> Any:
    """Replace the old value with the new one."""
    return new


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _compatible(expected: Any, item: Any) -> bool:
    """Whether ``item`` may join a sequence whose elements look like ``expected``."""
    if expected is None or item is None:
        return True
    if isinstance(expected, numbers.Number) and isinstance(item, numbers.Number):
        return True
    return isinstance(item, type(expected)) or isinstance(expected, type(item))


def _check_elements(current: List[Any], items: List[Any]) -> None:
    exemplar = next((c for c in current if c is not None), None)
    if exemplar is None:
        return
    for item in items:
        if not _compatible(exemplar, item):
            raise AppendTypeMismatch(
                f"cannot append {type(item).__name__} to a sequence of "
                f"{type(exemplar).__name__}"
            )


def append_reducer(current: Any, new: Any) -> List[Any]:
    """Append ``new`` to the ``current`` sequence.

    A list or tuple is appended element-wise; anything else (including strings
    and dicts) is appended as a single element. A missing current value starts
    a new list. The inputs are never mutated.

    Raises:
        AppendTypeMismatch: If current is not a sequence or the element types
            are incompatible
    """
    items = list(new) if _is_sequence(new) else [new]
    if current is None:
        return items
    if not _is_sequence(current):
        raise AppendTypeMismatch(
            f"current value is not a sequence: {type(current).__name__}"
        )
    _check_elements(current, items)
    return list(current) + items
