"""Run-level callback handlers.

Callbacks follow the LangChain handler shape: chain, LLM, tool and retriever
hooks, each receiving a ``run_id``. Every hook on ``CallbackHandler`` is a
no-op, so handlers override only what they need. Hooks may be plain or
``async`` methods.
"""

import inspect
import json
from typing import Any, Dict, Iterable, List, Optional

from stepgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.LISTENERS)


class CallbackHandler:
    """Base callback handler; all hooks do nothing."""

    # Chain callbacks (graph execution)
    def on_chain_start(
        self,
        serialized: Dict[str, Any],
        inputs: Dict[str, Any],
        run_id: str,
        parent_run_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        pass

    def on_chain_end(self, outputs: Dict[str, Any], run_id: str) -> Any:
        pass

    def on_chain_error(self, error: BaseException, run_id: str) -> Any:
        pass

    # LLM callbacks
    def on_llm_start(
        self,
        serialized: Dict[str, Any],
        prompts: List[str],
        run_id: str,
        parent_run_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        pass

    def on_llm_end(self, response: Any, run_id: str) -> Any:
        pass

    def on_llm_error(self, error: BaseException, run_id: str) -> Any:
        pass

    # Tool callbacks (each node run is reported as a tool run)
    def on_tool_start(
        self,
        serialized: Dict[str, Any],
        input_str: str,
        run_id: str,
        parent_run_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        pass

    def on_tool_end(self, output: str, run_id: str) -> Any:
        pass

    def on_tool_error(self, error: BaseException, run_id: str) -> Any:
        pass

    # Retriever callbacks
    def on_retriever_start(
        self,
        serialized: Dict[str, Any],
        query: str,
        run_id: str,
        parent_run_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Any:
        pass

    def on_retriever_end(self, documents: List[Any], run_id: str) -> Any:
        pass

    def on_retriever_error(self, error: BaseException, run_id: str) -> Any:
        pass


NoOpCallbackHandler = CallbackHandler


class GraphCallbackHandler(CallbackHandler):
    """Callback handler that also observes completed super-steps."""

    def on_graph_step(self, step_node: str, state: Any) -> Any:
        """Called after a super-step merged its updates and cleaned up."""
        pass


async def fire_callbacks(handlers: Iterable[Any], hook: str, *args: Any, **kwargs: Any) -> None:
    """Invoke ``hook`` on every handler that defines it.

    Handlers run in order; exceptions are logged and suppressed.
    """
    for handler in handlers:
        method = getattr(handler, hook, None)
        if method is None:
            continue
        try:
            result = method(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Callback {type(handler).__name__}.{hook} failed: {e}")


def state_to_map(state: Any) -> Dict[str, Any]:
    """Present a state as a mapping for chain callbacks."""
    if isinstance(state, dict):
        return dict(state)
    return {"value": state}


def state_to_string(state: Any) -> str:
    """Present a node output as a string for tool callbacks."""
    if isinstance(state, str):
        return state
    if hasattr(state, "model_dump_json"):
        return state.model_dump_json()
    try:
        return json.dumps(state, default=str)
    except (TypeError, ValueError):
        return str(state)
