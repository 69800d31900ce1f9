"""Streaming execution.

StreamingRunnable runs a compiled graph in a background task and delivers
execution events through a bounded EventChannel as they happen. The stream
mode decides which events are delivered; when the channel is full, events are
dropped rather than stalling the graph.

Example:
    ```python
    runnable = graph.compile_streaming(StreamConfig(mode=StreamMode.VALUES))
    stream = runnable.stream({"query": "..."})
    async for event in stream.events:
        print(event.node_name, event.state)
    final_state = await stream.final()
    ```
"""

import asyncio
import inspect
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional, Union

from stepgraph.core.graph.callbacks import GraphCallbackHandler
from stepgraph.core.graph.config import RunnableConfig, StreamConfig, StreamMode, ensure_config
from stepgraph.core.graph.errors import ContextCancelled
from stepgraph.core.graph.executor import CompiledGraph
from stepgraph.core.graph.listeners import NodeEvent, StreamEvent
from stepgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.STREAMING)

SETTLE_DELAY = 0.01

MODE_EVENTS = {
    StreamMode.VALUES: {NodeEvent.GRAPH_STEP},
    StreamMode.UPDATES: {NodeEvent.NODE_COMPLETE, NodeEvent.TOOL_END},
    StreamMode.MESSAGES: {
        NodeEvent.LLM_START,
        NodeEvent.LLM_END,
        NodeEvent.LLM_ERROR,
        NodeEvent.TOKEN,
    },
}


class EventChannel:
    """A bounded, closable channel of events, consumed with ``async for``."""

    def __init__(self, maxsize: int) -> None:
        self.maxsize = maxsize
        self._items: Deque[StreamEvent] = deque()
        self._closed = False
        self._changed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def full(self) -> bool:
        return len(self._items) >= self.maxsize

    def try_put(self, event: StreamEvent) -> bool:
        """Enqueue without blocking; False when closed or full."""
        if self._closed or self.full():
            return False
        self._items.append(event)
        self._changed.set()
        return True

    def close(self) -> None:
        self._closed = True
        self._changed.set()

    async def get(self) -> StreamEvent:
        """Next event; raises StopAsyncIteration once closed and drained."""
        while True:
            if self._items:
                return self._items.popleft()
            if self._closed:
                raise StopAsyncIteration
            self._changed.clear()
            await self._changed.wait()

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> StreamEvent:
        return await self.get()


class StreamingListener(GraphCallbackHandler):
    """Turns node events and callbacks into StreamEvents on a channel."""

    def __init__(self, channel: EventChannel, config: StreamConfig) -> None:
        self.channel = channel
        self.config = config
        self._lock = threading.Lock()
        self._dropped = 0
        self._closed = False

    @property
    def dropped_events(self) -> int:
        with self._lock:
            return self._dropped

    def close(self) -> None:
        """Stop forwarding events; later events are ignored."""
        with self._lock:
            self._closed = True

    def should_emit(self, event: StreamEvent) -> bool:
        allowed = MODE_EVENTS.get(self.config.mode)
        return allowed is None or event.event in allowed

    def emit(self, event: StreamEvent) -> None:
        with self._lock:
            if self._closed:
                return
        if not self.should_emit(event):
            return
        if self.channel.try_put(event):
            return
        if self.config.enable_backpressure:
            self._handle_backpressure()

    def _handle_backpressure(self) -> None:
        with self._lock:
            self._dropped += 1
            dropped = self._dropped
        if dropped == self.config.max_dropped_events:
            logger.warning(f"Event channel full, {dropped} events dropped so far")

    def _event(self, kind: NodeEvent, **fields: Any) -> None:
        self.emit(StreamEvent(event=kind, **fields))

    # NodeListener
    def on_node_event(self, event: StreamEvent) -> None:
        self.emit(event)

    # CallbackHandler
    def on_chain_start(self, serialized, inputs, run_id, parent_run_id=None, tags=None, metadata=None):
        self._event(NodeEvent.CHAIN_START, state=inputs, metadata=dict(metadata or {}))

    def on_chain_end(self, outputs, run_id):
        self._event(NodeEvent.CHAIN_END, state=outputs)

    def on_chain_error(self, error, run_id):
        self._event(NodeEvent.CHAIN_ERROR, error=error)

    def on_llm_start(self, serialized, prompts, run_id, parent_run_id=None, tags=None, metadata=None):
        self._event(NodeEvent.LLM_START, state=prompts, metadata=dict(metadata or {}))

    def on_llm_end(self, response, run_id):
        self._event(NodeEvent.LLM_END, state=response)

    def on_llm_error(self, error, run_id):
        self._event(NodeEvent.LLM_ERROR, error=error)

    def on_tool_start(self, serialized, input_str, run_id, parent_run_id=None, tags=None, metadata=None):
        self._event(
            NodeEvent.TOOL_START,
            node_name=serialized.get("name"),
            state=input_str,
            metadata=dict(metadata or {}),
        )

    def on_tool_end(self, output, run_id):
        self._event(NodeEvent.TOOL_END, state=output)

    def on_tool_error(self, error, run_id):
        self._event(NodeEvent.TOOL_ERROR, error=error)

    def on_retriever_start(self, serialized, query, run_id, parent_run_id=None, tags=None, metadata=None):
        self._event(NodeEvent.RETRIEVER_START, state=query, metadata=dict(metadata or {}))

    def on_retriever_end(self, documents, run_id):
        self._event(NodeEvent.RETRIEVER_END, state=documents)

    def on_retriever_error(self, error, run_id):
        self._event(NodeEvent.RETRIEVER_ERROR, error=error)

    def on_graph_step(self, step_node, state):
        self._event(NodeEvent.GRAPH_STEP, node_name=step_node, state=state)


class StreamResult:
    """Handles returned by ``StreamingRunnable.stream``.

    Attributes:
        events: Channel of StreamEvents, closed when the run is over
        result: One-slot queue receiving the final state
        errors: One-slot queue receiving the run's exception
        done: Set once the run finished and the channel is closed
    """

    def __init__(self, events: EventChannel, listener: StreamingListener) -> None:
        self.events = events
        self.result: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.errors: asyncio.Queue = asyncio.Queue(maxsize=1)
        self.done = asyncio.Event()
        self._listener = listener
        self._task: Optional[asyncio.Task] = None

    @property
    def dropped_events(self) -> int:
        return self._listener.dropped_events

    def cancel(self) -> None:
        """Stop the run; ContextCancelled is delivered on ``errors``."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def final(self) -> Any:
        """Wait for the run and return its final state, raising its error."""
        await self.done.wait()
        if not self.errors.empty():
            raise self.errors.get_nowait()
        return self.result.get_nowait()


class StreamingRunnable:
    """Wraps a CompiledGraph with real-time event streaming."""

    def __init__(self, runnable: CompiledGraph, config: Optional[StreamConfig] = None) -> None:
        self.runnable = runnable
        self.config = config or StreamConfig()

    def set_stream_config(self, config: Union[StreamConfig, Dict[str, Any]]) -> None:
        if not isinstance(config, StreamConfig):
            config = StreamConfig.model_validate(config)
        self.config = config

    def get_stream_config(self) -> StreamConfig:
        return self.config

    async def invoke(self, state: Any = None, config: Union[RunnableConfig, Dict[str, Any], None] = None) -> Any:
        return await self.runnable.invoke_with_config(state, config)

    def stream(
        self,
        state: Any = None,
        config: Union[RunnableConfig, Dict[str, Any], None] = None,
    ) -> StreamResult:
        """Start the graph in a background task and return its stream handles.

        Must be called from a running event loop.
        """
        stream_config = self.config
        channel = EventChannel(stream_config.buffer_size)
        listener = StreamingListener(channel, stream_config)
        result = StreamResult(channel, listener)

        # The listener is scoped to this invocation, not to the shared nodes
        run_config = ensure_config(config)
        run_config = run_config.model_copy(
            update={
                "callbacks": list(run_config.callbacks) + [listener],
                "listeners": list(run_config.listeners) + [listener],
            }
        )
        task = asyncio.get_running_loop().create_task(
            self._produce(state, run_config, listener, result)
        )
        task.add_done_callback(lambda _: self._finish_cancelled(listener, result))
        result._task = task
        return result

    @staticmethod
    def _finish_cancelled(listener: StreamingListener, result: StreamResult) -> None:
        """Close a stream whose task was cancelled before its cleanup could run."""
        if result.done.is_set():
            return
        listener.close()
        if result.errors.empty() and result.result.empty():
            result.errors.put_nowait(ContextCancelled("stream cancelled"))
        result.events.close()
        result.done.set()

    async def _produce(
        self,
        state: Any,
        config: RunnableConfig,
        listener: StreamingListener,
        result: StreamResult,
    ) -> None:
        try:
            final_state = await self.runnable.invoke_with_config(state, config)
            result.result.put_nowait(final_state)
        except asyncio.CancelledError:
            logger.info("Stream cancelled")
            result.errors.put_nowait(ContextCancelled("stream cancelled"))
        except Exception as e:
            result.errors.put_nowait(e)
        finally:
            # Detach before closing so no listener sends on a closed channel
            listener.close()
            await asyncio.sleep(SETTLE_DELAY)
            result.events.close()
            result.done.set()


class StreamingExecutor:
    """High-level helpers around a StreamingRunnable."""

    def __init__(self, runnable: StreamingRunnable) -> None:
        self.runnable = runnable

    async def execute_with_callback(
        self,
        state: Any,
        event_callback: Optional[Callable[[StreamEvent], Any]] = None,
        result_callback: Optional[Callable[[Any, Optional[BaseException]], Any]] = None,
        config: Union[RunnableConfig, Dict[str, Any], None] = None,
    ) -> Any:
        """Run the graph, passing each event and then the outcome to the callbacks.

        Returns the final state; re-raises the run's error after
        ``result_callback`` has seen it.
        """
        stream = self.runnable.stream(state, config)
        try:
            async for event in stream.events:
                if event_callback is not None:
                    outcome = event_callback(event)
                    if inspect.isawaitable(outcome):
                        await outcome
            await stream.done.wait()
        finally:
            stream.cancel()

        error: Optional[BaseException] = None
        final_state: Any = None
        if not stream.errors.empty():
            error = stream.errors.get_nowait()
        elif not stream.result.empty():
            final_state = stream.result.get_nowait()

        if result_callback is not None:
            outcome = result_callback(final_state, error)
            if inspect.isawaitable(outcome):
                await outcome
        if error is not None:
            raise error
        return final_state

    def execute_async(
        self,
        state: Any,
        config: Union[RunnableConfig, Dict[str, Any], None] = None,
    ) -> StreamResult:
        return self.runnable.stream(state, config)
