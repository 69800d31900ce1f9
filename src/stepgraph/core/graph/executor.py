"""Super-step scheduler.

A CompiledGraph runs a StateGraph declaration as a sequence of super-steps.
Each super-step:

1. Drops END from the frontier and checks the interrupt-before gate
2. Runs every frontier node concurrently against the same pre-step state,
   applying the retry policy per node
3. Waits for all of them (the barrier) and triages interrupts and errors
4. Merges the recorded updates through the schema (or merger, or last-wins)
5. Derives the next frontier from Command.goto, conditional or static edges
6. Checks the interrupt-after gate, cleans up ephemeral keys and reports the
   step to callbacks

Nothing is merged from a step that failed or was interrupted.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from stepgraph.core.graph.base import END, StateGraph
from stepgraph.core.graph.callbacks import fire_callbacks, state_to_map, state_to_string
from stepgraph.core.graph.command import Command
from stepgraph.core.graph.config import RetryPolicy, RunnableConfig, ensure_config
from stepgraph.core.graph.context import RunContext, _current_config
from stepgraph.core.graph.errors import (
    ConditionalEmpty,
    ContextCancelled,
    DeadlineExceeded,
    GraphError,
    GraphInterrupt,
    GraphRecursionError,
    NodeError,
    NodeInterrupt,
    NodeNotFound,
    NoOutgoingEdge,
)
from stepgraph.core.graph.listeners import ListenerLike
from stepgraph.core.graph.node import Node, call_maybe_async
from stepgraph.core.graph.state import CleaningStateSchema
from stepgraph.core.logging import LogComponent, get_logger, log_state, log_step, log_verbose

logger = get_logger(LogComponent.EXECUTOR)


def generate_run_id() -> str:
    return f"run_{uuid.uuid4().hex}"


def step_label(nodes: Sequence[str]) -> str:
    """Label identifying the set of nodes that ran in one super-step."""
    return f"step:[{', '.join(nodes)}]"


def _dedupe(names: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for name in names:
        if name not in seen:
            seen.append(name)
    return seen


class CompiledGraph:
    """A compiled StateGraph that can be invoked.

    The compiled graph reads the builder's declarations; changing the builder
    after compiling is not supported.
    """

    def __init__(self, graph: StateGraph) -> None:
        self.graph = graph

    @property
    def nodes(self) -> Dict[str, Node]:
        return self.graph.nodes

    @property
    def schema(self) -> Any:
        return self.graph.state_schema

    def add_global_listener(self, listener: ListenerLike) -> None:
        """Attach a listener to every node in the graph.

        Global listeners see every invocation of the graph; pass
        ``config.listeners`` to observe a single run.
        """
        for node in self.graph.nodes.values():
            node.add_listener(listener)

    def remove_global_listener(self, listener: ListenerLike) -> None:
        for node in self.graph.nodes.values():
            node.remove_listener(listener)

    def get_graph(self):
        from stepgraph.core.graph.viz import GraphVisualizer

        return GraphVisualizer(self.graph)

    async def invoke(self, state: Any = None, config: Union[RunnableConfig, Dict[str, Any], None] = None) -> Any:
        """Run the graph to completion and return the final state.

        Raises:
            GraphInterrupt: When execution pauses; the exception carries the state
            NodeError: When a node fails after retries
            DeadlineExceeded: When ``config.timeout`` expires
        """
        return await self.invoke_with_config(state, config)

    async def invoke_with_config(
        self,
        state: Any = None,
        config: Union[RunnableConfig, Dict[str, Any], None] = None,
    ) -> Any:
        config = ensure_config(config)
        if state is None and self.schema is not None:
            state = self.schema.init()

        run_id = generate_run_id()
        if config.timeout is None:
            return await self._run(state, config, run_id)
        try:
            return await asyncio.wait_for(self._run(state, config, run_id), timeout=config.timeout)
        except asyncio.TimeoutError:
            error = DeadlineExceeded(f"graph invocation exceeded its timeout of {config.timeout}s")
        logger.error(f"Graph run {run_id} failed: {error}")
        await fire_callbacks(list(config.callbacks), "on_chain_error", error, run_id)
        raise error

    async def _run(self, state: Any, config: RunnableConfig, run_id: str) -> Any:
        token = _current_config.set(config)
        ctx = RunContext(config, run_id)
        callbacks = list(config.callbacks)

        await fire_callbacks(
            callbacks,
            "on_chain_start",
            {"name": config.run_name or "graph", "type": "chain"},
            state_to_map(state),
            run_id,
            None,
            list(config.tags),
            dict(config.metadata),
        )

        try:
            frontier = list(config.resume_from) or [self.graph.entry_point]
            steps = 0
            while True:
                frontier = [name for name in frontier if name != END]
                if not frontier:
                    break
                if config.max_steps is not None and steps >= config.max_steps:
                    raise GraphRecursionError(config.max_steps)
                steps += 1

                state, frontier = await self._super_step(ctx, callbacks, state, frontier)
        except GraphInterrupt as interrupt:
            logger.info(f"Graph interrupted at node {interrupt.node}")
            raise
        except GraphError as e:
            logger.error(f"Graph run {run_id} failed: {e}")
            await fire_callbacks(callbacks, "on_chain_error", e, run_id)
            raise
        finally:
            _current_config.reset(token)

        await fire_callbacks(callbacks, "on_chain_end", state_to_map(state), run_id)
        return state

    async def _super_step(
        self,
        ctx: RunContext,
        callbacks: List[Any],
        state: Any,
        frontier: List[str],
    ):
        config = ctx.config

        for name in frontier:
            if name in config.interrupt_before:
                raise GraphInterrupt(name, state, next_nodes=frontier)

        nodes = []
        for name in frontier:
            node = self.graph.nodes.get(name)
            if node is None:
                raise NodeNotFound(name)
            nodes.append(node)

        log_config = self.graph.logging_config
        if log_config.show_steps:
            log_step(logger, f"Running {step_label(frontier)}")

        # Fan out, then barrier
        tasks = [
            asyncio.ensure_future(self._run_node(ctx, callbacks, node, state))
            for node in nodes
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for name, outcome in zip(frontier, outcomes):
            if isinstance(outcome, NodeInterrupt):
                raise GraphInterrupt(
                    outcome.node or name,
                    state,
                    next_nodes=[name],
                    interrupt_value=outcome.value,
                )
        for name, outcome in zip(frontier, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise ContextCancelled(f"node {name} was cancelled")
            if isinstance(outcome, BaseException):
                if isinstance(outcome, NodeError):
                    raise outcome
                raise NodeError(name, outcome) from outcome

        updates: List[Any] = []
        goto: List[str] = []
        for outcome in outcomes:
            if isinstance(outcome, Command):
                updates.append(outcome.update)
                goto.extend(outcome.goto_nodes())
            else:
                updates.append(outcome)

        state = await self._merge(ctx, state, updates)

        if goto:
            next_frontier = [name for name in _dedupe(goto) if name != END]
            log_verbose(logger, f"Command goto overrides edges: {next_frontier}")
        else:
            next_frontier = await self._next_nodes(ctx, frontier, state)

        for name in frontier:
            if name in config.interrupt_after:
                raise GraphInterrupt(name, state, next_nodes=next_frontier)

        schema = self.schema
        if isinstance(schema, CleaningStateSchema):
            state = schema.cleanup(state)

        label = step_label(frontier)
        if log_config.show_node_transitions:
            log_verbose(logger, f"{label} -> {next_frontier or [END]}")
        if log_config.show_state:
            log_state(logger, state, prefix=f"{label} ")
        await fire_callbacks(callbacks, "on_graph_step", label, state)

        return state, next_frontier

    async def _run_node(self, ctx: RunContext, callbacks: List[Any], node: Node, state: Any) -> Any:
        """Execute one node with the retry policy, reporting it to callbacks as a tool run."""
        config = ctx.config
        node_run_id = generate_run_id()
        await fire_callbacks(
            callbacks,
            "on_tool_start",
            {"name": node.name, "type": "tool"},
            state_to_string(state),
            node_run_id,
            ctx.run_id,
            list(config.tags),
            dict(config.metadata),
        )
        try:
            result = await self._execute_with_retry(ctx, node, state)
        except NodeInterrupt as interrupt:
            interrupt.node = interrupt.node or node.name
            raise
        except Exception as e:
            logger.warning(f"Node {node.name} failed: {e}")
            await fire_callbacks(callbacks, "on_tool_error", e, node_run_id)
            raise
        await fire_callbacks(callbacks, "on_tool_end", state_to_string(result), node_run_id)
        return result

    async def _execute_with_retry(self, ctx: RunContext, node: Node, state: Any) -> Any:
        policy: Optional[RetryPolicy] = self.graph.retry_policy
        if policy is None or policy.max_retries == 0:
            return await node.execute(ctx, state)

        def should_retry(error: BaseException) -> bool:
            if isinstance(error, (NodeInterrupt, GraphInterrupt)):
                return False
            if not isinstance(error, Exception):
                return False
            return policy.is_retryable(error)

        def backoff(retry_state: RetryCallState) -> float:
            return policy.delay(retry_state.attempt_number - 1)

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                f"Retrying node {node.name} (attempt {retry_state.attempt_number + 1}"
                f" of {policy.max_retries + 1}) after error: {error}"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=backoff,
            retry=retry_if_exception(should_retry),
            before_sleep=before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await node.execute(ctx, state)
        return result

    async def _merge(self, ctx: RunContext, state: Any, updates: List[Any]) -> Any:
        """Fold the step's updates into the state. ``None`` updates are skipped."""
        schema = self.schema
        if schema is not None:
            for update in updates:
                if update is None:
                    continue
                state = schema.update(state, update)
            return state
        if self.graph.state_merger is not None:
            return await call_maybe_async(self.graph.state_merger, ctx, state, updates)
        present = [update for update in updates if update is not None]
        return present[-1] if present else state

    async def _next_nodes(self, ctx: RunContext, ran: List[str], state: Any) -> List[str]:
        next_frontier: List[str] = []
        for name in ran:
            condition = self.graph.conditional_edges.get(name)
            if condition is not None:
                try:
                    target = await call_maybe_async(
                        condition, ctx.for_node(self.graph.nodes[name]), state
                    )
                except GraphError:
                    raise
                except Exception as e:
                    raise NodeError(name, e) from e
                if not target:
                    raise ConditionalEmpty(name)
                targets = [target]
            else:
                targets = self.graph.successors(name)
                if not targets:
                    raise NoOutgoingEdge(name)
            for target in targets:
                if target not in next_frontier:
                    next_frontier.append(target)
        return next_frontier
