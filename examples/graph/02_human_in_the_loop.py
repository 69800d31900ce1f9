"""
Human-in-the-Loop Example

This example demonstrates:
1. Pausing a checkpointed run before a node with interrupt_before
2. Inspecting the paused thread with get_state
3. Editing the state by hand with update_state
4. Resuming from the edited checkpoint
"""

import asyncio
from typing import Any, Dict

from stepgraph.core.graph import END, GraphInterrupt, MapSchema, RunContext, StateGraph
from stepgraph.core.logging import LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.CHECKPOINT)


def add(current: Any, new: Any) -> Any:
    return (current or 0) + new


async def draft(ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
    return {"budget": 1, "draft": "Spend one unit on research."}


async def execute(ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
    return {"budget": 10, "status": f"executed with budget {state['budget']}"}


async def main():
    configure_logging(default_level=LogLevel.INFO)
    graph = StateGraph()
    graph.set_schema(MapSchema().register_reducer("budget", add))
    graph.add_node("draft", draft)
    graph.add_node("execute", execute)
    graph.chain(["draft", "execute"])
    graph.add_edge("execute", END)

    runnable = graph.compile_checkpointable()
    config = {"configurable": {"thread_id": "demo"}, "interrupt_before": ["execute"]}

    try:
        await runnable.invoke({"budget": 0}, config)
    except GraphInterrupt as paused:
        logger.info(f"Paused before {paused.node} with state {paused.state}")

    snapshot = await runnable.get_state(config)
    logger.info(f"Next nodes: {snapshot.next}")

    # A reviewer raises the budget before approving
    edited = await runnable.update_state(config, {"budget": 50}, "reviewer")
    final_state = await runnable.invoke(
        None,
        {"configurable": edited.configurable, "resume_from": snapshot.next},
    )
    print(final_state)

    for checkpoint in await runnable.list_checkpoints("demo"):
        logger.info(f"v{checkpoint.version} {checkpoint.metadata['source']}: {checkpoint.state}")

if __name__ == "__main__":
    asyncio.run(main())
