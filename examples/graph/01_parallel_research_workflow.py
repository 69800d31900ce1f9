"""
Parallel Research Workflow Example

This example demonstrates:
1. Fan-out: one planning node feeding two researchers in the same super-step
2. An append reducer collecting the researchers' notes
3. A conditional edge that loops back until enough notes exist
4. Streaming the full state after every super-step
"""

import asyncio
from typing import Any, Dict

from stepgraph.core.graph import (
    END,
    MapSchema,
    RunContext,
    StateGraph,
    StreamConfig,
    StreamMode,
    append_reducer,
)
from stepgraph.core.logging import LogComponent, LogLevel, configure_logging, get_logger

logger = get_logger(LogComponent.GRAPH)

###################################################################
# Nodes
###################################################################

async def plan(ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
    round_number = state.get("round", 0) + 1
    return {"round": round_number, "notes": [f"plan for round {round_number}"]}


async def search_web(ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
    await ctx.progress(stage="searching")
    await asyncio.sleep(0.1)
    return {"notes": [f"web result {state['round']}"]}


async def search_papers(ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
    await asyncio.sleep(0.1)
    return {"notes": [f"paper result {state['round']}"]}


async def review(ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
    return {"reviewed": len(state["notes"])}


def enough_notes(ctx: RunContext, state: Dict[str, Any]) -> str:
    return END if state["reviewed"] >= 6 else "plan"

###################################################################
# Workflow
###################################################################

def build_graph() -> StateGraph:
    graph = StateGraph()
    graph.set_schema(MapSchema().register_reducer("notes", append_reducer))

    graph.add_node("plan", plan)
    graph.add_node("search_web", search_web)
    graph.add_node("search_papers", search_papers)
    graph.add_node("review", review)

    graph.add_edge("plan", "search_web")
    graph.add_edge("plan", "search_papers")
    graph.add_edge("search_web", "review")
    graph.add_edge("search_papers", "review")
    graph.add_conditional_edge("review", enough_notes, targets=["plan", END])
    graph.set_entry_point("plan")
    return graph


async def main():
    configure_logging(default_level=LogLevel.INFO)
    graph = build_graph()
    print(graph.compile().get_graph().render_mermaid())

    runnable = graph.compile_streaming(StreamConfig(mode=StreamMode.VALUES))
    stream = runnable.stream({"notes": []})
    async for event in stream.events:
        logger.info(f"{event.node_name}: {len(event.state['notes'])} notes")

    final_state = await stream.final()
    for note in final_state["notes"]:
        print(f"- {note}")

if __name__ == "__main__":
    asyncio.run(main())
