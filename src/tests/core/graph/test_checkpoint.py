"""Tests for checkpointing.

This module tests:
- Memory and file checkpoint stores
- Automatic per-step checkpoints and pruning
- get_state / update_state and resuming (human in the loop)
- Manual checkpoint management
"""

import asyncio
import json
from pathlib import Path

import pytest

from stepgraph.core.graph import (
    END,
    Checkpoint,
    CheckpointableRunnable,
    CheckpointConfig,
    CheckpointNotFound,
    CheckpointStoreError,
    FileCheckpointStore,
    GraphInterrupt,
    MapSchema,
    MemoryCheckpointStore,
    StateGraph,
    overwrite_reducer,
)
from tests.core.graph.helpers import returning, sum_reducer


@pytest.fixture
def ab_graph(count_schema: MapSchema) -> StateGraph:
    """A adds 1 and B adds 10 to ``count``."""
    graph = StateGraph()
    graph.set_schema(count_schema)
    graph.add_node("A", returning({"count": 1}))
    graph.add_node("B", returning({"count": 10}))
    graph.chain(["A", "B"])
    graph.add_edge("B", END)
    return graph


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path: Path):
    """Each store implementation, fresh for every test."""
    if request.param == "memory":
        return MemoryCheckpointStore()
    return FileCheckpointStore(tmp_path / "checkpoints.jsonl")


def make_checkpoint(thread_id: str, version: int, **fields) -> Checkpoint:
    return Checkpoint(
        node_name=fields.pop("node_name", "A"),
        state=fields.pop("state", {"count": version}),
        metadata={"thread_id": thread_id, **fields},
        version=version,
    )


class TestCheckpointStores:
    """Test suite shared by every store implementation."""

    async def test_save_and_load(self, store):
        checkpoint = make_checkpoint("t1", 1)
        await store.save(checkpoint)

        loaded = await store.load(checkpoint.id)
        assert loaded.id == checkpoint.id
        assert loaded.state == {"count": 1}
        assert loaded.thread_id == "t1"

    async def test_load_missing(self, store):
        with pytest.raises(CheckpointNotFound):
            await store.load("missing")

    async def test_list_filters_and_orders(self, store):
        await store.save(make_checkpoint("t1", 2))
        await store.save(make_checkpoint("t2", 1))
        await store.save(make_checkpoint("t1", 1))

        listed = await store.list("t1")
        assert [cp.version for cp in listed] == [1, 2]
        assert await store.list("unknown") == []

    async def test_delete(self, store):
        keep = make_checkpoint("t1", 1)
        drop = make_checkpoint("t1", 2)
        await store.save(keep)
        await store.save(drop)

        await store.delete(drop.id)

        assert [cp.id for cp in await store.list("t1")] == [keep.id]
        await store.delete("missing")

    async def test_clear(self, store):
        await store.save(make_checkpoint("t1", 1))
        await store.save(make_checkpoint("t2", 1))

        await store.clear("t1")

        assert await store.list("t1") == []
        assert len(await store.list("t2")) == 1


class TestFileCheckpointStore:
    """Test suite for the JSON-lines store."""

    async def test_one_json_document_per_line(self, tmp_path: Path):
        path = tmp_path / "checkpoints.jsonl"
        store = FileCheckpointStore(path)
        await store.save(make_checkpoint("t1", 1))
        await store.save(make_checkpoint("t1", 2))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[1])["version"] == 2

    async def test_unserializable_state(self, tmp_path: Path):
        store = FileCheckpointStore(tmp_path / "checkpoints.jsonl")
        with pytest.raises(CheckpointStoreError):
            await store.save(make_checkpoint("t1", 1, state={"value": object()}))

    async def test_corrupt_file(self, tmp_path: Path):
        path = tmp_path / "checkpoints.jsonl"
        path.write_text("not json\n")
        with pytest.raises(CheckpointStoreError):
            await FileCheckpointStore(path).list("t1")

    async def test_missing_file_is_empty(self, tmp_path: Path):
        assert await FileCheckpointStore(tmp_path / "none.jsonl").list("t1") == []

    async def test_concurrent_saves(self, tmp_path: Path):
        store = FileCheckpointStore(tmp_path / "checkpoints.jsonl")

        await asyncio.gather(*(store.save(make_checkpoint("t1", version)) for version in range(1, 6)))

        assert [cp.version for cp in await store.list("t1")] == [1, 2, 3, 4, 5]


class TestAutoSave:
    """Test suite for automatic per-step checkpoints."""

    async def test_checkpoint_per_step(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}}

        assert await runnable.invoke({"count": 0}, config) == {"count": 11}

        checkpoints = await runnable.list_checkpoints("t1")
        assert [cp.version for cp in checkpoints] == [1, 2]
        assert [cp.state for cp in checkpoints] == [{"count": 1}, {"count": 11}]
        assert [cp.node_name for cp in checkpoints] == ["step:[A]", "step:[B]"]
        assert all(cp.metadata["source"] == "step" for cp in checkpoints)
        assert checkpoints[1].metadata["parent_id"] == checkpoints[0].id

    async def test_execution_id_is_default_thread(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        await runnable.invoke({"count": 0})

        checkpoints = await runnable.list_checkpoints()
        assert len(checkpoints) == 2
        assert checkpoints[0].thread_id == runnable.execution_id

    async def test_auto_save_disabled(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable(CheckpointConfig(auto_save=False))
        await runnable.invoke({"count": 0})
        assert await runnable.list_checkpoints() == []

    async def test_max_checkpoints(self, linear_graph: StateGraph):
        runnable = linear_graph.compile_checkpointable(CheckpointConfig(max_checkpoints=2))
        await runnable.invoke({"count": 0})

        checkpoints = await runnable.list_checkpoints()
        assert [cp.version for cp in checkpoints] == [2, 3]

    async def test_file_store(self, ab_graph: StateGraph, tmp_path: Path):
        store = FileCheckpointStore(tmp_path / "run.jsonl")
        runnable = ab_graph.compile_checkpointable(CheckpointConfig(store=store))
        await runnable.invoke({"count": 0}, {"configurable": {"thread_id": "t1"}})

        snapshot = await runnable.get_state({"configurable": {"thread_id": "t1"}})
        assert snapshot.values == {"count": 11}


class TestHumanInTheLoop:
    """Test suite for get_state, update_state and resume."""

    async def test_interrupt_update_resume(self, ab_graph: StateGraph):
        """Pause before B, add 50 by hand, then resume B from the edited state."""
        runnable = ab_graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}, "interrupt_before": ["B"]}

        with pytest.raises(GraphInterrupt) as exc_info:
            await runnable.invoke({"count": 0}, config)
        assert exc_info.value.node == "B"
        assert exc_info.value.state == {"count": 1}

        edited = await runnable.update_state(config, {"count": 50}, "human")
        assert edited.checkpoint_id

        result = await runnable.invoke(
            None,
            {"configurable": edited.configurable, "resume_from": ["B"]},
        )
        assert result == {"count": 61}

    async def test_get_state_after_interrupt(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}, "interrupt_before": ["B"]}
        with pytest.raises(GraphInterrupt):
            await runnable.invoke({"count": 0}, config)

        snapshot = await runnable.get_state(config)

        assert snapshot.values == {"count": 1}
        assert snapshot.next == ["B"]
        assert snapshot.metadata["source"] == "interrupt"
        assert snapshot.config.thread_id == "t1"
        assert snapshot.parent_id is not None
        assert snapshot.created_at is not None

    async def test_update_state_records_author(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}}
        await runnable.invoke({"count": 0}, config)

        edited = await runnable.update_state(config, {"count": 5}, "human")
        snapshot = await runnable.get_state(edited)

        assert snapshot.values == {"count": 16}
        assert snapshot.metadata["source"] == "update_state"
        assert snapshot.metadata["updated_by"] == "human"
        assert (await runnable.load_checkpoint(edited.checkpoint_id)).version == 3

    async def test_update_state_empty_thread(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        edited = await runnable.update_state({"configurable": {"thread_id": "new"}}, {"count": 2}, "human")

        snapshot = await runnable.get_state(edited)
        assert snapshot.values == {"count": 2}

    async def test_update_state_without_schema(self):
        graph = StateGraph()
        graph.add_node("A", returning({"a": 1}))
        graph.add_edge("A", END)
        graph.set_entry_point("A")
        runnable = graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}}
        await runnable.invoke({}, config)

        edited = await runnable.update_state(config, {"b": 2}, "human")
        assert (await runnable.get_state(edited)).values == {"a": 1, "b": 2}

    async def test_get_state_empty_thread(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        snapshot = await runnable.get_state({"configurable": {"thread_id": "nothing"}})
        assert snapshot.values is None
        assert snapshot.next == []

    async def test_resume_from_checkpoint(self, ab_graph: StateGraph):
        """Resuming without naming nodes uses the ones recorded at the interrupt."""
        runnable = ab_graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}, "interrupt_before": ["B"]}
        with pytest.raises(GraphInterrupt):
            await runnable.invoke({"count": 0}, config)
        snapshot = await runnable.get_state(config)

        result = await runnable.resume_from_checkpoint(snapshot.config.checkpoint_id)
        assert result == {"count": 11}

    async def test_interrupt_after_drops_ephemeral_keys(self):
        """A resumed run never sees the ephemeral keys of the step that paused."""
        schema = (
            MapSchema()
            .register_channel("temp", overwrite_reducer, ephemeral=True)
            .register_reducer("count", sum_reducer)
        )

        async def b(ctx, state):
            return {"count": 100} if "temp" in state else {"count": 10}

        graph = StateGraph()
        graph.set_schema(schema)
        graph.add_node("A", returning({"temp": 1, "count": 1}))
        graph.add_node("B", b)
        graph.chain(["A", "B"])
        graph.add_edge("B", END)
        runnable = graph.compile_checkpointable()
        config = {"configurable": {"thread_id": "t1"}, "interrupt_after": ["A"]}

        with pytest.raises(GraphInterrupt):
            await runnable.invoke({"count": 0}, config)

        snapshot = await runnable.get_state(config)
        assert snapshot.values == {"count": 1}
        assert snapshot.next == ["B"]

        result = await runnable.resume_from_checkpoint(snapshot.config.checkpoint_id)
        assert result == {"count": 11}

    async def test_resume_without_next_returns_state(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        checkpoint = await runnable.save_checkpoint("manual", {"count": 7})
        assert await runnable.resume_from_checkpoint(checkpoint.id) == {"count": 7}

    async def test_resume_from_unknown_checkpoint(self, ab_graph: StateGraph):
        runnable = ab_graph.compile_checkpointable()
        with pytest.raises(CheckpointNotFound):
            await runnable.invoke(None, {"configurable": {"checkpoint_id": "nope"}, "resume_from": ["B"]})


class TestManualCheckpoints:
    """Test suite for manual checkpoint management."""

    async def test_save_list_clear(self, ab_graph: StateGraph):
        runnable: CheckpointableRunnable = ab_graph.compile_checkpointable()
        first = await runnable.save_checkpoint("A", {"count": 1})
        second = await runnable.save_checkpoint("B", {"count": 2})

        assert second.version == first.version + 1
        assert second.metadata["source"] == "manual"
        assert [cp.id for cp in await runnable.list_checkpoints()] == [first.id, second.id]

        await runnable.clear_checkpoints()
        assert await runnable.list_checkpoints() == []
