"""Checkpointing and human-in-the-loop state editing.

A CheckpointableRunnable wraps a CompiledGraph and snapshots the state after
every super-step into a CheckpointStore. Snapshots are grouped by thread
(``config.configurable["thread_id"]``) and ordered by a per-thread version.
Between invocations the caller can inspect a thread with ``get_state``, edit
it with ``update_state`` and resume from any checkpoint:

    ```python
    runnable = graph.compile_checkpointable()
    config = {"configurable": {"thread_id": "t-1"}, "interrupt_before": ["review"]}
    try:
        await runnable.invoke({"count": 0}, config)
    except GraphInterrupt:
        edited = await runnable.update_state(config, {"count": 50}, "human")
        await runnable.invoke(None, {
            "configurable": edited.configurable,
            "resume_from": ["review"],
        })
    ```
"""

import asyncio
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from stepgraph.core.graph.callbacks import GraphCallbackHandler
from stepgraph.core.graph.config import RunnableConfig, ensure_config
from stepgraph.core.graph.errors import CheckpointNotFound, CheckpointStoreError, GraphInterrupt
from stepgraph.core.graph.executor import CompiledGraph
from stepgraph.core.graph.state import CleaningStateSchema
from stepgraph.core.logging import LogComponent, get_logger, log_verbose

logger = get_logger(LogComponent.CHECKPOINT)


def generate_checkpoint_id() -> str:
    return f"checkpoint_{uuid.uuid4().hex}"


def generate_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"


class Checkpoint(BaseModel):
    """An immutable snapshot of the graph state.

    Attributes:
        id: Unique checkpoint id
        node_name: Step label or node that produced the state
        state: The state value
        metadata: ``thread_id``, ``source`` and source-specific keys
        timestamp: When the snapshot was taken
        version: Monotonic version within the thread
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str = Field(default_factory=generate_checkpoint_id)
    node_name: str = ""
    state: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)
    version: int = 1

    @property
    def thread_id(self) -> Optional[str]:
        return self.metadata.get("thread_id")


def _by_version(checkpoints: List[Checkpoint]) -> List[Checkpoint]:
    return sorted(checkpoints, key=lambda cp: (cp.version, cp.timestamp))


class CheckpointStore(ABC):
    """Persistence backend for checkpoints."""

    @abstractmethod
    async def save(self, checkpoint: Checkpoint) -> None:
        pass

    @abstractmethod
    async def load(self, checkpoint_id: str) -> Checkpoint:
        """Raises CheckpointNotFound for an unknown id."""
        pass

    @abstractmethod
    async def list(self, thread_id: str) -> List[Checkpoint]:
        """Checkpoints of a thread, ordered by ascending version."""
        pass

    @abstractmethod
    async def delete(self, checkpoint_id: str) -> None:
        pass

    @abstractmethod
    async def clear(self, thread_id: str) -> None:
        pass


class MemoryCheckpointStore(CheckpointStore):
    """Checkpoints kept in a dict for the life of the process."""

    def __init__(self) -> None:
        self._checkpoints: Dict[str, Checkpoint] = {}
        self._lock = threading.Lock()

    async def save(self, checkpoint: Checkpoint) -> None:
        with self._lock:
            self._checkpoints[checkpoint.id] = checkpoint

    async def load(self, checkpoint_id: str) -> Checkpoint:
        with self._lock:
            checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFound(checkpoint_id)
        return checkpoint

    async def list(self, thread_id: str) -> List[Checkpoint]:
        with self._lock:
            found = [cp for cp in self._checkpoints.values() if cp.thread_id == thread_id]
        return _by_version(found)

    async def delete(self, checkpoint_id: str) -> None:
        with self._lock:
            self._checkpoints.pop(checkpoint_id, None)

    async def clear(self, thread_id: str) -> None:
        with self._lock:
            for checkpoint_id in [
                cp.id for cp in self._checkpoints.values() if cp.thread_id == thread_id
            ]:
                del self._checkpoints[checkpoint_id]


class FileCheckpointStore(CheckpointStore):
    """Checkpoints stored one JSON document per line in a single file.

    States must be JSON-serializable. Deleting rewrites the file, and every
    ``load`` or ``list`` re-reads it, so the store suits modest thread sizes.
    File access runs in a worker thread to keep the event loop free.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read_all(self) -> List[Checkpoint]:
        if not self.path.exists():
            return []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
            return [Checkpoint.model_validate_json(line) for line in lines if line.strip()]
        except (OSError, ValueError) as e:
            raise CheckpointStoreError(f"failed to read checkpoints from {self.path}: {e}") from e

    def _write_all(self, checkpoints: List[Checkpoint]) -> None:
        try:
            content = "".join(cp.model_dump_json() + "\n" for cp in checkpoints)
            self.path.write_text(content, encoding="utf-8")
        except (OSError, ValueError) as e:
            raise CheckpointStoreError(f"failed to write checkpoints to {self.path}: {e}") from e

    def _append(self, checkpoint: Checkpoint) -> None:
        with self._lock:
            try:
                line = checkpoint.model_dump_json()
            except (TypeError, ValueError) as e:
                raise CheckpointStoreError(f"failed to serialize checkpoint {checkpoint.id}: {e}") from e
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                raise CheckpointStoreError(f"failed to write checkpoint {checkpoint.id}: {e}") from e

    def _remove(self, keep: Callable[[Checkpoint], bool]) -> None:
        with self._lock:
            checkpoints = self._read_all()
            kept = [cp for cp in checkpoints if keep(cp)]
            if len(kept) != len(checkpoints):
                self._write_all(kept)

    def _snapshot(self) -> List[Checkpoint]:
        with self._lock:
            return self._read_all()

    async def save(self, checkpoint: Checkpoint) -> None:
        await asyncio.to_thread(self._append, checkpoint)

    async def load(self, checkpoint_id: str) -> Checkpoint:
        checkpoints = await asyncio.to_thread(self._snapshot)
        # Later lines win when an id was saved twice
        for checkpoint in reversed(checkpoints):
            if checkpoint.id == checkpoint_id:
                return checkpoint
        raise CheckpointNotFound(checkpoint_id)

    async def list(self, thread_id: str) -> List[Checkpoint]:
        checkpoints = await asyncio.to_thread(self._snapshot)
        latest: Dict[str, Checkpoint] = {}
        for checkpoint in checkpoints:
            if checkpoint.thread_id == thread_id:
                latest[checkpoint.id] = checkpoint
        return _by_version(list(latest.values()))

    async def delete(self, checkpoint_id: str) -> None:
        await asyncio.to_thread(self._remove, lambda cp: cp.id != checkpoint_id)

    async def clear(self, thread_id: str) -> None:
        await asyncio.to_thread(self._remove, lambda cp: cp.thread_id != thread_id)


class CheckpointConfig(BaseModel):
    """Checkpointing behaviour.

    Attributes:
        store: Where checkpoints are persisted
        auto_save: Save a checkpoint after every super-step
        max_checkpoints: Keep at most this many checkpoints per thread
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    store: CheckpointStore = Field(default_factory=MemoryCheckpointStore)
    auto_save: bool = Field(default=True)
    max_checkpoints: Optional[int] = Field(default=None, gt=0)


async def _latest(store: CheckpointStore, thread_id: str) -> Optional[Checkpoint]:
    checkpoints = await store.list(thread_id)
    return checkpoints[-1] if checkpoints else None


async def _save_next(
    store: CheckpointStore,
    thread_id: str,
    node_name: str,
    state: Any,
    **metadata: Any,
) -> Checkpoint:
    """Save ``state`` as the next version of ``thread_id``."""
    latest = await _latest(store, thread_id)
    checkpoint = Checkpoint(
        node_name=node_name,
        state=state,
        metadata={
            "thread_id": thread_id,
            "parent_id": latest.id if latest else None,
            **metadata,
        },
        version=latest.version + 1 if latest else 1,
    )
    await store.save(checkpoint)
    log_verbose(
        logger,
        f"Saved checkpoint {checkpoint.id} (thread {thread_id}, v{checkpoint.version}, "
        f"source {metadata.get('source')})",
    )
    return checkpoint


async def _prune(store: CheckpointStore, thread_id: str, limit: Optional[int]) -> None:
    if not limit:
        return
    checkpoints = await store.list(thread_id)
    for checkpoint in checkpoints[:-limit]:
        await store.delete(checkpoint.id)


class CheckpointListener(GraphCallbackHandler):
    """Saves a checkpoint every time a super-step completes."""

    def __init__(self, config: CheckpointConfig, thread_id: str) -> None:
        self.config = config
        self.thread_id = thread_id

    async def on_graph_step(self, step_node: str, state: Any) -> None:
        if not self.config.auto_save:
            return
        await _save_next(self.config.store, self.thread_id, step_node, state, source="step")
        await _prune(self.config.store, self.thread_id, self.config.max_checkpoints)


class StateSnapshot(BaseModel):
    """The state of a thread at one checkpoint.

    Attributes:
        values: The checkpointed state (None when the thread has none)
        next: Nodes that would run on resume, when recorded
        config: Config addressing this checkpoint
        metadata: The checkpoint's metadata
        created_at: When the checkpoint was taken
        parent_id: Id of the checkpoint this one follows
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    values: Any = None
    next: List[str] = Field(default_factory=list)
    config: RunnableConfig = Field(default_factory=RunnableConfig)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    parent_id: Optional[str] = None


class CheckpointableRunnable:
    """Wraps a CompiledGraph with automatic checkpoints and state editing."""

    def __init__(self, runnable: CompiledGraph, config: Optional[CheckpointConfig] = None) -> None:
        self.runnable = runnable
        self.config = config or CheckpointConfig()
        self.execution_id = generate_execution_id()

    @property
    def store(self) -> CheckpointStore:
        return self.config.store

    def set_checkpoint_config(self, config: CheckpointConfig) -> None:
        self.config = config

    def get_checkpoint_config(self) -> CheckpointConfig:
        return self.config

    def _thread_id(self, config: Optional[RunnableConfig]) -> str:
        if config is not None and config.thread_id:
            return config.thread_id
        return self.execution_id

    async def invoke(self, state: Any = None, config: Union[RunnableConfig, Dict[str, Any], None] = None) -> Any:
        return await self.invoke_with_config(state, config)

    async def invoke_with_config(
        self,
        state: Any = None,
        config: Union[RunnableConfig, Dict[str, Any], None] = None,
    ) -> Any:
        """Run the graph, checkpointing every super-step.

        When the config names both a ``checkpoint_id`` and ``resume_from``
        nodes, the run starts from that checkpoint's state. An interrupted run
        is checkpointed with the nodes that would run on resume.

        Raises:
            CheckpointNotFound: If the checkpoint to resume from is unknown
            GraphInterrupt: When execution pauses
        """
        config = ensure_config(config)
        thread_id = self._thread_id(config)

        if config.checkpoint_id and config.resume_from:
            checkpoint = await self.store.load(config.checkpoint_id)
            state = checkpoint.state
            logger.info(
                f"Resuming thread {thread_id} from checkpoint {checkpoint.id} at {config.resume_from}"
            )

        listener = CheckpointListener(self.config, thread_id)
        run_config = config.model_copy(update={"callbacks": list(config.callbacks) + [listener]})
        try:
            return await self.runnable.invoke_with_config(state, run_config)
        except GraphInterrupt as interrupt:
            if self.config.auto_save:
                # Ephemeral keys written by the interrupted step must not reach the resumed frontier
                saved_state = interrupt.state
                schema = self.runnable.schema
                if isinstance(schema, CleaningStateSchema):
                    saved_state = schema.cleanup(saved_state)
                await _save_next(
                    self.store,
                    thread_id,
                    interrupt.node,
                    saved_state,
                    source="interrupt",
                    next=list(interrupt.next_nodes),
                )
            raise

    async def get_state(self, config: Union[RunnableConfig, Dict[str, Any], None] = None) -> StateSnapshot:
        """Snapshot of the requested checkpoint, or the latest one in the thread."""
        config = ensure_config(config)
        thread_id = self._thread_id(config)

        if config.checkpoint_id:
            checkpoint = await self.store.load(config.checkpoint_id)
        else:
            checkpoint = await _latest(self.store, thread_id)

        if checkpoint is None:
            return StateSnapshot(values=None, config=config)

        return StateSnapshot(
            values=checkpoint.state,
            next=list(checkpoint.metadata.get("next") or []),
            config=RunnableConfig(
                configurable={"thread_id": thread_id, "checkpoint_id": checkpoint.id}
            ),
            metadata=dict(checkpoint.metadata),
            created_at=checkpoint.timestamp,
            parent_id=checkpoint.metadata.get("parent_id"),
        )

    async def update_state(
        self,
        config: Union[RunnableConfig, Dict[str, Any], None],
        values: Any,
        as_node: str,
    ) -> RunnableConfig:
        """Merge ``values`` into the thread's latest state as a new checkpoint.

        The graph's schema merges the values when there is one; otherwise two
        mappings are shallow-merged and anything else replaces the state.

        Returns:
            Config addressing the new checkpoint
        """
        config = ensure_config(config)
        thread_id = self._thread_id(config)
        schema = self.runnable.schema

        latest = await _latest(self.store, thread_id)
        current = latest.state if latest is not None else None

        if schema is not None:
            base = current if current is not None else schema.init()
            new_state = schema.update(base, values)
        elif isinstance(current, dict) and isinstance(values, dict):
            new_state = {**current, **values}
        else:
            new_state = values

        metadata: Dict[str, Any] = {"source": "update_state", "updated_by": as_node}
        if latest is not None and latest.metadata.get("next"):
            metadata["next"] = list(latest.metadata["next"])
        checkpoint = await _save_next(self.store, thread_id, as_node, new_state, **metadata)

        return RunnableConfig(
            configurable={"thread_id": thread_id, "checkpoint_id": checkpoint.id}
        )

    async def save_checkpoint(self, node_name: str, state: Any, thread_id: Optional[str] = None) -> Checkpoint:
        """Manually checkpoint ``state`` in a thread (this runnable's own by default)."""
        return await _save_next(
            self.store, thread_id or self.execution_id, node_name, state, source="manual"
        )

    async def load_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        return await self.store.load(checkpoint_id)

    async def list_checkpoints(self, thread_id: Optional[str] = None) -> List[Checkpoint]:
        return await self.store.list(thread_id or self.execution_id)

    async def clear_checkpoints(self, thread_id: Optional[str] = None) -> None:
        await self.store.clear(thread_id or self.execution_id)

    async def resume_from_checkpoint(
        self,
        checkpoint_id: str,
        resume_from: Optional[List[str]] = None,
        config: Union[RunnableConfig, Dict[str, Any], None] = None,
    ) -> Any:
        """Continue a run from a checkpoint.

        ``resume_from`` defaults to the nodes recorded with the checkpoint.
        With nothing to run, the checkpointed state is returned as is.
        """
        checkpoint = await self.store.load(checkpoint_id)
        nodes = list(resume_from or checkpoint.metadata.get("next") or [])
        if not nodes:
            return checkpoint.state

        config = ensure_config(config)
        configurable = dict(config.configurable)
        configurable["checkpoint_id"] = checkpoint.id
        if checkpoint.thread_id and "thread_id" not in configurable:
            configurable["thread_id"] = checkpoint.thread_id
        return await self.invoke_with_config(
            None,
            config.model_copy(update={"configurable": configurable, "resume_from": nodes}),
        )
