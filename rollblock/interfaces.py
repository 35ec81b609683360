"""Abstract collaborators of the store and the small records they exchange."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .types import BlockId, BlockUndo, JournalMeta, Key, Operation, Value


class DurabilityKind(enum.Enum):
    SYNCHRONOUS = "synchronous"
    ASYNC = "async"


@dataclass(frozen=True)
class DurabilityMode:
    """How committed blocks are persisted: immediately, or in the background."""

    kind: DurabilityKind
    max_pending_blocks: Optional[int] = None

    def __post_init__(self) -> None:
        kind = DurabilityKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind is DurabilityKind.ASYNC:
            if self.max_pending_blocks is None:
                raise ValueError("asynchronous durability needs max_pending_blocks")
            if self.max_pending_blocks < 0:
                raise ValueError("max_pending_blocks must not be negative")
        elif self.max_pending_blocks is not None:
            raise ValueError("synchronous durability takes no max_pending_blocks")

    @classmethod
    def synchronous(cls) -> "DurabilityMode":
        return cls(DurabilityKind.SYNCHRONOUS)

    @classmethod
    def asynchronous(cls, max_pending_blocks: int) -> "DurabilityMode":
        return cls(DurabilityKind.ASYNC, max_pending_blocks)

    def is_async(self) -> bool:
        return self.kind is DurabilityKind.ASYNC


@dataclass(frozen=True)
class ShardLayout:
    shards_count: int
    initial_capacity: int


@dataclass
class JournalBlock:
    """One decoded journal entry."""

    block_height: BlockId
    operations: List[Operation] = field(default_factory=list)
    undo: BlockUndo = field(default_factory=BlockUndo)


class BlockOrchestrator(ABC):
    """Applies, reverts and serves blocks of operations."""

    # Orchestrators that collect metrics assign their collector here.
    _metrics = None

    @abstractmethod
    def apply_operations(self, block_height: BlockId, operations: List[Operation]) -> None: ...

    @abstractmethod
    def revert_to(self, block: BlockId) -> None: ...

    @abstractmethod
    def fetch(self, key: Key) -> Value: ...

    def metrics(self):
        """Runtime metrics, or None when the orchestrator keeps none."""
        return self._metrics

    @abstractmethod
    def current_block(self) -> BlockId: ...

    @abstractmethod
    def applied_block_height(self) -> BlockId: ...

    @abstractmethod
    def durable_block_height(self) -> BlockId: ...

    @abstractmethod
    def shutdown(self) -> None: ...

    @abstractmethod
    def ensure_healthy(self) -> None: ...


class MetadataStore(ABC):
    """Persists the current block and the journal offset of every block."""

    @abstractmethod
    def current_block(self) -> BlockId: ...

    @abstractmethod
    def set_current_block(self, block: BlockId) -> None: ...

    @abstractmethod
    def put_journal_offset(self, block: BlockId, meta: JournalMeta) -> None: ...

    @abstractmethod
    def get_journal_offsets(self, start: BlockId, end: BlockId) -> List[JournalMeta]:
        """Offsets of the blocks in the inclusive range ``start..=end``."""

    @abstractmethod
    def last_journal_offset_at_or_before(self, block: BlockId) -> Optional[JournalMeta]: ...

    @abstractmethod
    def remove_journal_offsets_after(self, block: BlockId) -> None: ...

    def record_block_commit(self, block: BlockId, meta: JournalMeta) -> None:
        """Record a block's journal offset and make it the current block."""
        self.put_journal_offset(block, meta)
        self.set_current_block(block)


class BlockJournal(ABC):
    """Append-only log of committed blocks with their undo information."""

    @abstractmethod
    def append(
        self, block: BlockId, undo: BlockUndo, operations: Sequence[Operation]
    ) -> JournalMeta: ...

    @abstractmethod
    def iter_backwards(self, from_block: BlockId, to_block: BlockId) -> Iterator[JournalBlock]: ...

    @abstractmethod
    def read_entry(self, meta: JournalMeta) -> JournalBlock: ...

    @abstractmethod
    def list_entries(self) -> List[JournalMeta]:
        """Entries recorded in the journal index."""

    @abstractmethod
    def truncate_after(self, block: BlockId) -> None: ...

    def rewrite_index(self, metas: Sequence[JournalMeta]) -> None:
        """Replace the journal index.

        Journals without a separate index keep nothing, but the entries must
        still be in strictly increasing block order.
        """
        heights = [meta.block_height for meta in metas]
        for previous, current in zip(heights, heights[1:]):
            if current <= previous:
                raise ValueError(
                    f"journal index entries out of order: {previous} then {current}"
                )

    def scan_entries(self) -> List[JournalMeta]:
        """Entries found by scanning the journal data; none for journals that cannot scan."""
        return []


class Snapshotter(ABC):
    """Writes and restores full copies of the shard state."""

    @abstractmethod
    def create_snapshot(self, block: BlockId, shards) -> Path: ...

    @abstractmethod
    def snapshots_desc(self) -> List[Tuple[Path, BlockId]]:
        """Known snapshots, newest block first."""

    @abstractmethod
    def load_snapshot(self, path: Path, shards) -> BlockId:
        """Load a snapshot into ``shards`` and return the block it captured."""


class ReplayEngine(ABC):
    """State engine that can re-apply journaled blocks during recovery."""

    @abstractmethod
    def apply_replayed_block(
        self, block_height: BlockId, operations: Sequence[Operation], undo: BlockUndo
    ) -> None: ...


class StoreFacade(ABC):
    """Main interface for reading, writing and rolling back store state."""

    @abstractmethod
    def set(self, block_height: BlockId, operations: List[Operation]) -> None:
        """Apply operations at a block height greater than the current one."""

    @abstractmethod
    def rollback(self, target: BlockId) -> None:
        """Revert the state to ``target``, which must not be ahead of the current block."""

    @abstractmethod
    def get(self, key: Key) -> Value:
        """Value stored for ``key``, or 0 when the key is absent."""

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def current_block(self) -> BlockId: ...

    @abstractmethod
    def applied_block(self) -> BlockId: ...

    @abstractmethod
    def durable_block(self) -> BlockId: ...

    @abstractmethod
    def ensure_healthy(self) -> None: ...

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()