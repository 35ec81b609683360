"""Store handle that stages a block's operations before committing them."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .errors import BlockInProgressError, NoBlockInProgressError
from .facade import Store
from .interfaces import StoreFacade
from .types import BlockId, Key, Operation, Value, _as_key


@dataclass
class _PendingBlock:
    block_height: BlockId
    operations: List[Operation] = field(default_factory=list)
    intermediate: Dict[bytes, Optional[Value]] = field(default_factory=dict)

    def record(self, operation: Operation) -> None:
        self.intermediate[operation.key] = None if operation.is_delete() else operation.value
        self.operations.append(operation)


class BlockStore(StoreFacade):
    """Buffers operations between :meth:`start_block` and :meth:`end_block`.

    Reads made while a block is staged see its uncommitted changes.
    """

    def __init__(self, inner: Store) -> None:
        self._inner = inner
        self._pending: Optional[_PendingBlock] = None
        self._lock = threading.Lock()

    def inner(self) -> Store:
        """The underlying store."""
        return self._inner

    def _pending_height(self) -> Optional[BlockId]:
        with self._lock:
            return None if self._pending is None else self._pending.block_height

    def _require_idle(self) -> None:
        pending = self._pending_height()
        if pending is not None:
            raise BlockInProgressError(pending)

    def start_block(self, block_height: BlockId) -> None:
        """Begin staging operations for ``block_height``."""
        self._inner.durable_block()
        with self._lock:
            if self._pending is not None:
                raise BlockInProgressError(self._pending.block_height)
            self._pending = _PendingBlock(block_height)

    def stage(self, operation: Operation) -> None:
        """Add an operation to the block being staged."""
        self._inner.durable_block()
        with self._lock:
            if self._pending is None:
                raise NoBlockInProgressError()
            self._pending.record(operation)

    def end_block(self) -> None:
        """Commit the staged block; on failure it stays staged."""
        with self._lock:
            if self._pending is None:
                raise NoBlockInProgressError()
            pending = self._pending
            self._inner.set(pending.block_height, list(pending.operations))
            self._pending = None

    def set(self, block_height: BlockId, operations: Iterable[Operation]) -> None:
        self._require_idle()
        self._inner.set(block_height, operations)

    def get(self, key: Key) -> Value:
        self._inner.durable_block()
        raw = _as_key(key)
        with self._lock:
            if self._pending is not None and raw in self._pending.intermediate:
                staged = self._pending.intermediate[raw]
                return 0 if staged is None else staged
        return self._inner.get(raw)

    def rollback(self, target: BlockId) -> None:
        self._inner.durable_block()
        self._require_idle()
        self._inner.rollback(target)

    def close(self) -> None:
        """Close the underlying store; fails while a block is staged."""
        self._inner.durable_block()
        self._require_idle()
        self._inner.close()

    def current_block(self) -> BlockId:
        """Last committed block; a staged block does not count."""
        return self._inner.current_block()

    def applied_block(self) -> BlockId:
        return self._inner.orchestrator().applied_block_height()

    def durable_block(self) -> BlockId:
        return self._inner.durable_block()

    def ensure_healthy(self) -> None:
        self._inner.ensure_healthy()