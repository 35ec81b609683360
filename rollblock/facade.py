"""The main store handle, delegating to a block orchestrator."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List

from .interfaces import BlockOrchestrator, StoreFacade
from .types import BlockId, Key, Operation, Value

_log = logging.getLogger(__name__)


@dataclass
class _Lifecycle:
    """Shutdown state shared by a store handle and all of its clones."""

    handle_count: int = 1
    shut_down: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


class Store(StoreFacade):
    """Thread-safe store handle.

    Handles made with :meth:`clone` share one orchestrator. The orchestrator is
    shut down by an explicit :meth:`close`, or when the last handle is
    released with :meth:`release`, whichever happens first, and only once.
    """

    def __init__(self, orchestrator: BlockOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._lifecycle = _Lifecycle()
        self._released = False

    def orchestrator(self) -> BlockOrchestrator:
        """The orchestrator behind this store."""
        return self._orchestrator

    def metrics(self):
        """Runtime metrics of the store, or None when none are kept."""
        return self._orchestrator.metrics()

    def health(self):
        """Health status derived from the metrics, or None without metrics."""
        metrics = self._orchestrator.metrics()
        return None if metrics is None else metrics.health()

    def set(self, block_height: BlockId, operations: Iterable[Operation]) -> None:
        self._orchestrator.apply_operations(block_height, list(operations))

    def rollback(self, target: BlockId) -> None:
        self._orchestrator.revert_to(target)

    def get(self, key: Key) -> Value:
        return self._orchestrator.fetch(key)

    def current_block(self) -> BlockId:
        return self._orchestrator.current_block()

    def applied_block(self) -> BlockId:
        self._orchestrator.durable_block_height()
        return self._orchestrator.applied_block_height()

    def durable_block(self) -> BlockId:
        return self._orchestrator.durable_block_height()

    def ensure_healthy(self) -> None:
        self._orchestrator.ensure_healthy()

    def close(self) -> None:
        """Flush state and shut the orchestrator down; later calls do nothing."""
        lifecycle = self._lifecycle
        with lifecycle.lock:
            if lifecycle.shut_down:
                return
            lifecycle.shut_down = True
        try:
            self._orchestrator.shutdown()
        except BaseException:
            with lifecycle.lock:
                lifecycle.shut_down = False
            raise

    def clone(self) -> "Store":
        """Another handle on the same store."""
        with self._lifecycle.lock:
            self._lifecycle.handle_count += 1
        twin = Store.__new__(Store)
        twin._orchestrator = self._orchestrator
        twin._lifecycle = self._lifecycle
        twin._released = False
        return twin

    def release(self) -> None:
        """Give up this handle; the last one released shuts the store down."""
        lifecycle = self._lifecycle
        with lifecycle.lock:
            if self._released:
                return
            self._released = True
            lifecycle.handle_count -= 1
            if lifecycle.handle_count != 0 or lifecycle.shut_down:
                return
            lifecycle.shut_down = True
        try:
            self._orchestrator.shutdown()
        except Exception as exc:  # the flag stays set so shutdown is not retried
            _log.warning(
                "Failed to shut down store on release; persistence may remain active: %r",
                exc,
            )

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.close()
        finally:
            self.release()

    def _pending_operations(self) -> List[Operation]:
        return []