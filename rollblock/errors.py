"""Exceptions raised by the store."""

from __future__ import annotations

from pathlib import Path


class StoreError(Exception):
    """Base class of every error the store raises."""


class MissingMetadataError(StoreError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"metadata value '{name}' is missing")


class InvalidBlockRangeError(StoreError):
    def __init__(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        super().__init__(f"invalid block range {start}..={end}")


class EmptyRangeError(StoreError):
    def __init__(self, start: int, end: int) -> None:
        self.start = start
        self.end = end
        super().__init__(f"metadata range {start}..={end} is empty")


class InvalidJournalHeaderError(StoreError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"invalid journal header: {reason}")


class JournalChecksumMismatchError(StoreError):
    def __init__(self, block: int) -> None:
        self.block = block
        super().__init__(f"journal checksum mismatch for block {block}")


class JournalBlockIdMismatchError(StoreError):
    def __init__(self, expected: int, found: int) -> None:
        self.expected = expected
        self.found = found
        super().__init__(
            f"journal block height mismatch (expected {expected}, found {found})"
        )


class NoShardsConfiguredError(StoreError):
    def __init__(self) -> None:
        super().__init__("no shards configured in state engine")


class BlockDeltaMismatchError(StoreError):
    def __init__(self, expected: int, found: int) -> None:
        self.expected = expected
        self.found = found
        super().__init__(
            f"block delta block height mismatch (expected {expected}, found {found})"
        )


class InvalidShardIndexError(StoreError):
    def __init__(self, shard_index: int, shard_count: int) -> None:
        self.shard_index = shard_index
        self.shard_count = shard_count
        super().__init__(
            f"invalid shard index {shard_index} (available shards: {shard_count})"
        )


class BlockInProgressError(StoreError):
    def __init__(self, current: int) -> None:
        self.current = current
        super().__init__(f"block {current} is still in progress")


class NoBlockInProgressError(StoreError):
    def __init__(self) -> None:
        super().__init__("no block in progress")


class RollbackTargetAheadError(StoreError):
    def __init__(self, target: int, current: int) -> None:
        self.target = target
        self.current = current
        super().__init__(
            f"rollback target {target} is ahead of current block {current}"
        )


class MissingJournalEntryError(StoreError):
    def __init__(self, block: int) -> None:
        self.block = block
        super().__init__(f"journal entry missing for block {block}")


class SnapshotCorruptedError(StoreError):
    def __init__(self, path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f'snapshot corrupted at "{self.path}": {reason}')


class BlockIdNotIncreasingError(StoreError):
    def __init__(self, block_height: int, current: int) -> None:
        self.block_height = block_height
        self.current = current
        super().__init__(
            f"block height {block_height} must be greater than current block {current}"
        )


class RollbackToEmptyBlockError(StoreError):
    def __init__(self, block_height: int, adjusted: int) -> None:
        self.block_height = block_height
        self.adjusted = adjusted
        super().__init__(
            f"block height {block_height} has no operations "
            f"(rollback target adjusted to {adjusted})"
        )


class ReadOnlyOperationError(StoreError):
    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"read-only operation not allowed: {operation}")


class LockPoisonedError(StoreError):
    def __init__(self, lock: str) -> None:
        self.lock = lock
        super().__init__(f"{lock} lock poisoned")


class ConfigurationMismatchError(StoreError):
    def __init__(self, field: str, stored: int, requested: int) -> None:
        self.field = field
        self.stored = stored
        self.requested = requested
        super().__init__(
            f"configuration mismatch: {field} (stored: {stored}, requested: {requested})"
        )


class MissingShardConfigError(StoreError):
    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"missing shard config field: {field}")


class MissingShardLayoutError(StoreError):
    def __init__(self, path) -> None:
        self.path = Path(path)
        super().__init__(f'missing shard layout in metadata at "{self.path}"')


class DataDirLockedError(StoreError):
    def __init__(self, path, requested: str) -> None:
        self.path = Path(path)
        self.requested = requested
        super().__init__(
            f'data directory locked at "{self.path}" (requested: {requested})'
        )


class DurabilityFailureError(StoreError):
    def __init__(self, block: int, reason: str) -> None:
        self.block = block
        self.reason = reason
        super().__init__(f"durability failure for block {block}: {reason}")