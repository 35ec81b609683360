"""Store configuration."""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from .interfaces import DurabilityMode

DEFAULT_MAX_PENDING_BLOCKS = 1024
DEFAULT_SNAPSHOT_INTERVAL = timedelta(seconds=3600)
DEFAULT_LMDB_MAP_SIZE = 2 << 30


class StoreMode(enum.Enum):
    """Whether the store may be written to."""

    READ_WRITE = "read_write"
    READ_ONLY = "read_only"

    def is_read_only(self) -> bool:
        return self is StoreMode.READ_ONLY

    def is_read_write(self) -> bool:
        return self is StoreMode.READ_WRITE


def _default_durability() -> DurabilityMode:
    return DurabilityMode.asynchronous(DEFAULT_MAX_PENDING_BLOCKS)


def _as_interval(value) -> timedelta:
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


@dataclass(frozen=True)
class StoreConfig:
    """Settings for opening a store.

    ``shards_count`` and ``initial_capacity`` are required when a new data
    directory is created; for an existing one they may be left out and are
    then taken from the stored layout.
    """

    data_dir: Path
    shards_count: Optional[int] = None
    initial_capacity: Optional[int] = None
    thread_count: int = 1
    compress_journal: bool = False
    durability_mode: DurabilityMode = field(default_factory=_default_durability)
    snapshot_interval: timedelta = DEFAULT_SNAPSHOT_INTERVAL
    journal_compression_level: int = 0
    mode: StoreMode = StoreMode.READ_WRITE
    lmdb_map_size: int = DEFAULT_LMDB_MAP_SIZE

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_dir", Path(self.data_dir))
        object.__setattr__(self, "snapshot_interval", _as_interval(self.snapshot_interval))
        object.__setattr__(self, "mode", StoreMode(self.mode))

    @classmethod
    def existing(cls, data_dir) -> "StoreConfig":
        """Configuration for reopening a data directory whose layout is already stored."""
        return cls(data_dir)

    def with_shard_layout(self, shards_count: int, initial_capacity: int) -> "StoreConfig":
        return dataclasses.replace(
            self, shards_count=shards_count, initial_capacity=initial_capacity
        )

    def with_durability_mode(self, mode: DurabilityMode) -> "StoreConfig":
        return dataclasses.replace(self, durability_mode=mode)

    def with_snapshot_interval(self, interval) -> "StoreConfig":
        return dataclasses.replace(self, snapshot_interval=_as_interval(interval))

    def with_journal_compression(self, enabled: bool) -> "StoreConfig":
        return dataclasses.replace(self, compress_journal=enabled)

    def with_journal_compression_level(self, level: int) -> "StoreConfig":
        return dataclasses.replace(self, journal_compression_level=level)

    def with_async_max_pending(self, max_pending_blocks: int) -> "StoreConfig":
        return dataclasses.replace(
            self, durability_mode=DurabilityMode.asynchronous(max(max_pending_blocks, 1))
        )

    def with_mode(self, mode: StoreMode) -> "StoreConfig":
        return dataclasses.replace(self, mode=mode)

    def with_lmdb_map_size(self, size: int) -> "StoreConfig":
        return dataclasses.replace(self, lmdb_map_size=size)

    def metadata_dir(self) -> Path:
        return self.data_dir / "metadata"

    def journal_dir(self) -> Path:
        return self.data_dir / "journal"

    def snapshots_dir(self) -> Path:
        return self.data_dir / "snapshots"