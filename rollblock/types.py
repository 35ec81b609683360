"""Value types shared by every part of the store."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

KEY_SIZE = 8
MAX_VALUE = (1 << 64) - 1

Key = bytes
Value = int
BlockId = int


def _as_key(key) -> bytes:
    """Normalise a bytes-like object or a sequence of ints into an 8-byte key."""
    if isinstance(key, (int, str)):
        raise TypeError(f"key must be bytes-like, not {type(key).__name__}")
    try:
        raw = bytes(key)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid key {key!r}") from exc
    if len(raw) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes, got {len(raw)}")
    return raw


def _check_value(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"value must be an int, not {type(value).__name__}")
    if not 0 <= value <= MAX_VALUE:
        raise ValueError(f"value {value} is outside the unsigned 64-bit range")
    return value


@dataclass(frozen=True)
class Operation:
    """A user-requested set of ``key`` to ``value``; a value of zero deletes the key."""

    key: Key
    value: Value

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_key(self.key))
        _check_value(self.value)

    def is_delete(self) -> bool:
        return self.value == 0


@dataclass(frozen=True)
class ShardOp:
    """An operation routed to a single shard."""

    key: Key
    value: Value

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", _as_key(self.key))
        _check_value(self.value)

    def is_delete(self) -> bool:
        return self.value == 0


class UndoOp(enum.Enum):
    """What an operation did to a key, recorded so it can be undone."""

    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass
class UndoEntry:
    """The state of a key before an operation touched it."""

    key: Key
    previous: Optional[Value]
    op: UndoOp

    def __post_init__(self) -> None:
        self.key = _as_key(self.key)
        if self.previous is not None:
            _check_value(self.previous)
        self.op = UndoOp(self.op)


@dataclass
class ShardUndo:
    shard_index: int = 0
    entries: List[UndoEntry] = field(default_factory=list)


@dataclass
class ShardDelta:
    shard_index: int = 0
    operations: List[ShardOp] = field(default_factory=list)
    undo_entries: List[UndoEntry] = field(default_factory=list)


@dataclass
class BlockDelta:
    block_height: BlockId = 0
    shards: List[ShardDelta] = field(default_factory=list)


@dataclass
class BlockUndo:
    block_height: BlockId = 0
    shard_undos: List[ShardUndo] = field(default_factory=list)


@dataclass
class StateStats:
    operation_count: int = 0
    modified_keys: int = 0


@dataclass
class ShardStats:
    keys: int = 0
    tombstones: int = 0


@dataclass(frozen=True)
class JournalMeta:
    """Location and checksum of one block's entry in the journal."""

    block_height: BlockId = 0
    offset: int = 0
    compressed_len: int = 0
    checksum: int = 0