"""Helpers for the block throughput benchmark.

Each benchmark block inserts ``INSERT_PER_BLOCK`` fresh keys and deletes the
``DELETE_PER_BLOCK`` oldest live keys (a delete is a set to zero). The live
key pool therefore grows by ``NET_KEYS_PER_BLOCK`` keys per block.
"""

from __future__ import annotations

import re
import sys
from collections import deque
from datetime import timedelta
from typing import Deque, List, Optional, Sequence, Tuple

from .types import Operation

DEFAULT_TOTAL_BLOCKS = 80_000
PROGRESS_INTERVAL = 100
INSERT_PER_BLOCK = 10_000
DELETE_PER_BLOCK = 9_000
NET_KEYS_PER_BLOCK = INSERT_PER_BLOCK - DELETE_PER_BLOCK
TOTAL_OPS_PER_BLOCK = INSERT_PER_BLOCK + DELETE_PER_BLOCK
SHARDS = 16
INITIAL_CAPACITY_PER_SHARD = 6_000_000
PARALLEL_THREAD_COUNT = 4
LMDB_ENTRY_BYTES_ESTIMATE = 128
BYTES_PER_GIB = float(1 << 30)

_U64_MAX = (1 << 64) - 1
_USIZE_MAX = _U64_MAX
_UNSIGNED = re.compile(r"\+?[0-9]+")


def format_with_separator(value: int) -> str:
    """Render a non-negative integer with commas between groups of three digits."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an int, not {type(value).__name__}")
    if value < 0:
        raise ValueError(f"value {value} must not be negative")
    return f"{value:,}"


def format_duration(seconds) -> str:
    """Render a duration as e.g. ``1h2m3s``; under a second it shows milliseconds."""
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    if seconds < 0:
        raise ValueError("duration must not be negative")
    nanos = round(seconds * 1_000_000_000)
    total_seconds, sub_nanos = divmod(nanos, 1_000_000_000)
    hours, rest = divmod(total_seconds, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if hours > 0 or minutes > 0:
        parts.append(f"{minutes}m")

    if total_seconds == 0:
        millis = sub_nanos // 1_000_000
        if millis > 0:
            parts.append(f"{millis}ms")
            return "".join(parts)

    parts.append(f"{secs}s")
    return "".join(parts)


def expected_final_keys(total_blocks: int) -> int:
    """Number of live keys left after ``total_blocks`` benchmark blocks."""
    if total_blocks < 0:
        raise ValueError("total_blocks must not be negative")
    return total_blocks * NET_KEYS_PER_BLOCK


def lmdb_map_size_bytes(total_blocks: int) -> int:
    """LMDB map size large enough for the final key set, rounded up to a power of two."""
    expected_keys = max(expected_final_keys(total_blocks), 1)
    needed = min(expected_keys * LMDB_ENTRY_BYTES_ESTIMATE, _USIZE_MAX)
    power = 1 if needed <= 1 else 1 << (needed - 1).bit_length()
    return _USIZE_MAX if power > _USIZE_MAX else power


def parse_total_blocks(argv: Optional[Sequence[str]] = None) -> int:
    """Block count from the first command-line argument, or the default.

    ``argv`` excludes the program name; ``None`` reads ``sys.argv[1:]``.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        return DEFAULT_TOTAL_BLOCKS
    arg = args[0]
    if not _UNSIGNED.fullmatch(arg) or int(arg) > _U64_MAX:
        raise ValueError(
            f"Invalid total block count `{arg}` (expected positive integer)"
        )
    value = int(arg)
    if value == 0:
        raise ValueError("Total blocks must be greater than zero")
    return value


def block_operations(
    block_index: int, live_keys: Deque[bytes], next_key: int
) -> Tuple[List[Operation], int]:
    """Build the operations of one benchmark block.

    New keys are the little-endian bytes of consecutive counters starting at
    ``next_key`` and are appended to ``live_keys``; the oldest keys are then
    popped from ``live_keys`` and deleted. Returns the operations and the next
    unused counter.
    """
    if block_index < 1:
        raise ValueError(f"block index {block_index} must be at least 1")

    operations: List[Operation] = []
    for counter in range(next_key, next_key + INSERT_PER_BLOCK):
        key = counter.to_bytes(8, "little")
        operations.append(Operation(key, counter))
        live_keys.append(key)

    for _ in range(DELETE_PER_BLOCK):
        try:
            key = live_keys.popleft()
        except IndexError:
            raise RuntimeError(
                "live key pool should always have enough entries"
            ) from None
        operations.append(Operation(key, 0))

    return operations, next_key + INSERT_PER_BLOCK


def new_live_key_pool() -> Deque[bytes]:
    """An empty pool of live keys for :func:`block_operations`."""
    return deque()