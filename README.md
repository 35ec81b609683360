# rollblock

The front end of a block-structured key/value state store with rollback.

Every change is applied at a block height. Keys are 8 bytes and values are
unsigned 64-bit integers; setting a key to `0` deletes it, and reading an
absent key gives `0`. The package supplies the store handles, the value
types, the configuration, the error types, the abstract collaborators a
storage backend implements, and the start-up recovery routines that work
on top of those collaborators.

## What the package does not do

The package ships no storage backend. There is no concrete
`BlockOrchestrator`, `MetadataStore`, `BlockJournal`, `Snapshotter` or
`ReplayEngine`: nothing here writes a journal, a metadata database or
snapshot files, and nothing opens a store from a `StoreConfig`. To use
`Store` you provide an orchestrator of your own (see the example below).
`StoreConfig` records the settings such a backend would need (shard
layout, durability, snapshot interval, journal compression, map size) but
no code in the package acts on them, and `StoreConfig.existing()` does not
read anything from disk. The package installs no command.

## Modules

- `rollblock.types` – `Operation(key, value)` (key normalised to 8
  `bytes`, value checked to be an unsigned 64-bit int; `is_delete()` is
  true for value 0), `ShardOp`, `UndoOp`, `UndoEntry`, `ShardUndo`,
  `ShardDelta`, `BlockDelta`, `BlockUndo`, `StateStats`, `ShardStats` and
  `JournalMeta`.
- `rollblock.errors` – `StoreError` and its subclasses, such as
  `BlockIdNotIncreasingError`, `RollbackTargetAheadError`,
  `BlockInProgressError`, `NoBlockInProgressError`,
  `MissingJournalEntryError`, `JournalChecksumMismatchError`,
  `SnapshotCorruptedError`, `ConfigurationMismatchError`,
  `MissingShardConfigError` and `MissingShardLayoutError`. Each keeps the
  values it reports as attributes (`block`, `current`, `field`, ...).
- `rollblock.interfaces` – `DurabilityMode` (`synchronous()`,
  `asynchronous(max_pending_blocks)`, `is_async()`), `ShardLayout`,
  `JournalBlock`, and the abstract classes `BlockOrchestrator`,
  `MetadataStore`, `BlockJournal`, `Snapshotter`, `ReplayEngine` and
  `StoreFacade`. `StoreFacade` objects are context managers that call
  `close()` on exit.
- `rollblock.config` – `StoreMode` (`READ_WRITE`, `READ_ONLY`) and the
  frozen `StoreConfig`. Its `with_*` methods return modified copies;
  `with_async_max_pending(n)` uses at least 1. `metadata_dir()`,
  `journal_dir()` and `snapshots_dir()` are `metadata`, `journal` and
  `snapshots` under `data_dir`. Defaults: asynchronous durability with
  1024 pending blocks, a one-hour snapshot interval, compression level 0,
  read-write mode, a 2 GiB map size.
- `rollblock.facade` – `Store(orchestrator)`, which forwards `set`,
  `rollback`, `get`, `current_block`, `applied_block`, `durable_block`
  and `ensure_healthy` to the orchestrator, and exposes `metrics()` and
  `health()` (None when the orchestrator keeps no metrics). `clone()`
  gives another handle on the same orchestrator. The orchestrator is shut
  down once: by `close()`, or when the last handle is given up with
  `release()`. A failed `close()` can be retried.
- `rollblock.block` – `BlockStore(store)` stages a block with
  `start_block(height)`, `stage(operation)` and `end_block()`. `get()`
  sees staged values first. If the commit fails the block stays staged.
  `set`, `rollback` and `close` raise `BlockInProgressError` while a block
  is staged.
- `rollblock.recovery` – `reconcile_metadata_with_journal`,
  `restore_existing_state`, `restore_existing_state_read_only`,
  `replay_committed_blocks` and `resolve_shard_layout`, written against
  the abstract collaborators.
- `rollblock.benchmark` – helpers for a block throughput workload:
  `block_operations` (10,000 inserts and 9,000 deletes of the oldest live
  keys per block), `new_live_key_pool`, `format_with_separator`,
  `format_duration`, `expected_final_keys`, `lmdb_map_size_bytes` and
  `parse_total_blocks`.

## Example

```python
from rollblock.block import BlockStore
from rollblock.errors import BlockIdNotIncreasingError, RollbackTargetAheadError
from rollblock.facade import Store
from rollblock.interfaces import BlockOrchestrator


class MemoryOrchestrator(BlockOrchestrator):
    """Keeps a copy of the state after every block."""

    def __init__(self):
        self.history = [(0, {})]

    def apply_operations(self, block_height, operations):
        current, state = self.history[-1]
        if block_height <= current and current != 0:
            raise BlockIdNotIncreasingError(block_height, current)
        state = dict(state)
        for op in operations:
            if op.is_delete():
                state.pop(op.key, None)
            else:
                state[op.key] = op.value
        self.history.append((block_height, state))

    def revert_to(self, block):
        if block > self.current_block():
            raise RollbackTargetAheadError(block, self.current_block())
        while self.history[-1][0] > block:
            self.history.pop()

    def fetch(self, key):
        return self.history[-1][1].get(bytes(key), 0)

    def current_block(self):
        return self.history[-1][0]

    applied_block_height = durable_block_height = current_block

    def shutdown(self):
        pass

    def ensure_healthy(self):
        pass


alice = bytes([1, 0, 0, 0, 0, 0, 0, 0])
bob = bytes([2, 0, 0, 0, 0, 0, 0, 0])

with Store(MemoryOrchestrator()) as store:
    from rollblock.types import Operation

    store.set(100, [Operation(alice, 1000)])
    store.set(101, [Operation(alice, 800), Operation(bob, 200)])
    assert store.get(bob) == 200

    store.rollback(100)
    assert store.get(bob) == 0

    blocks = BlockStore(store)
    blocks.start_block(101)
    blocks.stage(Operation(alice, 700))
    assert blocks.get(alice) == 700   # staged, not yet committed
    blocks.end_block()
    assert store.get(alice) == 700
```

## Tests

```
pip install -e .[test]
pytest
```