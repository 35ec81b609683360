import json
from pathlib import Path

import pytest

from rollblock.config import StoreConfig
from rollblock.errors import (
    ConfigurationMismatchError,
    JournalChecksumMismatchError,
    MissingJournalEntryError,
    MissingShardConfigError,
    MissingShardLayoutError,
    SnapshotCorruptedError,
)
from rollblock.interfaces import (
    BlockJournal,
    JournalBlock,
    MetadataStore,
    ReplayEngine,
    ShardLayout,
    Snapshotter,
)
from rollblock.recovery import (
    reconcile_metadata_with_journal,
    replay_committed_blocks,
    resolve_shard_layout,
    restore_existing_state,
    restore_existing_state_read_only,
)
from rollblock.types import BlockUndo, JournalMeta, Operation


class InMemoryMetadata(MetadataStore):
    def __init__(self, current=0, offsets=(), layout=None, location="metadata"):
        self.current = current
        self.offsets = {meta.block_height: meta for meta in offsets}
        self.layout = layout
        self.location = Path(location)

    def current_block(self):
        return self.current

    def set_current_block(self, block):
        self.current = block

    def put_journal_offset(self, block, meta):
        self.offsets[block] = meta

    def get_journal_offsets(self, start, end):
        return [m for h, m in sorted(self.offsets.items()) if start <= h <= end]

    def last_journal_offset_at_or_before(self, block):
        found = [m for h, m in sorted(self.offsets.items()) if h <= block]
        return found[-1] if found else None

    def remove_journal_offsets_after(self, block):
        self.offsets = {h: m for h, m in self.offsets.items() if h <= block}

    def load_shard_layout(self):
        return self.layout

    def store_shard_layout(self, layout):
        self.layout = layout

    def path(self):
        return self.location


class FakeJournal(BlockJournal):
    def __init__(self):
        self.blocks = {}
        self.index = []
        self.unreadable = {}
        self.rewrites = []

    def append(self, block, undo, operations):
        offset = sum(meta.compressed_len for meta, _ in self.blocks.values())
        meta = JournalMeta(block_height=block, offset=offset, compressed_len=16, checksum=block)
        self.blocks[block] = (meta, JournalBlock(block, list(operations), undo))
        self.index.append(meta)
        return meta

    def iter_backwards(self, from_block, to_block):
        for height in sorted(self.blocks, reverse=True):
            if to_block < height <= from_block:
                yield self.blocks[height][1]

    def read_entry(self, meta):
        if meta.block_height in self.unreadable:
            raise self.unreadable[meta.block_height]
        if meta.block_height not in self.blocks:
            raise MissingJournalEntryError(meta.block_height)
        return self.blocks[meta.block_height][1]

    def list_entries(self):
        return list(self.index)

    def truncate_after(self, block):
        self.blocks = {h: v for h, v in self.blocks.items() if h <= block}
        self.index = [m for m in self.index if m.block_height <= block]

    def rewrite_index(self, metas):
        self.index = list(metas)
        self.rewrites.append(list(metas))

    def scan_entries(self):
        return [meta for _, (meta, _) in sorted(self.blocks.items())]


class FileSnapshotter(Snapshotter):
    def __init__(self, root):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, block):
        return self.root / f"snapshot_{block:016x}.bin"

    def create_snapshot(self, block, shards):
        path = self.path_for(block)
        payload = {
            "block": block,
            "shards": [[[k.hex(), v] for k, v in shard.items()] for shard in shards],
        }
        path.write_text(json.dumps(payload))
        return path

    def snapshots_desc(self):
        found = [
            (p, int(p.stem.split("_")[1], 16)) for p in self.root.glob("snapshot_*.bin")
        ]
        return sorted(found, key=lambda item: item[1], reverse=True)

    def load_snapshot(self, path, shards):
        try:
            payload = json.loads(Path(path).read_text())
        except (ValueError, UnicodeDecodeError) as exc:
            raise SnapshotCorruptedError(path, str(exc)) from exc
        for shard, items in zip(shards, payload["shards"]):
            shard.clear()
            shard.update({bytes.fromhex(k): v for k, v in items})
        return payload["block"]


class RecordingEngine(ReplayEngine):
    def __init__(self):
        self.applied = []

    def apply_replayed_block(self, block_height, operations, undo):
        self.applied.append((block_height, list(operations)))


def meta(height):
    return JournalMeta(block_height=height)


# replay_committed_blocks


def test_replay_errors_when_no_offsets():
    metadata = InMemoryMetadata(current=5)
    with pytest.raises(MissingJournalEntryError) as info:
        replay_committed_blocks(FakeJournal(), metadata, RecordingEngine(), 2)
    assert info.value.block == 3


def test_replay_errors_on_gaps():
    metadata = InMemoryMetadata(current=5, offsets=[meta(3), meta(5)])
    with pytest.raises(MissingJournalEntryError) as info:
        replay_committed_blocks(FakeJournal(), metadata, RecordingEngine(), 2)
    assert info.value.block == 4


def test_replay_errors_on_missing_journal_offsets():
    metadata = InMemoryMetadata()
    metadata.set_current_block(1)
    with pytest.raises(MissingJournalEntryError) as info:
        replay_committed_blocks(FakeJournal(), metadata, RecordingEngine(), 0)
    assert info.value.block == 1


def test_replay_errors_on_missing_tail_block():
    metadata = InMemoryMetadata(current=4, offsets=[meta(3)])
    with pytest.raises(MissingJournalEntryError) as info:
        replay_committed_blocks(FakeJournal(), metadata, RecordingEngine(), 2)
    assert info.value.block == 4


def test_replay_does_nothing_when_snapshot_up_to_date():
    engine = RecordingEngine()
    replay_committed_blocks(FakeJournal(), InMemoryMetadata(current=3), engine, 3)
    assert engine.applied == []


def test_replay_applies_blocks_after_restored_in_order():
    journal = FakeJournal()
    metas = [
        journal.append(h, BlockUndo(block_height=h), [Operation(bytes([h] * 8), h * 10)])
        for h in (1, 2, 3)
    ]
    metadata = InMemoryMetadata(current=3, offsets=metas)
    engine = RecordingEngine()
    replay_committed_blocks(journal, metadata, engine, 1)
    assert [height for height, _ in engine.applied] == [2, 3]
    assert engine.applied[1][1] == [Operation(bytes([3] * 8), 30)]


# restore_existing_state


def test_restore_existing_state_skips_corrupted_snapshot(tmp_path):
    snapshotter = FileSnapshotter(tmp_path / "snapshots")
    metadata = InMemoryMetadata()
    shards = [{}, {}]
    key = bytes([1] * 8)
    shards[0][key] = 42
    valid = snapshotter.create_snapshot(10, shards)
    assert valid.exists()

    corrupted = snapshotter.path_for(11)
    corrupted.write_bytes(b"bad snapshot")
    for shard in shards:
        shard.clear()
    assert key not in shards[0]

    restored = restore_existing_state(snapshotter, metadata, shards)

    assert restored == 10
    assert metadata.current_block() == 10
    assert not corrupted.exists()
    assert shards[0][key] == 42


def test_restore_prunes_snapshots_newer_than_metadata(tmp_path):
    snapshotter = FileSnapshotter(tmp_path)
    shards = [{bytes([2] * 8): 7}]
    snapshotter.create_snapshot(3, shards)
    newer = snapshotter.create_snapshot(8, shards)
    metadata = InMemoryMetadata(current=5)

    assert restore_existing_state(snapshotter, metadata, shards) == 3
    assert not newer.exists()
    assert metadata.current_block() == 5


def test_restore_prunes_newer_when_metadata_at_zero_has_offsets(tmp_path):
    snapshotter = FileSnapshotter(tmp_path)
    newer = snapshotter.create_snapshot(4, [{}])
    metadata = InMemoryMetadata(current=0, offsets=[meta(2)])

    assert restore_existing_state(snapshotter, metadata, [{}]) == 0
    assert not newer.exists()


def test_restore_without_snapshots_starts_at_zero(tmp_path):
    metadata = InMemoryMetadata(current=0)
    assert restore_existing_state(FileSnapshotter(tmp_path), metadata, [{}]) == 0
    assert metadata.current_block() == 0


def test_read_only_restore_skips_newer_and_keeps_files(tmp_path):
    snapshotter = FileSnapshotter(tmp_path)
    key = bytes([9] * 8)
    snapshotter.create_snapshot(2, [{key: 5}])
    newer = snapshotter.create_snapshot(6, [{key: 6}])
    corrupted = snapshotter.path_for(3)
    corrupted.write_bytes(b"garbage")
    metadata = InMemoryMetadata(current=4)
    shards = [{}]

    assert restore_existing_state_read_only(snapshotter, metadata, shards) == 2
    assert shards[0] == {key: 5}
    assert newer.exists()
    assert corrupted.exists()
    assert metadata.current_block() == 4


# reconcile_metadata_with_journal


def test_reconcile_recovers_missing_metadata_entries():
    journal = FakeJournal()
    metadata = InMemoryMetadata()
    appended = journal.append(3, BlockUndo(block_height=3), [])

    assert reconcile_metadata_with_journal(journal, metadata) == 3
    assert metadata.current_block() == 3
    offsets = metadata.get_journal_offsets(3, 3)
    assert len(offsets) == 1
    assert offsets[0].offset == appended.offset
    assert offsets[0].compressed_len == appended.compressed_len


def test_reconcile_rebuilds_missing_index():
    journal = FakeJournal()
    metadata = InMemoryMetadata()
    appended = journal.append(7, BlockUndo(block_height=7), [])
    metadata.record_block_commit(7, appended)
    journal.index = []
    assert journal.list_entries() == []

    assert reconcile_metadata_with_journal(journal, metadata) == 7
    entries = journal.list_entries()
    assert [e.block_height for e in entries] == [7]
    assert metadata.get_journal_offsets(7, 7)[0].offset == appended.offset
    assert metadata.current_block() == 7


def test_reconcile_truncates_unreadable_tail():
    journal = FakeJournal()
    metas = [journal.append(h, BlockUndo(block_height=h), []) for h in (1, 2)]
    metadata = InMemoryMetadata(current=2, offsets=metas)
    journal.unreadable[2] = MissingJournalEntryError(2)

    assert reconcile_metadata_with_journal(journal, metadata) == 1
    assert sorted(journal.blocks) == [1]
    assert sorted(metadata.offsets) == [1]


def test_reconcile_raises_on_tail_checksum_mismatch():
    journal = FakeJournal()
    metas = [journal.append(h, BlockUndo(block_height=h), []) for h in (1, 2)]
    metadata = InMemoryMetadata(current=2, offsets=metas)
    journal.unreadable[2] = JournalChecksumMismatchError(2)

    with pytest.raises(JournalChecksumMismatchError) as info:
        reconcile_metadata_with_journal(journal, metadata)
    assert info.value.block == 2


def test_reconcile_raises_on_unreadable_non_tail_entry():
    journal = FakeJournal()
    metas = [journal.append(h, BlockUndo(block_height=h), []) for h in (1, 2)]
    metadata = InMemoryMetadata(current=2, offsets=metas)
    journal.unreadable[1] = MissingJournalEntryError(1)

    with pytest.raises(MissingJournalEntryError) as info:
        reconcile_metadata_with_journal(journal, metadata)
    assert info.value.block == 1


def test_reconcile_resets_when_journal_empty():
    journal = FakeJournal()
    metadata = InMemoryMetadata(current=4)

    assert reconcile_metadata_with_journal(journal, metadata) == 0
    assert metadata.current_block() == 0


def test_reconcile_rolls_metadata_back_to_journal_tail():
    journal = FakeJournal()
    metas = [journal.append(h, BlockUndo(block_height=h), []) for h in (1, 2)]
    metadata = InMemoryMetadata(current=5, offsets=metas + [meta(5)])

    assert reconcile_metadata_with_journal(journal, metadata) == 2
    assert sorted(metadata.offsets) == [1, 2]


# resolve_shard_layout


def test_resolve_shard_layout_persists_configured_layout(tmp_path):
    metadata = InMemoryMetadata()
    layout = resolve_shard_layout(metadata, StoreConfig(tmp_path, 4, 32), True)
    assert layout == ShardLayout(4, 32)
    assert metadata.layout == ShardLayout(4, 32)


def test_resolve_shard_layout_without_persist_keeps_metadata(tmp_path):
    metadata = InMemoryMetadata()
    layout = resolve_shard_layout(metadata, StoreConfig(tmp_path, 2, 8), False)
    assert layout == ShardLayout(2, 8)
    assert metadata.layout is None


def test_resolve_shard_layout_uses_stored_for_existing(tmp_path):
    metadata = InMemoryMetadata(layout=ShardLayout(4, 32))
    layout = resolve_shard_layout(metadata, StoreConfig.existing(tmp_path), False)
    assert layout == ShardLayout(4, 32)


def test_resolve_shard_layout_rejects_shard_count_mismatch(tmp_path):
    metadata = InMemoryMetadata(layout=ShardLayout(2, 64))
    with pytest.raises(ConfigurationMismatchError) as info:
        resolve_shard_layout(metadata, StoreConfig(tmp_path, 3, 64), True)
    assert (info.value.field, info.value.stored, info.value.requested) == (
        "shards_count", 2, 3,
    )


def test_resolve_shard_layout_rejects_capacity_mismatch(tmp_path):
    metadata = InMemoryMetadata(layout=ShardLayout(2, 64))
    with pytest.raises(ConfigurationMismatchError) as info:
        resolve_shard_layout(metadata, StoreConfig(tmp_path, 2, 128), True)
    assert (info.value.field, info.value.stored, info.value.requested) == (
        "initial_capacity", 64, 128,
    )


def test_resolve_shard_layout_missing_config_when_persisting(tmp_path):
    with pytest.raises(MissingShardConfigError) as info:
        resolve_shard_layout(InMemoryMetadata(), StoreConfig.existing(tmp_path), True)
    assert info.value.field == "shards_count"


def test_resolve_shard_layout_missing_capacity_when_persisting(tmp_path):
    config = StoreConfig(tmp_path, shards_count=2)
    with pytest.raises(MissingShardConfigError) as info:
        resolve_shard_layout(InMemoryMetadata(), config, True)
    assert info.value.field == "initial_capacity"


def test_resolve_shard_layout_missing_layout_when_read_only(tmp_path):
    metadata = InMemoryMetadata(location=tmp_path / "metadata")
    with pytest.raises(MissingShardLayoutError) as info:
        resolve_shard_layout(metadata, StoreConfig.existing(tmp_path), False)
    assert info.value.path == tmp_path / "metadata"