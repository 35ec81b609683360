"""Startup recovery: restoring snapshots, replaying and reconciling the journal."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Sequence

from .config import StoreConfig
from .errors import (
    ConfigurationMismatchError,
    JournalChecksumMismatchError,
    MissingJournalEntryError,
    MissingShardConfigError,
    MissingShardLayoutError,
    SnapshotCorruptedError,
    StoreError,
)
from .interfaces import BlockJournal, MetadataStore, ReplayEngine, ShardLayout, Snapshotter
from .types import MAX_VALUE, BlockId, JournalMeta

_log = logging.getLogger(__name__)

_ENTRY_ERRORS = (StoreError, OSError)


def _sorted_unique(metas: Iterable[JournalMeta]) -> List[JournalMeta]:
    """Entries ordered by block height, keeping the first of each height."""
    unique = {}
    for meta in sorted(metas, key=lambda m: m.block_height):
        unique.setdefault(meta.block_height, meta)
    return list(unique.values())


def _remove_file(path, block: BlockId, what: str) -> None:
    try:
        Path(path).unlink()
    except OSError as exc:
        _log.warning("Failed to delete %s for block %d at %s: %r", what, block, path, exc)


def restore_existing_state(
    snapshotter: Snapshotter, metadata: MetadataStore, shards: Sequence
) -> BlockId:
    """Load the newest usable snapshot into ``shards`` and return its block.

    Snapshots newer than the recorded current block are deleted when the
    metadata shows that they cannot be trusted; corrupted snapshots are
    deleted and the next older one is tried. Returns 0 when none is usable.
    """
    recorded_current = metadata.current_block()
    snapshots = snapshotter.snapshots_desc()

    prune_newer = recorded_current != 0
    if not prune_newer and recorded_current < MAX_VALUE:
        prune_newer = bool(metadata.get_journal_offsets(recorded_current + 1, MAX_VALUE))

    for path, snapshot_block in snapshots:
        if prune_newer and snapshot_block > recorded_current:
            _log.info(
                "Removing snapshot %s for block %d newer than recorded block %d",
                path, snapshot_block, recorded_current,
            )
            _remove_file(path, snapshot_block, "snapshot newer than metadata")
            continue

        _log.info("Loading snapshot %s for block %d", path, snapshot_block)
        try:
            loaded_block = snapshotter.load_snapshot(path, shards)
        except SnapshotCorruptedError as exc:
            _log.warning(
                "Snapshot %s for block %d corrupted (%s); trying an older one",
                path, snapshot_block, exc.reason,
            )
            _remove_file(path, snapshot_block, "corrupted snapshot")
            continue

        if loaded_block != snapshot_block:
            _log.warning(
                "Snapshot block mismatch (expected %d, got %d); using the snapshot's",
                snapshot_block, loaded_block,
            )
        if recorded_current < loaded_block:
            _log.info(
                "Updating metadata current block %d to snapshot block %d",
                recorded_current, loaded_block,
            )
            metadata.set_current_block(loaded_block)
        elif recorded_current > loaded_block:
            _log.info(
                "Snapshot block %d is behind metadata block %d; journal will be replayed",
                loaded_block, recorded_current,
            )
        return loaded_block

    if recorded_current != 0:
        _log.warning(
            "Metadata records block %d but no usable snapshot was found; "
            "rebuilding from journal",
            recorded_current,
        )
    else:
        _log.info("No snapshot found; starting from empty state at block 0")
    return 0


def restore_existing_state_read_only(
    snapshotter: Snapshotter, metadata: MetadataStore, shards: Sequence
) -> BlockId:
    """Like :func:`restore_existing_state`, but never modifies files or metadata."""
    recorded_current = metadata.current_block()

    for path, snapshot_block in snapshotter.snapshots_desc():
        if snapshot_block > recorded_current and recorded_current != 0:
            _log.info(
                "Skipping snapshot %s for block %d newer than metadata block %d",
                path, snapshot_block, recorded_current,
            )
            continue
        try:
            loaded_block = snapshotter.load_snapshot(path, shards)
        except SnapshotCorruptedError as exc:
            _log.warning(
                "Skipping corrupted snapshot %s for block %d: %s",
                path, snapshot_block, exc.reason,
            )
            continue
        if loaded_block != snapshot_block:
            _log.warning(
                "Snapshot block mismatch (expected %d, got %d) in read-only mode",
                snapshot_block, loaded_block,
            )
        return loaded_block

    return 0


def replay_committed_blocks(
    journal: BlockJournal,
    metadata: MetadataStore,
    engine: ReplayEngine,
    restored_block: BlockId,
) -> None:
    """Re-apply journaled blocks after ``restored_block`` up to the current block.

    Raises :class:`MissingJournalEntryError` for the first block in that range
    that has no journal offset.
    """
    target_block = metadata.current_block()
    if target_block <= restored_block:
        _log.debug(
            "No journal replay required (target %d, restored %d)",
            target_block, restored_block,
        )
        return

    start_block = restored_block + 1
    metas = metadata.get_journal_offsets(start_block, target_block)
    if not metas:
        _log.error(
            "Metadata block %d is ahead of snapshot block %d but no journal offsets exist",
            target_block, restored_block,
        )
        raise MissingJournalEntryError(start_block)

    metas = _sorted_unique(metas)

    expected = start_block
    for meta in metas:
        height = meta.block_height
        if height < start_block:
            continue
        if height > expected:
            break
        if height == expected:
            expected += 1
    if expected <= target_block:
        _log.error(
            "Gap between metadata and journal during recovery: block %d missing "
            "(range %d..=%d)",
            expected, start_block, target_block,
        )
        raise MissingJournalEntryError(expected)

    for meta in metas:
        entry = journal.read_entry(meta)
        if entry.block_height <= restored_block:
            continue
        _log.info("Replaying committed block %d from journal", entry.block_height)
        engine.apply_replayed_block(entry.block_height, entry.operations, entry.undo)


def _recover_empty_index(
    journal: BlockJournal, metadata: MetadataStore, current_block: BlockId
) -> List[JournalMeta]:
    _log.warning(
        "Journal index empty at startup (current block %d); attempting recovery",
        current_block,
    )
    recovered: List[JournalMeta] = []
    if current_block > 0:
        try:
            recovered.extend(metadata.get_journal_offsets(0, current_block))
        except _ENTRY_ERRORS as exc:
            _log.warning("Failed to load metadata offsets during journal recovery: %r", exc)
    if not recovered:
        recovered = journal.scan_entries()
    if not recovered:
        return []

    validated: List[JournalMeta] = []
    for meta in _sorted_unique(recovered):
        try:
            journal.read_entry(meta)
        except _ENTRY_ERRORS as exc:
            _log.warning(
                "Failed to validate recovered journal entry %d; stopping recovery: %r",
                meta.block_height, exc,
            )
            break
        metadata.put_journal_offset(meta.block_height, meta)
        validated.append(meta)

    if validated:
        durable_block = validated[-1].block_height
        journal.rewrite_index(validated)
        metadata.remove_journal_offsets_after(durable_block)
        metadata.set_current_block(durable_block)
    return validated


def _reset_to(journal: BlockJournal, metadata: MetadataStore, block: BlockId) -> None:
    journal.truncate_after(block)
    metadata.remove_journal_offsets_after(block)
    metadata.set_current_block(block)


def reconcile_metadata_with_journal(journal: BlockJournal, metadata: MetadataStore) -> BlockId:
    """Bring metadata and the journal index in line with the journal data.

    Returns the current block recorded in metadata afterwards.
    """
    current_block = metadata.current_block()

    index_entries = _sorted_unique(journal.list_entries())
    scanned_entries = _sorted_unique(journal.scan_entries())

    if scanned_entries:
        if index_entries != scanned_entries:
            journal.rewrite_index(scanned_entries)
        entries = scanned_entries
    else:
        entries = index_entries

    if not entries:
        entries = _recover_empty_index(journal, metadata, current_block)
        if not entries:
            if current_block > 0:
                _log.warning(
                    "No durable journal entries recovered; resetting block %d to 0",
                    current_block,
                )
                _reset_to(journal, metadata, 0)
            return 0

    entries = sorted(entries, key=lambda m: m.block_height)
    tail_block = entries[-1].block_height
    latest_verified = 0
    pruned_tail = False

    for meta in entries:
        height = meta.block_height
        if height <= latest_verified:
            continue
        try:
            journal.read_entry(meta)
        except _ENTRY_ERRORS as exc:
            if height != tail_block or isinstance(exc, JournalChecksumMismatchError):
                raise
            _log.warning(
                "Failed to load tail journal entry %d; truncating to block %d: %r",
                height, latest_verified, exc,
            )
            _reset_to(journal, metadata, latest_verified)
            pruned_tail = True
            break
        latest_verified = height
        if height > current_block:
            _log.info(
                "Metadata block %d behind journal entry %d; reconciling",
                current_block, height,
            )
            metadata.record_block_commit(height, meta)

    if not pruned_tail and latest_verified < current_block:
        _reset_to(journal, metadata, latest_verified)

    return metadata.current_block()


def resolve_shard_layout(metadata, config: StoreConfig, allow_persist: bool) -> ShardLayout:
    """Shard layout from metadata, checked against the configuration.

    ``metadata`` must provide ``load_shard_layout()``, ``store_shard_layout()``
    and ``path()``. When no layout is stored, the configured one is used and,
    if ``allow_persist`` is set, stored.
    """
    stored = metadata.load_shard_layout()
    if stored is not None:
        if config.shards_count is not None and config.shards_count != stored.shards_count:
            raise ConfigurationMismatchError(
                "shards_count", stored.shards_count, config.shards_count
            )
        if (
            config.initial_capacity is not None
            and config.initial_capacity != stored.initial_capacity
        ):
            raise ConfigurationMismatchError(
                "initial_capacity", stored.initial_capacity, config.initial_capacity
            )
        return stored

    for name in ("shards_count", "initial_capacity"):
        if getattr(config, name) is None:
            if allow_persist:
                raise MissingShardConfigError(name)
            raise MissingShardLayoutError(metadata.path())

    layout = ShardLayout(config.shards_count, config.initial_capacity)
    if allow_persist:
        metadata.store_shard_layout(layout)
    return layout