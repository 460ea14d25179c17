"""Tests for Keep-Local, Keep-Remote and manual merge resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.conftest import fast_retry_policy, no_sleep
from vaultsync.schemas.events import BlobRef, ChangeType, EventOrigin, InlineText
from vaultsync.schemas.state import ConflictStrategy
from vaultsync.services.conflict_resolution import ConflictResolver, apply_manual_merge
from vaultsync.services.events import create_change_event, deletion_event
from vaultsync.services.hashing import hash_bytes
from vaultsync.services.sync_diff import ConflictType, SyncStatus, compare_file_state

if TYPE_CHECKING:
    from vaultsync.filesystem.vault import Vault
    from vaultsync.providers.remote_folder import RemoteFolderSyncProvider
    from vaultsync.schemas.events import ChangeEvent
    from vaultsync.services.sync_diff import Conflict

BASE = hash_bytes(b"base")


@pytest.fixture
def resolver(vault: Vault, provider: RemoteFolderSyncProvider) -> ConflictResolver:
    return ConflictResolver(vault, provider, retry_policy=fast_retry_policy(), sleep=no_sleep)


def _conflict(vault: Vault, path: str) -> Conflict:
    state = vault.states.get(path)
    assert state is not None
    conflict = compare_file_state(state).conflict
    assert conflict is not None
    return conflict


def _remote_text_event(path: str, text: str, occurred_at: str) -> ChangeEvent:
    return create_change_event(
        path,
        ChangeType.MODIFIED,
        file_hash=hash_bytes(text.encode()),
        content=InlineText(text=text),
        origin=EventOrigin.LOCAL,
        occurred_at=occurred_at,
    )


class TestKeepLocal:
    def test_modified_modified_pushes_local_content(
        self, vault: Vault, resolver: ConflictResolver, provider: RemoteFolderSyncProvider
    ) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"theirs"),
        )
        conflict = _conflict(vault, "a.md")
        assert conflict.type == ConflictType.MODIFIED_MODIFIED

        outcome = resolver.resolve(conflict, ConflictStrategy.LOCAL, list)
        assert outcome.resolved
        assert outcome.pushed == 1

        pushed = provider.pull_history_events(None).events
        assert pushed[-1].change.change_type == ChangeType.MODIFIED
        assert pushed[-1].change.hash == hash_bytes(b"mine")
        state = vault.states.get("a.md")
        assert state is not None
        assert state.last_synced_hash == state.last_remote_hash == hash_bytes(b"mine")

    def test_modified_deleted_recreates_remotely(
        self, vault: Vault, resolver: ConflictResolver, provider: RemoteFolderSyncProvider
    ) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=None,
        )
        outcome = resolver.keep_local(_conflict(vault, "a.md"))
        assert outcome.resolved
        assert provider.pull_history_events(None).events[-1].change.change_type == (
            ChangeType.CREATED
        )

    def test_deleted_modified_pushes_deletion(
        self, vault: Vault, resolver: ConflictResolver, provider: RemoteFolderSyncProvider
    ) -> None:
        vault.states.upsert(
            "a.md", last_synced_hash=BASE, last_local_hash=None, last_remote_hash=hash_bytes(b"x")
        )
        outcome = resolver.keep_local(_conflict(vault, "a.md"))
        assert outcome.resolved
        assert provider.pull_history_events(None).events[-1].is_deletion
        assert vault.states.get("a.md") is None

    def test_unreadable_local_file_leaves_conflict(
        self, vault: Vault, resolver: ConflictResolver, provider: RemoteFolderSyncProvider
    ) -> None:
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"theirs"),
        )
        outcome = resolver.keep_local(_conflict(vault, "a.md"))
        assert not outcome.resolved
        assert provider.pull_history_events(None).events == []

    def test_binary_content_uploads_blob(
        self, vault: Vault, resolver: ConflictResolver, provider: RemoteFolderSyncProvider
    ) -> None:
        payload = b"\x00\x01\x02"
        (vault.root / "a.png").write_bytes(payload)
        vault.states.upsert(
            "a.png",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(payload),
            last_remote_hash=hash_bytes(b"theirs"),
        )
        assert resolver.keep_local(_conflict(vault, "a.png")).resolved
        assert provider.get_blob(hash_bytes(payload)) == payload


class TestKeepRemote:
    def test_writes_newest_remote_content(self, vault: Vault, resolver: ConflictResolver) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"new"),
        )
        history = [
            _remote_text_event("a.md", "new", "2026-01-02T00:00:00+00:00"),
            _remote_text_event("a.md", "old", "2026-01-01T00:00:00+00:00"),
            _remote_text_event("b.md", "unrelated", "2026-01-03T00:00:00+00:00"),
        ]
        outcome = resolver.resolve(
            _conflict(vault, "a.md"), ConflictStrategy.REMOTE, lambda: history
        )
        assert outcome.resolved
        assert (vault.root / "a.md").read_text(encoding="utf-8") == "new"
        state = vault.states.get("a.md")
        assert state is not None
        assert state.last_synced_hash == hash_bytes(b"new")

        latest = vault.history.replay()[-1]
        assert latest.origin == EventOrigin.REMOTE
        assert latest.id == history[0].id
        assert not vault.apply_lock.lock_file.exists()
        assert "a.md" in vault.expected_writes.pending()

    def test_unavailable_newest_content_leaves_conflict(
        self, vault: Vault, resolver: ConflictResolver
    ) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"lost"),
        )
        missing_blob = create_change_event(
            "a.md",
            ChangeType.MODIFIED,
            file_hash=hash_bytes(b"lost"),
            content=BlobRef(hash=hash_bytes(b"lost")),
            occurred_at="2026-01-02T00:00:00+00:00",
        )
        older = _remote_text_event("a.md", "older", "2026-01-01T00:00:00+00:00")
        outcome = resolver.keep_remote(_conflict(vault, "a.md"), [older, missing_blob])
        assert not outcome.resolved
        assert (vault.root / "a.md").read_text(encoding="utf-8") == "mine"
        state = vault.states.get("a.md")
        assert state is not None
        assert state.last_synced_hash == BASE
        assert state.last_remote_hash == hash_bytes(b"lost")

    def test_uses_older_event_with_the_same_content(
        self, vault: Vault, resolver: ConflictResolver
    ) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"same"),
        )
        as_blob = create_change_event(
            "a.md",
            ChangeType.MODIFIED,
            file_hash=hash_bytes(b"same"),
            content=BlobRef(hash=hash_bytes(b"same")),
            occurred_at="2026-01-02T00:00:00+00:00",
        )
        inline = _remote_text_event("a.md", "same", "2026-01-01T00:00:00+00:00")
        outcome = resolver.keep_remote(_conflict(vault, "a.md"), [inline, as_blob])
        assert outcome.resolved
        assert (vault.root / "a.md").read_text(encoding="utf-8") == "same"
        state = vault.states.get("a.md")
        assert state is not None
        assert state.last_synced_hash == hash_bytes(b"same")

    def test_remote_deletion_removes_local_file(
        self, vault: Vault, resolver: ConflictResolver
    ) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=None,
        )
        remote = deletion_event("a.md")
        outcome = resolver.keep_remote(_conflict(vault, "a.md"), [remote])
        assert outcome.resolved
        assert not (vault.root / "a.md").exists()
        assert vault.states.get("a.md") is None
        assert vault.history.replay()[-1].is_deletion

    def test_no_remote_history_leaves_conflict(
        self, vault: Vault, resolver: ConflictResolver
    ) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"x"),
        )
        outcome = resolver.keep_remote(_conflict(vault, "a.md"), [])
        assert not outcome.resolved
        assert (vault.root / "a.md").read_text(encoding="utf-8") == "mine"


class TestManualMerge:
    def test_strategy_waits_for_merged_content(
        self, vault: Vault, resolver: ConflictResolver
    ) -> None:
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=hash_bytes(b"theirs"),
        )
        outcome = resolver.resolve(_conflict(vault, "a.md"), ConflictStrategy.MANUAL_MERGE, list)
        assert not outcome.resolved
        assert outcome.detail == "awaiting merged content"

    def test_merge_rebases_onto_remote(self, vault: Vault) -> None:
        (vault.root / "a.md").write_text("mine", encoding="utf-8")
        theirs = hash_bytes(b"theirs")
        vault.states.upsert(
            "a.md",
            last_synced_hash=BASE,
            last_local_hash=hash_bytes(b"mine"),
            last_remote_hash=theirs,
        )
        state = apply_manual_merge(vault, "a.md", "mine + theirs")
        assert state is not None
        assert state.last_synced_hash == theirs
        assert state.last_local_hash == hash_bytes(b"mine + theirs")
        assert compare_file_state(state).status == SyncStatus.LOCAL_CHANGED
        assert (vault.root / "a.md").read_text(encoding="utf-8") == "mine + theirs"
        assert vault.history.replay()[-1].origin == EventOrigin.LOCAL

    def test_merge_rejects_paths_outside_vault(self, vault: Vault) -> None:
        with pytest.raises(ValueError):
            apply_manual_merge(vault, "../escape.md", "x")
