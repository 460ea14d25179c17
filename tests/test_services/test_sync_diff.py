"""Tests for the three-hash diff."""

from __future__ import annotations

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from vaultsync.schemas.hashes import FileHash
from vaultsync.schemas.state import FileSyncState
from vaultsync.services.sync_diff import (
    ConflictType,
    SyncStatus,
    compare_all_states,
    compare_file_state,
)

PROPERTY_SETTINGS = settings(
    max_examples=250,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_HASHES = [FileHash(value=c * 64) for c in "abc"]
_MAYBE_HASH = st.one_of(st.none(), st.sampled_from(_HASHES))


def _h(char: str) -> FileHash:
    return FileHash(value=char * 64)


def _state(
    base: FileHash | None, local: FileHash | None, remote: FileHash | None, path: str = "a.md"
) -> FileSyncState:
    return FileSyncState(
        path=path, last_synced_hash=base, last_local_hash=local, last_remote_hash=remote
    )


class TestClassification:
    def test_unchanged_is_synced(self) -> None:
        assert compare_file_state(_state(_h("a"), _h("a"), _h("a"))).status == SyncStatus.SYNCED

    def test_convergent_edit_is_synced(self) -> None:
        comparison = compare_file_state(_state(_h("a"), _h("b"), _h("b")))
        assert comparison.status == SyncStatus.SYNCED
        assert comparison.conflict is None

    def test_double_delete_is_synced(self) -> None:
        assert compare_file_state(_state(_h("a"), None, None)).status == SyncStatus.SYNCED

    def test_new_local_file(self) -> None:
        assert compare_file_state(_state(None, _h("a"), None)).status == SyncStatus.LOCAL_ONLY

    def test_new_remote_file(self) -> None:
        assert compare_file_state(_state(None, None, _h("a"))).status == SyncStatus.REMOTE_ONLY

    def test_local_edit(self) -> None:
        status = compare_file_state(_state(_h("a"), _h("b"), _h("a"))).status
        assert status == SyncStatus.LOCAL_CHANGED

    def test_local_delete(self) -> None:
        status = compare_file_state(_state(_h("a"), None, _h("a"))).status
        assert status == SyncStatus.LOCAL_CHANGED

    def test_remote_edit(self) -> None:
        status = compare_file_state(_state(_h("a"), _h("a"), _h("b"))).status
        assert status == SyncStatus.REMOTE_CHANGED

    def test_modified_on_both_sides(self) -> None:
        comparison = compare_file_state(_state(_h("a"), _h("b"), _h("c")))
        assert comparison.status == SyncStatus.CONFLICT
        assert comparison.conflict is not None
        assert comparison.conflict.type == ConflictType.MODIFIED_MODIFIED
        assert comparison.conflict.local_hash == _h("b")
        assert comparison.conflict.remote_hash == _h("c")

    def test_created_on_both_sides_with_different_content(self) -> None:
        comparison = compare_file_state(_state(None, _h("b"), _h("c")))
        assert comparison.conflict is not None
        assert comparison.conflict.type == ConflictType.MODIFIED_MODIFIED

    def test_deleted_locally_modified_remotely(self) -> None:
        comparison = compare_file_state(_state(_h("a"), None, _h("c")))
        assert comparison.conflict is not None
        assert comparison.conflict.type == ConflictType.DELETED_MODIFIED

    def test_modified_locally_deleted_remotely(self) -> None:
        comparison = compare_file_state(_state(_h("a"), _h("b"), None))
        assert comparison.conflict is not None
        assert comparison.conflict.type == ConflictType.MODIFIED_DELETED


class TestCompareAll:
    def test_results_sorted_by_path(self) -> None:
        result = compare_all_states(
            [
                _state(_h("a"), _h("b"), _h("c"), path="z.md"),
                _state(None, _h("a"), None, path="b.md"),
                _state(_h("a"), None, _h("c"), path="a.md"),
            ]
        )
        assert [c.path for c in result.comparisons] == ["a.md", "b.md", "z.md"]
        assert [c.path for c in result.conflicts] == ["a.md", "z.md"]
        assert result.status_of("b.md") == SyncStatus.LOCAL_ONLY
        assert result.status_of("missing.md") is None
        assert result.statuses["z.md"] == SyncStatus.CONFLICT

    def test_empty(self) -> None:
        result = compare_all_states([])
        assert result.comparisons == []
        assert result.conflicts == []


class TestDiffProperties:
    @PROPERTY_SETTINGS
    @given(base=_MAYBE_HASH, local=_MAYBE_HASH, remote=_MAYBE_HASH)
    def test_conflict_iff_both_sides_diverged(
        self, base: FileHash | None, local: FileHash | None, remote: FileHash | None
    ) -> None:
        comparison = compare_file_state(_state(base, local, remote))
        diverged = local != remote and local != base and remote != base
        assert (comparison.status == SyncStatus.CONFLICT) == diverged
        assert (comparison.conflict is not None) == diverged

    @PROPERTY_SETTINGS
    @given(base=_MAYBE_HASH, side=_MAYBE_HASH)
    def test_identical_sides_are_always_synced(
        self, base: FileHash | None, side: FileHash | None
    ) -> None:
        assert compare_file_state(_state(base, side, side)).status == SyncStatus.SYNCED

    @PROPERTY_SETTINGS
    @given(base=_MAYBE_HASH, local=_MAYBE_HASH, remote=_MAYBE_HASH)
    def test_classification_is_deterministic(
        self, base: FileHash | None, local: FileHash | None, remote: FileHash | None
    ) -> None:
        state = _state(base, local, remote)
        assert compare_file_state(state) == compare_file_state(state)

    @PROPERTY_SETTINGS
    @given(base=_MAYBE_HASH, local=_MAYBE_HASH, remote=_MAYBE_HASH)
    def test_swapping_sides_mirrors_the_status(
        self, base: FileHash | None, local: FileHash | None, remote: FileHash | None
    ) -> None:
        mirror = {
            SyncStatus.LOCAL_ONLY: SyncStatus.REMOTE_ONLY,
            SyncStatus.REMOTE_ONLY: SyncStatus.LOCAL_ONLY,
            SyncStatus.LOCAL_CHANGED: SyncStatus.REMOTE_CHANGED,
            SyncStatus.REMOTE_CHANGED: SyncStatus.LOCAL_CHANGED,
        }
        forward = compare_file_state(_state(base, local, remote)).status
        backward = compare_file_state(_state(base, remote, local)).status
        assert backward == mirror.get(forward, forward)
