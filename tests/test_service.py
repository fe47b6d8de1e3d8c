from __future__ import annotations

from tp.service import ApplyOptions, PatchService
from tp.sessions import PatchOptions
from tp.store import ChangeType, PatchStatus

SCRIPT = "assets/app.js"
BASELINE = "const x = 1;\nconst y = 2;\n"


def _publish_all(service: PatchService, version: str = "v1") -> str:
    release = service.create_release("store-1", version, "ops")
    service.assign_patches(release.id)
    assert service.publish_release(release.id).success
    return release.id


def test_scenario_two_patches_compose_in_priority_order(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    first = service.create_patch(
        SCRIPT,
        "const x = 10;\nconst y = 2;\n",
        PatchOptions(store_id="store-1", created_by="alice", priority=0),
    )
    second = service.create_patch(
        SCRIPT,
        "const x = 1;\nconst y = 20;\n",
        PatchOptions(store_id="store-1", created_by="bob", priority=1),
    )
    assert first.success and second.success
    assert first.diff_stats == {"additions": 1, "deletions": 1, "changes": 2}
    _publish_all(service)

    result = service.apply_patches(SCRIPT, ApplyOptions(store_id="store-1"))

    assert result.success
    assert result.has_patches
    assert result.patched_code == "const x = 10;\nconst y = 20;\n"
    assert [patch.id for patch in result.applied_patches] == [first.patch_id, second.patch_id]
    assert result.baseline_code == BASELINE
    assert len(service.store.list_patch_logs("store-1", SCRIPT)) == 2


def test_scenario_rollback_restores_baseline(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    service.create_patch(SCRIPT, "const x = 3;\nconst y = 2;\n", PatchOptions(store_id="store-1", created_by="alice"))
    release_id = _publish_all(service)
    assert service.apply_patches(SCRIPT, ApplyOptions(store_id="store-1")).has_patches

    assert service.rollback_release(release_id, "regression").success
    result = service.apply_patches(SCRIPT, ApplyOptions(store_id="store-1"))

    assert result.success
    assert not result.has_patches
    assert result.patched_code == result.baseline_code == BASELINE


def test_preview_results_are_cached_until_cleared(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    options = ApplyOptions(store_id="store-1", preview_mode=True)
    service.create_patch(SCRIPT, "const x = 5;\nconst y = 2;\n", PatchOptions(store_id="store-1", created_by="alice"))

    first = service.apply_patches(SCRIPT, options)
    service.create_patch(
        SCRIPT,
        "const x = 1;\nconst y = 7;\n",
        PatchOptions(store_id="store-1", created_by="bob", priority=1),
    )
    cached = service.apply_patches(SCRIPT, options)
    service.clear_cache(SCRIPT)
    fresh = service.apply_patches(SCRIPT, options)

    assert cached == first
    assert cached is not first
    assert first.applied_count == 1
    assert fresh.patched_code == "const x = 5;\nconst y = 7;\n"
    assert fresh.cache_key == first.cache_key
    assert service.store.list_patch_logs("store-1") == []


def test_missing_baseline_is_a_structured_failure(service: PatchService) -> None:
    result = service.apply_patches("views/none.html", ApplyOptions(store_id="store-1"))

    assert not result.success
    assert "No baseline found" in result.error

    created = service.create_patch("views/none.html", "<p>x</p>", PatchOptions(store_id="store-1", created_by="a"))
    assert not created.success


def test_create_patch_without_changes_fails(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)

    result = service.create_patch(SCRIPT, BASELINE, PatchOptions(store_id="store-1", created_by="alice"))

    assert not result.success
    assert "no changes detected" in result.error


def test_revert_patch_undoes_original(service: PatchService) -> None:
    service.save_baseline("store-1", "notes.txt", "a\nb\nc\n")
    created = service.create_patch("notes.txt", "a\nB\nc\n", PatchOptions(store_id="store-1", created_by="alice"))

    reverted = service.revert_patch(created.patch_id, "alice")
    revert_patch = service.get_patch(reverted.patch_id)
    result = service.apply_patches("notes.txt", ApplyOptions(store_id="store-1", preview_mode=True))

    assert reverted.success
    assert revert_patch.change_type == ChangeType.REVERT.value
    assert revert_patch.priority == 1
    assert result.applied_count == 2
    assert result.patched_code == "a\nb\nc\n"


def test_remove_change_edits_stored_patch(service: PatchService) -> None:
    service.save_baseline("store-1", "notes.txt", "a\nb\nc\n")
    created = service.create_patch("notes.txt", "a\nB\nc\n", PatchOptions(store_id="store-1", created_by="alice"))

    outcome = service.remove_change(created.patch_id, "B")
    result = service.apply_patches("notes.txt", ApplyOptions(store_id="store-1", preview_mode=True))

    assert outcome.success
    assert outcome.diff_stats == {"additions": 0, "deletions": 1, "changes": 1}
    assert result.patched_code == "a\nc\n"
    assert not service.remove_change(created.patch_id, "nothing like it").success


def test_finalize_release_errors_and_stats(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    service.create_patch(SCRIPT, "const x = 2;\nconst y = 2;\n", PatchOptions(store_id="store-1", created_by="alice"))

    finalized = service.finalize_edit_session("sess-1", store_id="store-1", created_by="alice")

    assert finalized.success and finalized.finalized_count == 1
    assert service.list_patches(SCRIPT, "store-1")[0].status is PatchStatus.READY_FOR_REVIEW
    assert not service.publish_release("missing").success
    assert not service.rollback_release("missing", "n/a").success

    stats = service.get_stats("store-1")
    assert stats["total_patches"] == 1
    assert stats["baselines"] == 1


def test_user_exclusions_hide_patches(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    created = service.create_patch(
        SCRIPT, "const x = 9;\nconst y = 2;\n", PatchOptions(store_id="store-1", created_by="alice")
    )
    _publish_all(service)

    service.set_user_exclusions("shopper", "store-1", [created.patch_id])
    result = service.apply_patches(SCRIPT, ApplyOptions(store_id="store-1", user_id="shopper"))

    assert result.patched_code == BASELINE
    assert not result.has_patches


def test_finalize_without_scope_touches_no_tenant(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    service.save_baseline("store-2", SCRIPT, BASELINE)
    service.create_patch(SCRIPT, "const x = 4;\nconst y = 2;\n", PatchOptions(store_id="store-1", created_by="alice"))
    service.create_patch(SCRIPT, "const x = 6;\nconst y = 2;\n", PatchOptions(store_id="store-2", created_by="bob"))

    unscoped = service.finalize_edit_session("sess-alice")
    store_only = service.finalize_edit_session("sess-alice", store_id="store-2")

    assert not unscoped.success and unscoped.finalized_count == 0
    assert not store_only.success
    assert service.list_patches(SCRIPT, "store-1")[0].status is PatchStatus.OPEN
    assert service.list_patches(SCRIPT, "store-2")[0].status is PatchStatus.OPEN


def test_cached_results_are_isolated_from_callers(service: PatchService) -> None:
    service.save_baseline("store-1", SCRIPT, BASELINE)
    service.create_patch(SCRIPT, "const x = 8;\nconst y = 2;\n", PatchOptions(store_id="store-1", created_by="alice"))
    options = ApplyOptions(store_id="store-1", preview_mode=True)

    first = service.apply_patches(SCRIPT, options)
    first.patched_code = "tampered"
    first.applied_patches.clear()
    second = service.apply_patches(SCRIPT, options)
    second.patch_details.clear()
    third = service.apply_patches(SCRIPT, options)

    assert second.patched_code == third.patched_code == "const x = 8;\nconst y = 2;\n"
    assert len(third.applied_patches) == 1
    assert len(third.patch_details) == 1
