from __future__ import annotations

import re

import pytest

from tp.diff.engine import DiffEngine
from tp.errors import BaselineNotFound, NoChangesDetected, ValidationFailure
from tp.sessions import EditSessionAccumulator, PatchOptions
from tp.store import PatchStatus, PatchStore, TextChange

FILE = "views/home.html"
BASELINE = "<section>\n  <h1>Summer sale</h1>\n  <p>Everything must go</p>\n</section>\n"


@pytest.fixture()
def accumulator(store: PatchStore, engine: DiffEngine) -> EditSessionAccumulator:
    store.save_baseline("store-1", FILE, BASELINE)
    return EditSessionAccumulator(store, engine)


def _options(**overrides) -> PatchOptions:
    fields = {"store_id": "store-1", "created_by": "alice", "session_id": "sess-1"}
    fields.update(overrides)
    return PatchOptions(**fields)


def test_repeated_autosaves_fold_into_one_patch(accumulator: EditSessionAccumulator, store: PatchStore) -> None:
    results = [
        accumulator.upsert(FILE, BASELINE.replace("Summer sale", f"Summer sale {index}"), _options())
        for index in range(5)
    ]

    assert [result.action for result in results] == ["created"] + ["updated"] * 4
    assert len({result.patch_id for result in results}) == 1

    patches = store.list_patches("store-1", FILE)
    assert len(patches) == 1
    notes = re.findall(r"\[\d{2}:\d{2}:\d{2}\] Auto-save", patches[0].change_description)
    assert len(notes) == 5
    assert patches[0].patch_name.startswith("Auto-save home.html (")
    assert patches[0].structural_diff == [TextChange(old="Summer sale", new="Summer sale 4")]
    assert results[-1].diff_stats.additions == 1


def test_unchanged_code_is_rejected(accumulator: EditSessionAccumulator) -> None:
    with pytest.raises(NoChangesDetected):
        accumulator.upsert(FILE, BASELINE, _options())


def test_missing_baseline_is_reported(accumulator: EditSessionAccumulator) -> None:
    with pytest.raises(BaselineNotFound):
        accumulator.upsert("views/missing.html", "<p>x</p>", _options())


def test_non_manual_edits_always_insert(accumulator: EditSessionAccumulator, store: PatchStore) -> None:
    first = accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options(change_type="ai_edit"))
    second = accumulator.upsert(FILE, BASELINE.replace("sale", "offers"), _options(change_type="ai_edit"))

    assert first.action == second.action == "created"
    assert first.patch_id != second.patch_id
    assert len(store.list_patches("store-1", FILE)) == 2


def test_other_authors_get_their_own_patch(accumulator: EditSessionAccumulator) -> None:
    mine = accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options())
    theirs = accumulator.upsert(FILE, BASELINE.replace("sale", "offers"), _options(created_by="bob"))

    assert mine.patch_id != theirs.patch_id
    assert theirs.action == "created"


def test_finalize_moves_open_edits_to_review(accumulator: EditSessionAccumulator, store: PatchStore) -> None:
    saved = accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options(change_description="Copy edit"))

    finalized = accumulator.finalize("sess-1", store_id="store-1", created_by="alice")

    assert [patch.id for patch in finalized] == [saved.patch_id]
    stored = store.get_patch(saved.patch_id)
    assert stored.status is PatchStatus.READY_FOR_REVIEW
    assert "Copy edit" in stored.change_description
    assert re.search(r"\[Finalized at \d{2}:\d{2}:\d{2}\]", stored.change_description)

    follow_up = accumulator.upsert(FILE, BASELINE.replace("sale", "offers"), _options())
    assert follow_up.action == "created"
    assert follow_up.patch_id != saved.patch_id


def test_finalize_all_ignores_scope(accumulator: EditSessionAccumulator) -> None:
    accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options())
    accumulator.upsert(FILE, BASELINE.replace("sale", "offers"), _options(created_by="bob"))

    assert len(accumulator.finalize(None, finalize_all=True)) == 2
    assert accumulator.finalize(None, finalize_all=True) == []


def test_finalize_requires_store_and_author(accumulator: EditSessionAccumulator, store: PatchStore) -> None:
    saved = accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options())

    with pytest.raises(ValidationFailure):
        accumulator.finalize("sess-1")
    with pytest.raises(ValidationFailure):
        accumulator.finalize("sess-1", store_id="store-1")

    assert store.get_patch(saved.patch_id).status is PatchStatus.OPEN


def test_finalize_stays_inside_its_tenant(accumulator: EditSessionAccumulator, store: PatchStore) -> None:
    store.save_baseline("store-2", FILE, BASELINE)
    mine = accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options())
    other_tenant = accumulator.upsert(
        FILE, BASELINE.replace("sale", "offers"), _options(store_id="store-2", created_by="alice")
    )

    finalized = accumulator.finalize("sess-1", store_id="store-1", created_by="alice")

    assert [patch.id for patch in finalized] == [mine.patch_id]
    assert store.get_patch(other_tenant.patch_id).status is PatchStatus.OPEN


def test_update_tracks_latest_baseline_version(accumulator: EditSessionAccumulator, store: PatchStore) -> None:
    created = accumulator.upsert(FILE, BASELINE.replace("sale", "deals"), _options())
    assert store.get_patch(created.patch_id).baseline_version == 1

    rebased = BASELINE.replace("Everything must go", "Everything must go today")
    latest = store.save_baseline("store-1", FILE, rebased)
    updated = accumulator.upsert(FILE, rebased.replace("sale", "deals"), _options())

    assert updated.action == "updated"
    assert updated.patch_id == created.patch_id
    assert latest.version == 2
    assert store.get_patch(created.patch_id).baseline_version == 2
