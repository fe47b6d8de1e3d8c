from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from tp.selector import PatchSelector, SelectionContext
from tp.store import Patch, PatchStatus, PatchStore, Release

FILE = "views/product.html"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _add_patch(
    store: PatchStore,
    name: str,
    *,
    priority: int = 0,
    minutes: int = 0,
    status: PatchStatus = PatchStatus.PUBLISHED,
    release_id: Optional[str] = None,
) -> Patch:
    return store.insert_patch(
        Patch(
            store_id="store-1",
            file_path=FILE,
            patch_name=name,
            unified_diff="--- a/f\n+++ b/f\n@@ -1 +1 @@\n-a\n+b\n",
            baseline_version=1,
            priority=priority,
            status=status,
            created_by="editor",
            release_id=release_id,
            created_at=T0 + timedelta(minutes=minutes),
        )
    )


def _add_release(store: PatchStore, name: str, variant: Optional[str] = None) -> Release:
    return store.insert_release(
        Release(
            store_id="store-1",
            version_name=name,
            version_number=store.next_version_number("store-1"),
            ab_test_config={"variant": variant} if variant else None,
            created_by="ops",
        )
    )


def _names(patches) -> list[str]:
    return [patch.patch_name for patch in patches]


def test_preview_mode_includes_open_patches(store: PatchStore) -> None:
    _add_patch(store, "draft", status=PatchStatus.OPEN, minutes=1)
    _add_patch(store, "live", status=PatchStatus.PUBLISHED)
    _add_patch(store, "review", status=PatchStatus.READY_FOR_REVIEW, minutes=2)
    selector = PatchSelector(store)

    assert _names(selector.select(FILE, SelectionContext(store_id="store-1", preview_mode=True))) == ["live", "draft"]
    assert _names(selector.select(FILE, SelectionContext(store_id="store-1"))) == ["live"]


def test_priority_then_created_at_ordering_is_stable(store: PatchStore) -> None:
    _add_patch(store, "late", minutes=5)
    _add_patch(store, "early", minutes=1)
    _add_patch(store, "first-priority", priority=-1, minutes=9)
    selector = PatchSelector(store)
    context = SelectionContext(store_id="store-1")

    runs = [_names(selector.select(FILE, context)) for _ in range(3)]

    assert runs[0] == ["first-priority", "early", "late"]
    assert all(run == runs[0] for run in runs)


def test_ab_variant_filtering(store: PatchStore) -> None:
    variant_a = _add_release(store, "v1-a", variant="A")
    untargeted = _add_release(store, "v1")
    _add_patch(store, "for-a", release_id=variant_a.id)
    _add_patch(store, "for-all", release_id=untargeted.id, minutes=1)
    _add_patch(store, "loose", minutes=2)
    selector = PatchSelector(store)

    assert _names(selector.select(FILE, SelectionContext(store_id="store-1", ab_variant="B"))) == [
        "for-all",
        "loose",
    ]
    assert _names(selector.select(FILE, SelectionContext(store_id="store-1", ab_variant="A"))) == [
        "for-a",
        "for-all",
        "loose",
    ]
    assert len(selector.select(FILE, SelectionContext(store_id="store-1"))) == 3


def test_release_version_filter_and_cap(store: PatchStore) -> None:
    release = _add_release(store, "v2")
    _add_patch(store, "in-release", release_id=release.id)
    _add_patch(store, "other", minutes=1)
    selector = PatchSelector(store)

    selected = selector.select(FILE, SelectionContext(store_id="store-1", release_version="v2"))
    assert _names(selected) == ["in-release"]

    capped = selector.select(FILE, SelectionContext(store_id="store-1", max_patches=1))
    assert _names(capped) == ["in-release"]


def test_user_exclusions_are_dropped(store: PatchStore) -> None:
    hidden = _add_patch(store, "hidden")
    _add_patch(store, "shown", minutes=1)
    store.set_user_exclusions("shopper", "store-1", [hidden.id])
    selector = PatchSelector(store)

    assert _names(selector.select(FILE, SelectionContext(store_id="store-1", user_id="shopper"))) == ["shown"]
    assert _names(selector.select(FILE, SelectionContext(store_id="store-1", user_id="guest"))) == [
        "hidden",
        "shown",
    ]
