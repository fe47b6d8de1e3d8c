"""Candidate patch selection for one file and request context."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .store import CandidatePatch, Patch, PatchStatus, PatchStore

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_PATCHES = 50


@dataclass(slots=True)
class SelectionContext:
    """Request attributes that decide which patches are visible."""

    store_id: str
    user_id: Optional[str] = None
    release_version: Optional[str] = None
    ab_variant: Optional[str] = None
    preview_mode: bool = False
    max_patches: int = DEFAULT_MAX_PATCHES

    def statuses(self) -> List[PatchStatus]:
        if self.preview_mode:
            return [PatchStatus.OPEN, PatchStatus.PUBLISHED]
        return [PatchStatus.PUBLISHED]


class PatchSelector:
    """Filter and order the patches composed on top of a baseline.

    Composition order is ``priority`` ascending, then ``created_at`` ascending,
    then insertion order; the same inputs always yield the same list.
    """

    def __init__(self, store: PatchStore) -> None:
        self._store = store

    def select(self, file_path: str, context: SelectionContext) -> List[Patch]:
        candidates = self._store.list_candidate_patches(
            context.store_id,
            file_path,
            statuses=context.statuses(),
            release_version=context.release_version,
        )
        if context.ab_variant:
            candidates = [item for item in candidates if _matches_variant(item, context.ab_variant)]

        if context.user_id:
            preferences = self._store.get_user_preferences(context.user_id, context.store_id)
            excluded = set(preferences.excluded_patches) if preferences else set()
            if excluded:
                candidates = [item for item in candidates if item.patch.id not in excluded]

        ordered = sorted(candidates, key=lambda item: (item.patch.priority, item.patch.created_at))
        limit = max(0, context.max_patches)
        if len(ordered) > limit:
            LOGGER.info(
                "Capping %s candidate patches for %s at %s",
                len(ordered),
                file_path,
                limit,
            )
        return [item.patch for item in ordered[:limit]]


def _matches_variant(candidate: CandidatePatch, variant: str) -> bool:
    config = candidate.ab_test_config
    if not config:
        return True
    return config.get("variant") == variant
