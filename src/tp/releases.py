"""Release lifecycle: creation, patch assignment, publish and rollback."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .diff.engine import emit_event
from .errors import ReleaseNotFound, ReleaseStateError
from .store import PatchStore, Release, ReleaseStatus, ReleaseSummary, ReleaseType

LOGGER = logging.getLogger(__name__)

# Allowed release transitions; ``rolled_back`` is terminal.
TRANSITIONS: Dict[ReleaseStatus, frozenset[ReleaseStatus]] = {
    ReleaseStatus.DRAFT: frozenset({ReleaseStatus.PUBLISHED, ReleaseStatus.ROLLED_BACK}),
    ReleaseStatus.PUBLISHED: frozenset({ReleaseStatus.ROLLED_BACK}),
    ReleaseStatus.ROLLED_BACK: frozenset(),
}


class ReleaseManager:
    """Drive releases through ``draft -> published -> rolled_back``.

    ``on_change`` is invoked with the release after every publish or
    rollback so callers can invalidate cached compositions.
    """

    def __init__(self, store: PatchStore, on_change: Optional[Callable[[Release], None]] = None) -> None:
        self._store = store
        self._on_change = on_change

    def create_release(
        self,
        store_id: str,
        version_name: str,
        created_by: str,
        *,
        release_type: ReleaseType | str = ReleaseType.MINOR,
        description: str = "",
        ab_test_config: Optional[Dict[str, Any]] = None,
    ) -> Release:
        release = Release(
            store_id=store_id,
            version_name=version_name,
            version_number=self._store.next_version_number(store_id),
            release_type=ReleaseType(release_type),
            description=description,
            ab_test_config=ab_test_config,
            created_by=created_by,
        )
        self._store.insert_release(release)
        LOGGER.info("Created release %s (%s) for store %s", release.version_name, release.id, store_id)
        return release

    def get_release(self, release_id: str) -> Release:
        release = self._store.get_release(release_id)
        if release is None:
            raise ReleaseNotFound(f"Release {release_id} not found", details={"release_id": release_id})
        return release

    def list_releases(self, store_id: str, status: Optional[ReleaseStatus] = None) -> List[ReleaseSummary]:
        return self._store.list_releases(store_id, status)

    def assign_patches(self, release_id: str, file_path: Optional[str] = None) -> int:
        """Attach the store's unreleased open or in-review patches to a draft release."""
        release = self.get_release(release_id)
        if release.status is not ReleaseStatus.DRAFT:
            raise ReleaseStateError(
                f"Cannot assign patches to a {release.status.value} release",
                details={"release_id": release_id, "status": release.status.value},
            )
        count = self._store.assign_patches_to_release(release_id, release.store_id, file_path)
        LOGGER.info("Assigned %s patch(es) to release %s", count, release.version_name)
        return count

    def publish(self, release_id: str) -> Release:
        release = self.get_release(release_id)
        self._check_transition(release, ReleaseStatus.PUBLISHED)
        published = self._store.mark_release_published(release_id)
        emit_event(
            "release.published",
            release_id=release_id,
            store_id=release.store_id,
            version_name=release.version_name,
            patches=published,
        )
        return self._changed(release_id)

    def rollback(self, release_id: str, reason: str = "") -> Release:
        release = self.get_release(release_id)
        self._check_transition(release, ReleaseStatus.ROLLED_BACK)
        rolled_back = self._store.mark_release_rolled_back(release_id, reason)
        emit_event(
            "release.rolled_back",
            release_id=release_id,
            store_id=release.store_id,
            version_name=release.version_name,
            patches=rolled_back,
            reason=reason,
        )
        return self._changed(release_id)

    def _changed(self, release_id: str) -> Release:
        release = self.get_release(release_id)
        if self._on_change is not None:
            self._on_change(release)
        return release

    @staticmethod
    def _check_transition(release: Release, target: ReleaseStatus) -> None:
        if target not in TRANSITIONS[release.status]:
            raise ReleaseStateError(
                f"Release {release.version_name} cannot move from {release.status.value} to {target.value}",
                details={"release_id": release.id, "from": release.status.value, "to": target.value},
            )
