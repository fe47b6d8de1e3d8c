"""Edit-session accumulation: fold repeated autosaves into one open patch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import PurePosixPath
from typing import List, Optional

from .diff.engine import DiffEngine, DiffStats, emit_event
from .diff.structural import Structured, StructuralDiffEngine, resolve_file_kind
from .errors import BaselineNotFound, NoChangesDetected, ValidationFailure
from .store import ChangeType, Patch, PatchStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PatchOptions:
    """Attributes of the edit being saved."""

    store_id: str
    created_by: str
    session_id: Optional[str] = None
    change_type: str = ChangeType.MANUAL_EDIT.value
    patch_name: Optional[str] = None
    change_summary: str = ""
    change_description: str = ""
    release_id: Optional[str] = None
    priority: int = 0
    use_upsert: bool = True


@dataclass(slots=True)
class UpsertResult:
    patch_id: str
    action: str
    diff_stats: DiffStats


def _clock(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now()).strftime("%H:%M:%S")


class EditSessionAccumulator:
    """Create or update the open manual-edit patch for a user and file."""

    def __init__(
        self,
        store: PatchStore,
        diff_engine: Optional[DiffEngine] = None,
        structural_engine: Optional[StructuralDiffEngine] = None,
    ) -> None:
        self._store = store
        self.diff_engine = diff_engine or DiffEngine()
        self.structural_engine = structural_engine or StructuralDiffEngine()

    def upsert(self, file_path: str, modified_code: str, options: PatchOptions) -> UpsertResult:
        baseline = self._store.get_baseline(options.store_id, file_path)
        if baseline is None:
            raise BaselineNotFound(
                f"No baseline for {file_path} in store {options.store_id}",
                details={"store_id": options.store_id, "file_path": file_path},
            )

        unified = self.diff_engine.create_diff(baseline.code, modified_code, file_path)
        if not unified:
            raise NoChangesDetected("No changes detected", details={"file_path": file_path})

        kind = resolve_file_kind(file_path)
        structural = None
        if isinstance(kind, Structured):
            structural = self.structural_engine.create_structural_diff(baseline.code, modified_code, kind.grammar)
        stats = self.diff_engine.get_diff_stats(unified)

        existing = None
        if options.use_upsert and options.change_type == ChangeType.MANUAL_EDIT.value:
            existing = self._store.find_open_manual_patch(options.store_id, file_path, options.created_by)

        if existing is not None:
            note = f"[{_clock()}] {options.change_description or 'Auto-save'}"
            description = f"{existing.change_description}\n{note}" if existing.change_description else note
            self._store.update_patch_diff(
                existing.id,
                unified_diff=unified,
                structural_diff=structural,
                change_summary=options.change_summary or None,
                change_description=description,
                baseline_version=baseline.version,
            )
            LOGGER.debug("Updated open patch %s for %s", existing.id, file_path)
            emit_event(
                "patch.updated",
                patch_id=existing.id,
                store_id=options.store_id,
                file_path=file_path,
                additions=stats.additions,
                deletions=stats.deletions,
            )
            return UpsertResult(patch_id=existing.id, action="updated", diff_stats=stats)

        name = options.patch_name or f"Auto-save {PurePosixPath(file_path).name} ({_clock()})"
        description = options.change_description
        if options.change_type == ChangeType.MANUAL_EDIT.value and options.use_upsert:
            description = f"[{_clock()}] {options.change_description or 'Auto-save'}"
        patch = self._store.insert_patch(
            Patch(
                release_id=options.release_id,
                store_id=options.store_id,
                file_path=file_path,
                patch_name=name,
                change_type=options.change_type,
                unified_diff=unified,
                structural_diff=structural,
                change_summary=options.change_summary,
                change_description=description,
                baseline_version=baseline.version,
                priority=options.priority,
                created_by=options.created_by,
                session_id=options.session_id,
            )
        )
        LOGGER.debug("Created patch %s for %s", patch.id, file_path)
        emit_event(
            "patch.created",
            patch_id=patch.id,
            store_id=options.store_id,
            file_path=file_path,
            change_type=options.change_type,
            additions=stats.additions,
            deletions=stats.deletions,
        )
        return UpsertResult(patch_id=patch.id, action="created", diff_stats=stats)

    def finalize(
        self,
        session_id: Optional[str],
        *,
        store_id: Optional[str] = None,
        created_by: Optional[str] = None,
        file_path: Optional[str] = None,
        finalize_all: bool = False,
    ) -> List[Patch]:
        """Move matching open manual edits to ``ready_for_review``.

        Patches are scoped by store, author and optionally file rather than by
        ``session_id``, since an upserted patch outlives the session that
        created it.  Both ``store_id`` and ``created_by`` are required unless
        ``finalize_all`` is set, which drops the scope entirely.
        """
        if not finalize_all and (not store_id or not created_by):
            raise ValidationFailure(
                "Finalizing requires store_id and created_by unless finalize_all is set",
                details={"store_id": store_id, "created_by": created_by},
            )
        note = f"[Finalized at {_clock()}]"
        if finalize_all:
            finalized = self._store.finalize_open_patches(note=note)
        else:
            finalized = self._store.finalize_open_patches(
                note=note,
                store_id=store_id,
                created_by=created_by,
                file_path=file_path,
            )
        LOGGER.info("Finalized %s patch(es) for session %s", len(finalized), session_id)
        return finalized
