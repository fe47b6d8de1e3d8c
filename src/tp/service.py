"""Facade tying selection, composition, sessions and releases to one store."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .cache import CompositionCache, InMemoryCompositionCache, NullCompositionCache, cache_key
from .composer import CompositionResult, PatchApplicationEngine
from .diff.engine import DiffEngine, emit_event
from .diff.providers import DEFAULT_TIMEOUT_SECONDS, build_provider
from .diff.structural import StructuralDiffEngine
from .errors import (
    BaselineNotFound,
    NoChangesDetected,
    PatchEngineError,
    PatchNotFound,
    PersistenceFailure,
)
from .releases import ReleaseManager
from .selector import DEFAULT_MAX_PATCHES, PatchSelector, SelectionContext
from .sessions import EditSessionAccumulator, PatchOptions
from .store import (
    ApplicationLogEntry,
    Baseline,
    ChangeType,
    Patch,
    PatchLog,
    PatchStatus,
    PatchStore,
    Release,
    ReleaseStatus,
    ReleaseSummary,
)

LOGGER = logging.getLogger(__name__)


class ResultModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ApplyOptions(ResultModel):
    """Request context for composing one file."""

    store_id: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    release_version: Optional[str] = None
    ab_variant: Optional[str] = None
    preview_mode: bool = False
    max_patches: int = DEFAULT_MAX_PATCHES
    log_applications: bool = True

    def selection(self) -> SelectionContext:
        return SelectionContext(
            store_id=self.store_id,
            user_id=self.user_id,
            release_version=self.release_version,
            ab_variant=self.ab_variant,
            preview_mode=self.preview_mode,
            max_patches=self.max_patches,
        )

    def cache_fields(self, file_path: str) -> Dict[str, Any]:
        return {
            "file_path": file_path,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "release_version": self.release_version,
            "ab_variant": self.ab_variant,
            "preview_mode": self.preview_mode,
        }


class AppliedPatch(ResultModel):
    id: str
    patch_name: str
    change_type: str
    change_summary: str = ""
    priority: int = 0
    unified_diff: str = ""
    release_id: Optional[str] = None


class PatchDetail(ResultModel):
    id: str
    name: str
    change_type: str
    priority: int = 0
    status: str
    error: Optional[str] = None
    duration_ms: float = 0.0


class ApplyPatchesResult(ResultModel):
    success: bool
    has_patches: bool = False
    baseline_code: Optional[str] = None
    patched_code: Optional[str] = None
    applied_patches: List[AppliedPatch] = Field(default_factory=list)
    total_patches: int = 0
    applied_count: int = 0
    patch_details: List[PatchDetail] = Field(default_factory=list)
    content_hash: Optional[str] = None
    cache_key: Optional[str] = None
    error: Optional[str] = None


class CreatePatchResult(ResultModel):
    success: bool
    patch_id: Optional[str] = None
    diff_stats: Dict[str, int] = Field(default_factory=dict)
    action: Optional[str] = None
    error: Optional[str] = None


class FinalizeResult(ResultModel):
    success: bool
    finalized_count: int = 0
    patch_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class OperationResult(ResultModel):
    success: bool
    error: Optional[str] = None


class PatchService:
    """Entry point used by the CLI and by embedding applications."""

    def __init__(
        self,
        store: PatchStore,
        *,
        diff_engine: Optional[DiffEngine] = None,
        structural_engine: Optional[StructuralDiffEngine] = None,
        cache: Optional[CompositionCache] = None,
        max_patches: int = DEFAULT_MAX_PATCHES,
    ) -> None:
        self.store = store
        self.diff_engine = diff_engine or DiffEngine()
        self.structural_engine = structural_engine or StructuralDiffEngine()
        self.cache: CompositionCache = cache if cache is not None else InMemoryCompositionCache()
        self.max_patches = max_patches
        self.selector = PatchSelector(store)
        self.composer = PatchApplicationEngine(self.diff_engine, self.structural_engine)
        self.sessions = EditSessionAccumulator(store, self.diff_engine, self.structural_engine)
        self.releases = ReleaseManager(store, on_change=lambda _release: self.clear_cache())

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, store: Optional[PatchStore] = None) -> "PatchService":
        diff_cfg = config.get("diff") or {}
        composition_cfg = config.get("composition") or {}
        context_lines = int(diff_cfg.get("context_lines", 3))
        provider = build_provider(
            str(diff_cfg.get("provider", "auto")),
            timeout=float(diff_cfg.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            context_lines=context_lines,
        )
        cache: CompositionCache = (
            InMemoryCompositionCache() if composition_cfg.get("cache_enabled", True) else NullCompositionCache()
        )
        return cls(
            store or PatchStore.from_config(config),
            diff_engine=DiffEngine(provider, context_lines=context_lines),
            cache=cache,
            max_patches=int(composition_cfg.get("max_patches", DEFAULT_MAX_PATCHES)),
        )

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "PatchService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Composition ---------------------------------------------------------------------
    def apply_patches(self, file_path: str, options: ApplyOptions) -> ApplyPatchesResult:
        """Compose the visible patches for ``file_path`` on top of its latest baseline."""
        key = cache_key(options.cache_fields(file_path))
        cached = self.cache.get(file_path, key)
        if cached is not None:
            return cached.model_copy(deep=True)

        selection = options.selection()
        selection.max_patches = min(selection.max_patches, self.max_patches)
        try:
            baseline = self._require_baseline(options.store_id, file_path)
            patches = self.selector.select(file_path, selection)
        except PatchEngineError as error:
            LOGGER.warning("Unable to compose %s: %s", file_path, error)
            return ApplyPatchesResult(success=False, error=str(error), cache_key=key)

        if not patches:
            result = ApplyPatchesResult(
                success=True,
                has_patches=False,
                baseline_code=baseline.code,
                patched_code=baseline.code,
                content_hash=baseline.content_hash,
                cache_key=key,
            )
            self.cache.set(file_path, key, result.model_copy(deep=True))
            return result

        composition = self.composer.apply(baseline.code, patches, file_path)
        if not options.preview_mode and options.log_applications:
            self._record_logs(file_path, options, baseline, patches, composition)

        emit_event(
            "composition.completed",
            store_id=options.store_id,
            file_path=file_path,
            applied=composition.applied_count,
            total=composition.total_patches,
            preview=options.preview_mode,
            content_hash=composition.content_hash,
        )
        result = self._to_result(baseline, patches, composition, key)
        self.cache.set(file_path, key, result.model_copy(deep=True))
        return result

    def clear_cache(self, file_path: Optional[str] = None) -> None:
        self.cache.clear(file_path)

    def _to_result(
        self,
        baseline: Baseline,
        patches: List[Patch],
        composition: CompositionResult,
        key: str,
    ) -> ApplyPatchesResult:
        entries: Dict[str, ApplicationLogEntry] = {entry.patch_id: entry for entry in composition.log}
        applied_ids = set(composition.applied_patch_ids)
        return ApplyPatchesResult(
            success=True,
            has_patches=composition.applied_count > 0,
            baseline_code=baseline.code,
            patched_code=composition.patched_code,
            applied_patches=[
                AppliedPatch(
                    id=patch.id,
                    patch_name=patch.patch_name,
                    change_type=patch.change_type,
                    change_summary=patch.change_summary,
                    priority=patch.priority,
                    unified_diff=patch.unified_diff,
                    release_id=patch.release_id,
                )
                for patch in patches
                if patch.id in applied_ids
            ],
            total_patches=composition.total_patches,
            applied_count=composition.applied_count,
            patch_details=[
                PatchDetail(
                    id=patch.id,
                    name=patch.patch_name,
                    change_type=patch.change_type,
                    priority=patch.priority,
                    status=entries[patch.id].status.value,
                    error=entries[patch.id].error,
                    duration_ms=entries[patch.id].duration_ms,
                )
                for patch in patches
            ],
            content_hash=composition.content_hash,
            cache_key=key,
        )

    def _record_logs(
        self,
        file_path: str,
        options: ApplyOptions,
        baseline: Baseline,
        patches: List[Patch],
        composition: CompositionResult,
    ) -> None:
        releases = {patch.id: patch.release_id for patch in patches}
        rows = [
            PatchLog(
                store_id=options.store_id,
                patch_id=entry.patch_id,
                release_id=releases.get(entry.patch_id),
                applied_by=options.user_id or "system",
                user_id=options.user_id,
                session_id=options.session_id,
                ab_variant=options.ab_variant,
                file_path=file_path,
                baseline_hash=baseline.content_hash,
                result_hash=composition.content_hash,
                status=entry.status,
                error_message=entry.error,
                duration_ms=entry.duration_ms,
            )
            for entry in composition.log
        ]
        try:
            self.store.record_patch_logs(rows)
        except PersistenceFailure as error:
            LOGGER.error("Failed to record patch application logs for %s: %s", file_path, error)

    # Baselines -----------------------------------------------------------------------
    def save_baseline(self, store_id: str, file_path: str, code: str) -> Baseline:
        return self.store.save_baseline(store_id, file_path, code)

    def get_baseline(self, store_id: str, file_path: str, version: Optional[int] = None) -> Baseline:
        return self._require_baseline(store_id, file_path, version)

    def _require_baseline(self, store_id: str, file_path: str, version: Optional[int] = None) -> Baseline:
        baseline = self.store.get_baseline(store_id, file_path, version)
        if baseline is None:
            raise BaselineNotFound(
                f"No baseline found for file: {file_path}",
                details={"store_id": store_id, "file_path": file_path, "version": version},
            )
        return baseline

    # Patches -------------------------------------------------------------------------
    def create_patch(self, file_path: str, modified_code: str, options: PatchOptions) -> CreatePatchResult:
        try:
            outcome = self.sessions.upsert(file_path, modified_code, options)
        except NoChangesDetected:
            return CreatePatchResult(success=False, error="Could not create diff - no changes detected")
        except PatchEngineError as error:
            LOGGER.warning("Unable to create patch for %s: %s", file_path, error)
            return CreatePatchResult(success=False, error=str(error))
        return CreatePatchResult(
            success=True,
            patch_id=outcome.patch_id,
            diff_stats=outcome.diff_stats.to_dict(),
            action=outcome.action,
        )

    def list_patches(
        self,
        file_path: str,
        store_id: str,
        *,
        status: Optional[PatchStatus] = None,
        release_version: Optional[str] = None,
    ) -> List[Patch]:
        return self.store.list_patches(store_id, file_path, status=status, release_version=release_version)

    def get_patch(self, patch_id: str) -> Patch:
        patch = self.store.get_patch(patch_id)
        if patch is None:
            raise PatchNotFound(f"Patch {patch_id} not found", details={"patch_id": patch_id})
        return patch

    def revert_patch(self, patch_id: str, created_by: str) -> CreatePatchResult:
        """Record a ``revert`` patch that undoes ``patch_id`` when composed after it."""
        try:
            original = self.get_patch(patch_id)
            reversed_diff = self.diff_engine.reverse_diff(original.unified_diff)
            if not reversed_diff:
                return CreatePatchResult(success=False, error="Patch has no line diff to reverse")
            baseline = self._require_baseline(original.store_id, original.file_path)
            patch = self.store.insert_patch(
                Patch(
                    store_id=original.store_id,
                    file_path=original.file_path,
                    patch_name=f"Revert {original.patch_name}",
                    change_type=ChangeType.REVERT.value,
                    unified_diff=reversed_diff,
                    change_summary=f"Reverts {original.id}",
                    baseline_version=baseline.version,
                    priority=original.priority + 1,
                    created_by=created_by,
                )
            )
        except PatchEngineError as error:
            return CreatePatchResult(success=False, error=str(error))
        return CreatePatchResult(
            success=True,
            patch_id=patch.id,
            diff_stats=self.diff_engine.get_diff_stats(reversed_diff).to_dict(),
            action="created",
        )

    def remove_change(self, patch_id: str, target_text: str) -> CreatePatchResult:
        """Drop one added line from a stored patch's line diff."""
        try:
            patch = self.get_patch(patch_id)
            updated = self.diff_engine.remove_change(patch.unified_diff, target_text)
            if updated == patch.unified_diff:
                return CreatePatchResult(success=False, patch_id=patch_id, error=f"No added line matches {target_text!r}")
            self.store.update_patch_diff(patch_id, unified_diff=updated, structural_diff=None)
        except PatchEngineError as error:
            return CreatePatchResult(success=False, patch_id=patch_id, error=str(error))
        return CreatePatchResult(
            success=True,
            patch_id=patch_id,
            diff_stats=self.diff_engine.get_diff_stats(updated).to_dict(),
            action="updated",
        )

    def finalize_edit_session(
        self,
        session_id: Optional[str],
        *,
        store_id: Optional[str] = None,
        created_by: Optional[str] = None,
        file_path: Optional[str] = None,
        finalize_all: bool = False,
    ) -> FinalizeResult:
        try:
            finalized = self.sessions.finalize(
                session_id,
                store_id=store_id,
                created_by=created_by,
                file_path=file_path,
                finalize_all=finalize_all,
            )
        except PatchEngineError as error:
            return FinalizeResult(success=False, error=str(error))
        return FinalizeResult(
            success=True,
            finalized_count=len(finalized),
            patch_ids=[patch.id for patch in finalized],
        )

    def set_user_exclusions(self, user_id: str, store_id: str, excluded: List[str]) -> None:
        self.store.set_user_exclusions(user_id, store_id, excluded)

    # Releases ------------------------------------------------------------------------
    def create_release(
        self,
        store_id: str,
        version_name: str,
        created_by: str,
        **kwargs: Any,
    ) -> Release:
        return self.releases.create_release(store_id, version_name, created_by, **kwargs)

    def list_releases(self, store_id: str, status: Optional[ReleaseStatus] = None) -> List[ReleaseSummary]:
        return self.releases.list_releases(store_id, status)

    def assign_patches(self, release_id: str, file_path: Optional[str] = None) -> int:
        return self.releases.assign_patches(release_id, file_path)

    def publish_release(self, release_id: str) -> OperationResult:
        try:
            self.releases.publish(release_id)
        except PatchEngineError as error:
            LOGGER.warning("Publish of release %s failed: %s", release_id, error)
            return OperationResult(success=False, error=str(error))
        return OperationResult(success=True)

    def rollback_release(self, release_id: str, reason: str = "") -> OperationResult:
        try:
            self.releases.rollback(release_id, reason)
        except PatchEngineError as error:
            LOGGER.warning("Rollback of release %s failed: %s", release_id, error)
            return OperationResult(success=False, error=str(error))
        return OperationResult(success=True)

    def get_stats(self, store_id: str) -> Dict[str, int]:
        stats = self.store.get_stats(store_id)
        stats["baselines"] = len(self.store.list_baselines(store_id))
        return stats

