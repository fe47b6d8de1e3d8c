"""Sequential composition of ordered patches on top of a baseline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .diff.engine import DiffEngine
from .diff.structural import FileKind, Structured, StructuralDiffEngine, resolve_file_kind
from .errors import PatchEngineError, ValidationFailure
from .store import ApplicationLogEntry, LogStatus, Patch, content_hash

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CompositionResult:
    """Final text of a composition run plus its per-patch log."""

    patched_code: str
    applied_count: int
    total_patches: int
    log: List[ApplicationLogEntry] = field(default_factory=list)
    content_hash: str = ""

    @property
    def applied_patch_ids(self) -> List[str]:
        return [entry.patch_id for entry in self.log if entry.status is LogStatus.SUCCESS]


class PatchApplicationEngine:
    """Apply patches one at a time, keeping the last good text when a patch fails.

    For structured files a candidate is only rejected for failing to parse
    when the text it was applied to did parse, so templates the grammar
    cannot read still take line-diff patches.
    """

    def __init__(
        self,
        diff_engine: Optional[DiffEngine] = None,
        structural_engine: Optional[StructuralDiffEngine] = None,
    ) -> None:
        self.diff_engine = diff_engine or DiffEngine()
        self.structural_engine = structural_engine or StructuralDiffEngine()

    def apply(self, baseline_code: str, patches: Sequence[Patch], file_path: str) -> CompositionResult:
        kind = resolve_file_kind(file_path)
        current_code = baseline_code
        current_parses = self._parses(current_code, kind)
        log: List[ApplicationLogEntry] = []

        for patch in patches:
            started = time.perf_counter()
            try:
                candidate = self._apply_one(current_code, patch, kind)
                candidate_parses = self._validate(candidate, kind, current_parses)
            except PatchEngineError as error:
                LOGGER.warning("Patch %s (%s) failed on %s: %s", patch.id, patch.patch_name, file_path, error)
                log.append(self._failed(patch, str(error), started))
                continue
            except Exception as error:
                LOGGER.exception("Patch %s (%s) raised while composing %s", patch.id, patch.patch_name, file_path)
                log.append(self._failed(patch, f"{type(error).__name__}: {error}", started))
                continue

            current_code = candidate
            current_parses = candidate_parses
            log.append(
                ApplicationLogEntry(
                    patch_id=patch.id,
                    patch_name=patch.patch_name,
                    status=LogStatus.SUCCESS,
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                )
            )

        applied = sum(1 for entry in log if entry.status is LogStatus.SUCCESS)
        return CompositionResult(
            patched_code=current_code,
            applied_count=applied,
            total_patches=len(patches),
            log=log,
            content_hash=content_hash(current_code),
        )

    @staticmethod
    def _failed(patch: Patch, error: str, started: float) -> ApplicationLogEntry:
        return ApplicationLogEntry(
            patch_id=patch.id,
            patch_name=patch.patch_name,
            status=LogStatus.FAILED,
            error=error,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _apply_one(self, code: str, patch: Patch, kind: FileKind) -> str:
        if patch.structural_diff and isinstance(kind, Structured):
            return self.structural_engine.apply_structural_diff(code, patch.structural_diff, kind.grammar)
        if patch.unified_diff and patch.unified_diff.strip():
            return self.diff_engine.apply_diff(code, patch.unified_diff)
        raise ValidationFailure("no diff data", details={"patch_id": patch.id})

    def _parses(self, code: str, kind: FileKind) -> bool:
        return isinstance(kind, Structured) and self.structural_engine.is_parseable(code, kind.grammar)

    def _validate(self, candidate: str, kind: FileKind, previous_parses: bool) -> bool:
        """Reject empty output and output that stopped parsing; return whether it parses."""
        if not candidate or not candidate.strip():
            raise ValidationFailure("Patched code is empty")
        parses = self._parses(candidate, kind)
        if previous_parses and not parses:
            raise ValidationFailure(f"Patched code no longer parses as {kind.grammar.name}")
        return parses
