"""Persistence layer for baselines, patches, and releases."""

from .schema import (
    ApplicationLogEntry,
    Baseline,
    CandidatePatch,
    ChangeType,
    LogStatus,
    Patch,
    PatchLog,
    PatchStatus,
    Release,
    ReleaseStatus,
    ReleaseSummary,
    ReleaseType,
    TextChange,
    UserPatchPreference,
)
from .store import PatchStore, content_hash

__all__ = [
    "ApplicationLogEntry",
    "Baseline",
    "CandidatePatch",
    "ChangeType",
    "LogStatus",
    "Patch",
    "PatchLog",
    "PatchStatus",
    "PatchStore",
    "Release",
    "ReleaseStatus",
    "ReleaseSummary",
    "ReleaseType",
    "TextChange",
    "UserPatchPreference",
    "content_hash",
]
