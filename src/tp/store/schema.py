"""Typed records tracked by the patch store."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a fresh random identifier for a stored record."""
    return uuid.uuid4().hex


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class PatchStatus(str, Enum):
    """Lifecycle states for a patch."""

    OPEN = "open"
    READY_FOR_REVIEW = "ready_for_review"
    PUBLISHED = "published"
    ROLLED_BACK = "rolled_back"


class ReleaseStatus(str, Enum):
    """Lifecycle states for a release."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ROLLED_BACK = "rolled_back"


class ReleaseType(str, Enum):
    """Semantic weight of a release."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    HOTFIX = "hotfix"


class ChangeType(str, Enum):
    """Known change types; only ``manual_edit`` patches are accumulated."""

    MANUAL_EDIT = "manual_edit"
    AI_EDIT = "ai_edit"
    REVERT = "revert"
    IMPORT = "import"


class LogStatus(str, Enum):
    """Outcome of applying one patch during a composition run."""

    SUCCESS = "success"
    FAILED = "failed"


class TextChange(RecordModel):
    """Single text-leaf substitution recorded by the structural diff."""

    old: str
    new: str


class Baseline(RecordModel):
    """Immutable starting text for one version of a tenant file."""

    store_id: str
    file_path: str
    version: int
    code: str
    content_hash: str
    created_at: datetime = Field(default_factory=utc_now)


class Patch(RecordModel):
    """One named, diff-bearing modification layered atop a baseline."""

    id: str = Field(default_factory=new_id)
    release_id: Optional[str] = None
    store_id: str
    file_path: str
    patch_name: str
    change_type: str = ChangeType.MANUAL_EDIT.value
    unified_diff: str
    structural_diff: Optional[List[TextChange]] = None
    change_summary: str = ""
    change_description: str = ""
    baseline_version: int
    priority: int = 0
    status: PatchStatus = PatchStatus.OPEN
    created_by: str
    session_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Release(RecordModel):
    """Versioned, publishable bundle of patches with optional A/B config."""

    id: str = Field(default_factory=new_id)
    store_id: str
    version_name: str
    version_number: int
    release_type: ReleaseType = ReleaseType.MINOR
    description: str = ""
    ab_test_config: Optional[Dict[str, Any]] = None
    status: ReleaseStatus = ReleaseStatus.DRAFT
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    published_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None
    rollback_reason: Optional[str] = None


class ReleaseSummary(RecordModel):
    """Release row joined with the number of patches it owns."""

    release: Release
    patch_count: int = 0


class CandidatePatch(RecordModel):
    """Patch row joined with the owning release's selection attributes."""

    patch: Patch
    version_name: Optional[str] = None
    release_status: Optional[ReleaseStatus] = None
    ab_test_config: Optional[Dict[str, Any]] = None


class ApplicationLogEntry(RecordModel):
    """Per-patch outcome of a single composition run."""

    patch_id: str
    patch_name: str = ""
    status: LogStatus
    error: Optional[str] = None
    duration_ms: float = 0.0


class PatchLog(RecordModel):
    """Persisted audit row for one patch application."""

    id: str = Field(default_factory=new_id)
    store_id: str
    patch_id: str
    release_id: Optional[str] = None
    applied_by: str = "system"
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ab_variant: Optional[str] = None
    file_path: str
    baseline_hash: str
    result_hash: str
    status: LogStatus
    error_message: Optional[str] = None
    duration_ms: float = 0.0
    created_at: datetime = Field(default_factory=utc_now)


class UserPatchPreference(RecordModel):
    """Per-user opt-outs from individual patches."""

    user_id: str
    store_id: str
    excluded_patches: List[str] = Field(default_factory=list)
