"""Layered, versioned patches for tenant source files."""

from .service import ApplyOptions, ApplyPatchesResult, PatchService
from .sessions import PatchOptions

__all__ = ["ApplyOptions", "ApplyPatchesResult", "PatchOptions", "PatchService"]
