"""Line-based and structural diff engines."""

from .engine import DiffEngine, DiffStats, emit_event
from .hunks import Hunk, normalise_line_endings
from .providers import DiffProvider, DifflibDiffProvider, GitDiffProvider, build_provider
from .structural import (
    FileKind,
    MarkupGrammar,
    PlainText,
    PythonGrammar,
    Structured,
    StructuralDiffEngine,
    resolve_file_kind,
)

__all__ = [
    "DiffEngine",
    "DiffProvider",
    "DiffStats",
    "DifflibDiffProvider",
    "FileKind",
    "GitDiffProvider",
    "Hunk",
    "MarkupGrammar",
    "PlainText",
    "PythonGrammar",
    "StructuralDiffEngine",
    "Structured",
    "build_provider",
    "emit_event",
    "normalise_line_endings",
    "resolve_file_kind",
]
