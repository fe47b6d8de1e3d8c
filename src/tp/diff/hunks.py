"""Parsing and formatting helpers for single-file unified diffs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Tuple

HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<section>.*)$"
)


def normalise_line_endings(text: str) -> str:
    """Convert CRLF/CR sequences to LF for deterministic diffs."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _default_count(value: str | None) -> int:
    return int(value) if value is not None else 1


@dataclass(slots=True)
class Hunk:
    """One ``@@`` block of a unified diff with its raw body lines."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str = ""
    lines: List[str] = field(default_factory=list)

    @property
    def old_lines(self) -> List[str]:
        return [line[1:] for line in self.lines if line[:1] in (" ", "-")]

    @property
    def new_lines(self) -> List[str]:
        return [line[1:] for line in self.lines if line[:1] in (" ", "+")]

    @property
    def has_changes(self) -> bool:
        return any(line[:1] in ("+", "-") for line in self.lines)

    def header(self) -> str:
        return f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@{self.section}"

    def render(self) -> List[str]:
        return [self.header(), *self.lines]


def parse_hunks(diff: str) -> Tuple[List[str], List[Hunk]]:
    """Split ``diff`` into its preamble lines and hunks.

    Lines before the first hunk header form the preamble (``---``/``+++``
    headers and any ``diff --git`` noise).  Every line after a header belongs
    to that hunk until the next header; lines without a ``' '``, ``'+'`` or
    ``'-'`` prefix are kept but carry no meaning for application.
    """
    preamble: List[str] = []
    hunks: List[Hunk] = []
    current: Hunk | None = None

    lines = diff.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    for line in lines:
        if line.startswith("@@"):
            match = HUNK_HEADER.match(line)
            if match:
                current = Hunk(
                    old_start=int(match.group("old_start")),
                    old_count=_default_count(match.group("old_count")),
                    new_start=int(match.group("new_start")),
                    new_count=_default_count(match.group("new_count")),
                    section=match.group("section") or "",
                )
                hunks.append(current)
                continue
        if current is None:
            preamble.append(line)
        else:
            current.lines.append(line)
    return preamble, hunks


def render_diff(preamble: List[str], hunks: List[Hunk]) -> str:
    """Join a preamble and hunks back into newline-terminated diff text."""
    lines = [*preamble]
    for hunk in hunks:
        lines.extend(hunk.render())
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def rewrite_file_headers(diff: str, label: str) -> str:
    """Drop tool-specific preamble and point ``---``/``+++`` at ``a/``/``b/`` markers."""
    _, hunks = parse_hunks(diff)
    if not hunks:
        return diff
    return render_diff([f"--- a/{label}", f"+++ b/{label}"], hunks)
