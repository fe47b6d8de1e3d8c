"""Line-based unified diff engine with a pure fallback for every provider call."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from ..errors import DiffApplyError, DiffProviderError
from .hunks import HUNK_HEADER, Hunk, normalise_line_endings, parse_hunks, render_diff, rewrite_file_headers
from .providers import DiffProvider, DifflibDiffProvider

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("tp.telemetry")

_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass(frozen=True, slots=True)
class DiffStats:
    """Counts of added and removed lines in a diff."""

    additions: int = 0
    deletions: int = 0

    @property
    def changes(self) -> int:
        return self.additions + self.deletions

    def to_dict(self) -> dict[str, int]:
        return {"additions": self.additions, "deletions": self.deletions, "changes": self.changes}


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event as compact JSON."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    payload.update(fields)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str))


class DiffEngine:
    """Create and apply unified diffs through a provider, falling back when it fails."""

    def __init__(self, provider: DiffProvider | None = None, *, context_lines: int = 3) -> None:
        self.provider = provider or DifflibDiffProvider(context_lines=context_lines)
        self.context_lines = context_lines

    # Creation ------------------------------------------------------------------------
    def create_diff(self, original: str, modified: str, file_path: str = "file") -> Optional[str]:
        """Return a unified diff, ``""`` when the texts match, or ``None`` on failure."""
        before = normalise_line_endings(original or "")
        after = normalise_line_endings(modified or "")
        if before == after:
            return ""

        try:
            produced = self.provider.diff(before, after, label=file_path)
        except DiffProviderError as error:
            LOGGER.warning("Diff provider %s failed for %s: %s", self.provider.name, file_path, error)
            produced = ""

        if produced.strip() and self.validate_diff(produced):
            return rewrite_file_headers(produced, file_path)

        emit_event("diff.fallback", file_path=file_path, provider=self.provider.name, stage="create")
        fallback = self.fallback_diff(before, after, file_path)
        return fallback or None

    def fallback_diff(self, original: str, modified: str, file_path: str = "file") -> str:
        """Emit one hunk spanning the first through last differing line.

        Lines are compared by position.  Inside the span, equal pairs become
        context and unequal pairs become a deletion followed by an addition,
        so the hunk replays exactly with the fallback walker.
        """
        old_lines = original.split("\n")
        new_lines = modified.split("\n")
        span = max(len(old_lines), len(new_lines))

        def at(lines: List[str], index: int) -> Optional[str]:
            return lines[index] if index < len(lines) else None

        differing = [index for index in range(span) if at(old_lines, index) != at(new_lines, index)]
        if not differing:
            return ""
        first, last = differing[0], differing[-1]
        start = max(0, first - self.context_lines)
        end = min(span, last + self.context_lines + 1)

        body: List[str] = []
        for index in range(start, end):
            old_line = at(old_lines, index)
            new_line = at(new_lines, index)
            if old_line == new_line:
                body.append(f" {old_line}")
                continue
            if old_line is not None:
                body.append(f"-{old_line}")
            if new_line is not None:
                body.append(f"+{new_line}")

        hunk = Hunk(
            old_start=start + 1,
            old_count=sum(1 for line in body if line[:1] in (" ", "-")),
            new_start=start + 1,
            new_count=sum(1 for line in body if line[:1] in (" ", "+")),
            lines=body,
        )
        return render_diff([f"--- a/{file_path}", f"+++ b/{file_path}"], [hunk])

    # Application ---------------------------------------------------------------------
    def apply_diff(self, original: str, diff: str) -> str:
        """Apply ``diff`` to ``original``; blank diffs return the input untouched."""
        if not diff or not diff.strip():
            return original
        text = normalise_line_endings(original)
        try:
            return self.provider.apply(text, normalise_line_endings(diff))
        except DiffProviderError as error:
            LOGGER.debug("Diff provider %s could not apply patch: %s", self.provider.name, error)
            emit_event("diff.fallback", provider=self.provider.name, stage="apply", reason=str(error))
        return self.fallback_apply(text, normalise_line_endings(diff))

    def fallback_apply(self, original: str, diff: str) -> str:
        """Walk each hunk against the original lines, tolerating context drift."""
        _, hunks = parse_hunks(diff)
        if not hunks:
            raise DiffApplyError("Diff contains no hunk headers", details={"diff_preview": diff[:200]})

        result = original.split("\n")
        offset = 0
        for hunk in hunks:
            cursor = (hunk.old_start - 1 if hunk.old_count else hunk.old_start) + offset
            cursor = max(0, min(cursor, len(result)))
            for line in hunk.lines:
                prefix = line[:1]
                if prefix == " ":
                    cursor += 1
                elif prefix == "-":
                    if cursor < len(result):
                        del result[cursor]
                        offset -= 1
                elif prefix == "+":
                    result.insert(cursor, line[1:])
                    cursor += 1
                    offset += 1
        return "\n".join(result)

    # Inspection and rewriting --------------------------------------------------------
    @staticmethod
    def get_diff_stats(diff: Optional[str]) -> DiffStats:
        if not diff:
            return DiffStats()
        additions = deletions = 0
        for line in diff.split("\n"):
            if line.startswith("+") and not line.startswith("+++"):
                additions += 1
            elif line.startswith("-") and not line.startswith("---"):
                deletions += 1
        return DiffStats(additions=additions, deletions=deletions)

    @staticmethod
    def parse_hunks(diff: Optional[str]) -> List[Hunk]:
        if not diff:
            return []
        _, hunks = parse_hunks(diff)
        return hunks

    @staticmethod
    def validate_diff(diff: Optional[str]) -> bool:
        """Return True when ``diff`` carries file headers and at least one hunk."""
        if not diff:
            return False
        lines = diff.split("\n")
        has_header = any(line.startswith("---") or line.startswith("+++") for line in lines)
        has_hunk = any(HUNK_HEADER.match(line) for line in lines)
        return has_header and has_hunk

    @staticmethod
    def reverse_diff(diff: Optional[str]) -> Optional[str]:
        """Build the undo diff by swapping markers and hunk ranges."""
        if not diff:
            return None
        preamble, hunks = parse_hunks(diff)

        old_header = next((line for line in preamble if line.startswith("---")), None)
        new_header = next((line for line in preamble if line.startswith("+++")), None)
        swapped_preamble: List[str] = []
        for line in preamble:
            if line.startswith("---") and new_header is not None:
                swapped_preamble.append("---" + new_header[3:])
            elif line.startswith("+++") and old_header is not None:
                swapped_preamble.append("+++" + old_header[3:])
            else:
                swapped_preamble.append(line)

        reversed_hunks: List[Hunk] = []
        for hunk in hunks:
            lines: List[str] = []
            for line in hunk.lines:
                if line.startswith("+"):
                    lines.append("-" + line[1:])
                elif line.startswith("-"):
                    lines.append("+" + line[1:])
                else:
                    lines.append(line)
            reversed_hunks.append(
                Hunk(
                    old_start=hunk.new_start,
                    old_count=hunk.new_count,
                    new_start=hunk.old_start,
                    new_count=hunk.old_count,
                    section=hunk.section,
                    lines=lines,
                )
            )
        return render_diff(swapped_preamble, reversed_hunks)

    @staticmethod
    def remove_change(diff: Optional[str], target_text: str) -> str:
        """Strip one addition line matching ``target_text`` from its hunk.

        Matching is tried in precedence order across the whole diff: exact
        text, HTML-stripped text, single-word equality, then substring
        containment.  A hunk left without additions or deletions is dropped.
        """
        if not diff:
            return ""
        preamble, hunks = parse_hunks(diff)

        for matcher in _CHANGE_MATCHERS:
            for hunk in hunks:
                for index, line in enumerate(hunk.lines):
                    if not line.startswith("+"):
                        continue
                    if not matcher(line[1:].strip(), target_text.strip()):
                        continue
                    del hunk.lines[index]
                    hunk.new_count = max(0, hunk.new_count - 1)
                    remaining = [item for item in hunks if item.has_changes]
                    if not remaining:
                        return ""
                    return render_diff(preamble, remaining)
        return diff


def _strip_html(value: str) -> str:
    return _HTML_TAG.sub("", value).strip()


def _exact(added: str, target: str) -> bool:
    return bool(added) and added == target


def _html_stripped(added: str, target: str) -> bool:
    cleaned = _strip_html(added)
    return bool(cleaned) and cleaned == _strip_html(target)


def _single_word(added: str, target: str) -> bool:
    words_added = _strip_html(added).split()
    words_target = _strip_html(target).split()
    return len(words_added) == 1 and len(words_target) == 1 and words_added[0] == words_target[0]


def _contains(added: str, target: str) -> bool:
    cleaned_added = _strip_html(added)
    cleaned_target = _strip_html(target)
    if not cleaned_added or not cleaned_target:
        return False
    if len(cleaned_added.split()) == 1 and len(cleaned_target.split()) == 1:
        return False
    return cleaned_target in cleaned_added or cleaned_added in cleaned_target


_CHANGE_MATCHERS: tuple[Callable[[str, str], bool], ...] = (_exact, _html_stripped, _single_word, _contains)
