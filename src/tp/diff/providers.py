"""Pluggable primary diff providers.

A provider turns two texts into a unified diff and applies a unified diff to
a text.  Providers signal failure by raising :class:`DiffProviderError`; an
empty string from :meth:`DiffProvider.diff` means "no difference", which lets
the engine tell a broken tool apart from a genuine no-op.
"""

from __future__ import annotations

import difflib
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from ..errors import DiffProviderError
from .hunks import parse_hunks, rewrite_file_headers

DEFAULT_TIMEOUT_SECONDS = 10.0


@runtime_checkable
class DiffProvider(Protocol):
    """Contract shared by every primary diff tool."""

    name: str

    def diff(self, original: str, modified: str, *, label: str = "file") -> str:
        ...

    def apply(self, text: str, diff: str) -> str:
        ...


class GitDiffProvider:
    """Diff provider backed by ``git diff --no-index`` and ``git apply``.

    Every invocation is bounded by ``timeout`` seconds and runs inside a
    throwaway directory so the surrounding repository (if any) is untouched.
    """

    name = "git"

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT_SECONDS, git_binary: str = "git") -> None:
        self._timeout = timeout
        self._git = git_binary

    @staticmethod
    def available(git_binary: str = "git") -> bool:
        return shutil.which(git_binary) is not None

    def _run_git(self, args: Sequence[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        env = os.environ.copy()
        env["GIT_CEILING_DIRECTORIES"] = str(cwd.parent)
        try:
            process = subprocess.run(
                [self._git, *args],
                cwd=cwd,
                capture_output=True,
                text=False,
                check=False,
                timeout=self._timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as error:
            raise DiffProviderError(
                f"git {args[0]} timed out after {self._timeout}s",
                details={"timeout": self._timeout},
            ) from error
        except OSError as error:
            raise DiffProviderError(f"Unable to run git: {error}") from error
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)

    def diff(self, original: str, modified: str, *, label: str = "file") -> str:
        with tempfile.TemporaryDirectory(prefix="tp-diff-") as tmp:
            root = Path(tmp)
            (root / "original").write_bytes(original.encode("utf-8"))
            (root / "modified").write_bytes(modified.encode("utf-8"))
            result = self._run_git(
                [
                    "diff",
                    "--no-index",
                    "--no-color",
                    "--no-ext-diff",
                    "--minimal",
                    "original",
                    "modified",
                ],
                cwd=root,
            )
        # git diff exits 1 when the inputs differ.
        if result.returncode == 0:
            return ""
        if result.returncode != 1:
            message = result.stderr.strip() or "unknown git error"
            raise DiffProviderError(f"git diff failed: {message}", details={"returncode": result.returncode})
        return result.stdout

    def apply(self, text: str, diff: str) -> str:
        with tempfile.TemporaryDirectory(prefix="tp-apply-") as tmp:
            root = Path(tmp)
            target = root / "target"
            target.write_bytes(text.encode("utf-8"))
            (root / "change.patch").write_bytes(rewrite_file_headers(diff, "target").encode("utf-8"))
            result = self._run_git(
                [
                    "apply",
                    "--ignore-space-change",
                    "--ignore-whitespace",
                    "--recount",
                    "--whitespace=nowarn",
                    "change.patch",
                ],
                cwd=root,
            )
            if result.returncode != 0:
                message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
                raise DiffProviderError(f"git apply failed: {message}", details={"returncode": result.returncode})
            return target.read_bytes().decode("utf-8")


class DifflibDiffProvider:
    """In-process provider built on :mod:`difflib` with a whitespace-tolerant apply."""

    name = "difflib"

    def __init__(self, *, context_lines: int = 3) -> None:
        self._context_lines = context_lines

    def diff(self, original: str, modified: str, *, label: str = "file") -> str:
        lines = list(
            difflib.unified_diff(
                original.split("\n"),
                modified.split("\n"),
                fromfile=f"a/{label}",
                tofile=f"b/{label}",
                n=self._context_lines,
                lineterm="",
            )
        )
        if not lines:
            return ""
        return "\n".join(lines) + "\n"

    def apply(self, text: str, diff: str) -> str:
        _, hunks = parse_hunks(diff)
        if not hunks:
            raise DiffProviderError("Diff contains no hunks")

        lines = text.split("\n")
        offset = 0
        for number, hunk in enumerate(hunks, start=1):
            old = hunk.old_lines
            new = hunk.new_lines
            nominal = hunk.old_start - 1 if hunk.old_count else hunk.old_start
            position = _locate(lines, old, nominal + offset)
            if position is None:
                raise DiffProviderError(
                    f"Hunk #{number} does not apply",
                    details={"hunk": number, "line": hunk.old_start},
                )
            lines[position:position + len(old)] = new
            offset = position - nominal + len(new) - len(old)
        return "\n".join(lines)


def _squash(line: str) -> str:
    return " ".join(line.split())


def _matches_at(lines: List[str], needle: List[str], position: int) -> bool:
    if position < 0 or position + len(needle) > len(lines):
        return False
    return all(_squash(lines[position + i]) == _squash(expected) for i, expected in enumerate(needle))


def _locate(lines: List[str], needle: List[str], expected: int) -> Optional[int]:
    """Find ``needle`` in ``lines``, preferring the position closest to ``expected``."""
    if not needle:
        return max(0, min(expected, len(lines)))
    if _matches_at(lines, needle, expected):
        return expected
    candidates = range(0, len(lines) - len(needle) + 1)
    for position in sorted(candidates, key=lambda candidate: abs(candidate - expected)):
        if _matches_at(lines, needle, position):
            return position
    return None


def build_provider(
    name: str = "auto",
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    context_lines: int = 3,
) -> DiffProvider:
    """Resolve a provider name from configuration into an instance."""
    key = (name or "auto").strip().lower()
    if key == "auto":
        key = "git" if GitDiffProvider.available() else "difflib"
    if key == "git":
        return GitDiffProvider(timeout=timeout)
    if key == "difflib":
        return DifflibDiffProvider(context_lines=context_lines)
    raise ValueError(f"Unknown diff provider: {name}")
