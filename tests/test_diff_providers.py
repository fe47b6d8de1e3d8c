from __future__ import annotations

import logging
import os
import stat

import pytest

from tp.diff.engine import DiffEngine
from tp.diff.hunks import parse_hunks, rewrite_file_headers
from tp.diff.providers import DifflibDiffProvider, GitDiffProvider, build_provider
from tp.errors import DiffProviderError

requires_git = pytest.mark.skipif(not GitDiffProvider.available(), reason="git is not installed")


def test_difflib_provider_reports_no_difference_as_empty() -> None:
    provider = DifflibDiffProvider()

    assert provider.diff("same\n", "same\n") == ""


def test_difflib_apply_tolerates_whitespace_and_offset_drift() -> None:
    provider = DifflibDiffProvider()
    diff = provider.diff("alpha\nbeta\ngamma", "alpha\nBETA\ngamma", label="f.txt")

    drifted = "header\nalpha\n  beta\ngamma"

    assert provider.apply(drifted, diff) == "header\nalpha\nBETA\ngamma"


def test_difflib_apply_rejects_unmatched_context() -> None:
    provider = DifflibDiffProvider()
    diff = provider.diff("one\ntwo", "one\n2", label="f.txt")

    with pytest.raises(DiffProviderError):
        provider.apply("completely\ndifferent", diff)


def test_rewrite_file_headers_drops_git_preamble() -> None:
    raw = (
        "diff --git a/original b/modified\n"
        "index 1111111..2222222 100644\n"
        "--- a/original\n+++ b/modified\n"
        "@@ -1 +1 @@\n-a\n+b\n"
    )

    assert rewrite_file_headers(raw, "views/home.html") == (
        "--- a/views/home.html\n+++ b/views/home.html\n@@ -1,1 +1,1 @@\n-a\n+b\n"
    )


def test_parse_hunks_keeps_preamble_separate() -> None:
    preamble, hunks = parse_hunks("--- a/f\n+++ b/f\n@@ -2,0 +3 @@ section\n+new\n")

    assert preamble == ["--- a/f", "+++ b/f"]
    assert hunks[0].old_count == 0
    assert hunks[0].new_count == 1
    assert hunks[0].section == " section"


def test_build_provider_resolves_names() -> None:
    assert isinstance(build_provider("difflib"), DifflibDiffProvider)
    assert isinstance(build_provider("git", timeout=1.5), GitDiffProvider)
    with pytest.raises(ValueError):
        build_provider("svn")


@requires_git
def test_git_provider_round_trip() -> None:
    provider = GitDiffProvider(timeout=10)
    original = "line one\nline two\nline three\n"
    modified = "line one\nline 2\nline three\n"

    diff = provider.diff(original, modified, label="f.txt")

    assert "@@" in diff
    assert provider.apply(original, diff) == modified
    assert provider.diff(original, original) == ""


@requires_git
def test_git_provider_apply_failure_raises() -> None:
    provider = GitDiffProvider(timeout=10)
    diff = "--- a/f\n+++ b/f\n@@ -1,1 +1,1 @@\n-missing\n+present\n"

    with pytest.raises(DiffProviderError):
        provider.apply("something else\n", diff)


@pytest.fixture()
def hanging_git(tmp_path) -> str:
    script = tmp_path / "slow-git"
    script.write_text("#!/bin/sh\nexec sleep 5\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


@pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell script")
def test_git_timeout_raises_provider_error(hanging_git: str) -> None:
    provider = GitDiffProvider(timeout=0.2, git_binary=hanging_git)

    with pytest.raises(DiffProviderError) as excinfo:
        provider.diff("a\n", "b\n")

    assert excinfo.value.details["timeout"] == 0.2


@pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell script")
def test_engine_falls_back_when_git_times_out(hanging_git: str, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="tp.telemetry")
    engine = DiffEngine(GitDiffProvider(timeout=0.2, git_binary=hanging_git))
    original = "alpha\nbeta\ngamma\n"
    modified = "alpha\nBETA\ngamma\n"

    diff = engine.create_diff(original, modified, "notes.txt")

    assert diff and "@@" in diff
    assert engine.apply_diff(original, diff) == modified
    stages = [record.getMessage() for record in caplog.records if '"event":"diff.fallback"' in record.getMessage()]
    assert any('"stage":"create"' in message for message in stages)
    assert any('"stage":"apply"' in message for message in stages)
