from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from tp.diff.engine import DiffEngine  # noqa: E402
from tp.diff.providers import DifflibDiffProvider  # noqa: E402
from tp.service import PatchService  # noqa: E402
from tp.store import PatchStore  # noqa: E402


@dataclass(slots=True)
class TenantProject:
    """Fixture payload representing a configured patch-engine workspace."""

    root: Path
    config_path: Path

    def write(self, name: str, content: str) -> Path:
        path = self.root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path


@pytest.fixture()
def store() -> Iterator[PatchStore]:
    with PatchStore(":memory:") as patch_store:
        yield patch_store


@pytest.fixture()
def engine() -> DiffEngine:
    return DiffEngine(DifflibDiffProvider())


@pytest.fixture()
def service(store: PatchStore, engine: DiffEngine) -> PatchService:
    return PatchService(store, diff_engine=engine)


@pytest.fixture()
def tenant_project(tmp_path: Path) -> TenantProject:
    """Create a workspace whose config pins the in-process diff provider."""

    root = tmp_path / "tenant"
    root.mkdir()
    config_path = root / "config.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            paths:
              data: data
              db_path: data/tp.sqlite
            diff:
              provider: difflib
              timeout_seconds: 5
              context_lines: 3
            composition:
              max_patches: 50
              cache_enabled: true
            logging:
              level: WARNING
            """
        ).lstrip(),
        encoding="utf-8",
    )
    return TenantProject(root=root, config_path=config_path)
