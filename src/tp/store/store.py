"""SQLite-backed persistence for baselines, patches, releases, and logs."""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Sequence

from ..errors import PersistenceFailure
from .schema import (
    Baseline,
    CandidatePatch,
    LogStatus,
    Patch,
    PatchLog,
    PatchStatus,
    Release,
    ReleaseStatus,
    ReleaseSummary,
    TextChange,
    UserPatchPreference,
    utc_now,
)

DEFAULT_DB_PATH = Path("data/tp.sqlite")
LOGGER = logging.getLogger(__name__)


def _as_iso(timestamp: datetime) -> str:
    """Serialise a timestamp to a timezone-aware ISO 8601 string."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp produced by `_as_iso`."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def _dump_json(data: Any, *, default: Any) -> str:
    """Convert arbitrary JSON-like payloads into a persisted string."""
    serialisable = default if data is None else data
    return json.dumps(serialisable)


def _load_json(value: Optional[str], *, default: Any) -> Any:
    """Decode JSON columns while falling back to the provided default."""
    if not value:
        return default
    data = json.loads(value)
    if data is None:
        return default
    return data


def content_hash(code: str) -> str:
    """Return the SHA-256 hex digest used to fingerprint source text."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class PatchStore:
    """SQLite implementation of the baseline and patch/release store contracts."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        if str(db_path) == ":memory:":
            self.db_path: Path | None = None
        else:
            self.db_path = Path(db_path).resolve()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = self._open_connection()
        self._bootstrap()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PatchStore":
        paths = config.get("paths") or {}
        db_path = paths.get("db_path")
        if db_path:
            return cls(db_path)

        data_path = paths.get("data") or "data"
        return cls(Path(data_path) / "tp.sqlite")

    def close(self) -> None:
        if getattr(self, "_conn", None) is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def __enter__(self) -> "PatchStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _open_connection(self) -> sqlite3.Connection:
        target = ":memory:" if self.db_path is None else str(self.db_path)
        try:
            connection = sqlite3.connect(target)
        except sqlite3.Error as error:
            raise PersistenceFailure(f"Unable to open patch store at {target}: {error}") from error
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        return connection

    def _bootstrap(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS file_baselines (
                store_id TEXT NOT NULL,
                file_path TEXT NOT NULL,
                version INTEGER NOT NULL,
                code TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (store_id, file_path, version)
            );

            CREATE TABLE IF NOT EXISTS patch_releases (
                id TEXT PRIMARY KEY,
                store_id TEXT NOT NULL,
                version_name TEXT NOT NULL,
                version_number INTEGER NOT NULL,
                release_type TEXT NOT NULL,
                description TEXT NOT NULL,
                ab_test_config TEXT,
                status TEXT NOT NULL,
                created_by TEXT NOT NULL,
                created_at TEXT NOT NULL,
                published_at TEXT,
                rolled_back_at TEXT,
                rollback_reason TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_releases_store
                ON patch_releases(store_id, version_number);

            CREATE TABLE IF NOT EXISTS patch_diffs (
                id TEXT PRIMARY KEY,
                release_id TEXT,
                store_id TEXT NOT NULL,
                file_path TEXT NOT NULL,
                patch_name TEXT NOT NULL,
                change_type TEXT NOT NULL,
                unified_diff TEXT NOT NULL,
                structural_diff TEXT,
                change_summary TEXT NOT NULL,
                change_description TEXT NOT NULL,
                baseline_version INTEGER NOT NULL,
                priority INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                created_by TEXT NOT NULL,
                session_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(release_id) REFERENCES patch_releases(id) ON DELETE SET NULL
            );
            CREATE INDEX IF NOT EXISTS idx_patches_file_status
                ON patch_diffs(store_id, file_path, status);
            CREATE INDEX IF NOT EXISTS idx_patches_release
                ON patch_diffs(release_id);

            CREATE TABLE IF NOT EXISTS user_patch_preferences (
                user_id TEXT NOT NULL,
                store_id TEXT NOT NULL,
                excluded_patches TEXT NOT NULL,
                PRIMARY KEY (user_id, store_id)
            );

            CREATE TABLE IF NOT EXISTS patch_logs (
                id TEXT PRIMARY KEY,
                store_id TEXT NOT NULL,
                patch_id TEXT NOT NULL,
                release_id TEXT,
                applied_by TEXT NOT NULL,
                user_id TEXT,
                session_id TEXT,
                ab_variant TEXT,
                file_path TEXT NOT NULL,
                baseline_hash TEXT NOT NULL,
                result_hash TEXT NOT NULL,
                status TEXT NOT NULL,
                error_message TEXT,
                duration_ms REAL NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_logs_file
                ON patch_logs(store_id, file_path, created_at DESC);
            """
        )
        self._conn.commit()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except sqlite3.Error as error:
            self._conn.rollback()
            raise PersistenceFailure(f"Patch store write failed: {error}") from error
        except Exception:
            self._conn.rollback()
            raise

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as error:
            raise PersistenceFailure(f"Patch store read failed: {error}") from error

    # Baseline operations -------------------------------------------------------------
    def save_baseline(self, store_id: str, file_path: str, code: str) -> Baseline:
        """Insert a new baseline version, superseding but keeping prior versions."""
        rows = self._query(
            "SELECT COALESCE(MAX(version), 0) AS latest FROM file_baselines "
            "WHERE store_id = ? AND file_path = ?",
            (store_id, file_path),
        )
        baseline = Baseline(
            store_id=store_id,
            file_path=file_path,
            version=int(rows[0]["latest"]) + 1,
            code=code,
            content_hash=content_hash(code),
        )
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO file_baselines (store_id, file_path, version, code, content_hash, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    baseline.store_id,
                    baseline.file_path,
                    baseline.version,
                    baseline.code,
                    baseline.content_hash,
                    _as_iso(baseline.created_at),
                ),
            )
        return baseline

    def get_baseline(
        self,
        store_id: str,
        file_path: str,
        version: Optional[int] = None,
    ) -> Optional[Baseline]:
        query = "SELECT * FROM file_baselines WHERE store_id = ? AND file_path = ?"
        params: List[Any] = [store_id, file_path]
        if version is not None:
            query += " AND version = ?"
            params.append(version)
        query += " ORDER BY version DESC LIMIT 1"
        rows = self._query(query, params)
        if not rows:
            return None
        return self._row_to_baseline(rows[0])

    def list_baselines(self, store_id: str) -> List[Baseline]:
        """Return the latest baseline of every file in a store."""
        rows = self._query(
            """
            SELECT b.* FROM file_baselines b
            JOIN (
                SELECT file_path, MAX(version) AS version
                FROM file_baselines WHERE store_id = ? GROUP BY file_path
            ) latest ON latest.file_path = b.file_path AND latest.version = b.version
            WHERE b.store_id = ?
            ORDER BY b.file_path ASC
            """,
            (store_id, store_id),
        )
        return [self._row_to_baseline(row) for row in rows]

    # Release operations --------------------------------------------------------------
    def next_version_number(self, store_id: str) -> int:
        rows = self._query(
            "SELECT COALESCE(MAX(version_number), 0) AS max_version FROM patch_releases WHERE store_id = ?",
            (store_id,),
        )
        return int(rows[0]["max_version"]) + 1

    def insert_release(self, release: Release) -> Release:
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO patch_releases (
                    id, store_id, version_name, version_number, release_type, description,
                    ab_test_config, status, created_by, created_at, published_at,
                    rolled_back_at, rollback_reason
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    release.id,
                    release.store_id,
                    release.version_name,
                    release.version_number,
                    release.release_type.value,
                    release.description,
                    json.dumps(release.ab_test_config) if release.ab_test_config is not None else None,
                    release.status.value,
                    release.created_by,
                    _as_iso(release.created_at),
                    _as_iso(release.published_at) if release.published_at else None,
                    _as_iso(release.rolled_back_at) if release.rolled_back_at else None,
                    release.rollback_reason,
                ),
            )
        return release

    def get_release(self, release_id: str) -> Optional[Release]:
        rows = self._query("SELECT * FROM patch_releases WHERE id = ?", (release_id,))
        if not rows:
            return None
        return self._row_to_release(rows[0])

    def list_releases(self, store_id: str, status: Optional[ReleaseStatus] = None) -> List[ReleaseSummary]:
        query = """
            SELECT pr.*, COUNT(cp.id) AS patch_count
            FROM patch_releases pr
            LEFT JOIN patch_diffs cp ON pr.id = cp.release_id
            WHERE pr.store_id = ?
        """
        params: List[Any] = [store_id]
        if status is not None:
            query += " AND pr.status = ?"
            params.append(status.value)
        query += " GROUP BY pr.id ORDER BY pr.version_number DESC, pr.created_at DESC"
        rows = self._query(query, params)
        return [
            ReleaseSummary(release=self._row_to_release(row), patch_count=int(row["patch_count"]))
            for row in rows
        ]

    def mark_release_published(self, release_id: str) -> int:
        """Publish every eligible patch of a release and the release itself."""
        timestamp = _as_iso(utc_now())
        with self._transaction():
            cursor = self._conn.execute(
                """
                UPDATE patch_diffs SET status = ?, updated_at = ?
                WHERE release_id = ? AND status IN (?, ?)
                """,
                (
                    PatchStatus.PUBLISHED.value,
                    timestamp,
                    release_id,
                    PatchStatus.OPEN.value,
                    PatchStatus.READY_FOR_REVIEW.value,
                ),
            )
            self._conn.execute(
                "UPDATE patch_releases SET status = ?, published_at = ? WHERE id = ?",
                (ReleaseStatus.PUBLISHED.value, timestamp, release_id),
            )
        return cursor.rowcount

    def mark_release_rolled_back(self, release_id: str, reason: str) -> int:
        """Roll back a release and every patch it owns."""
        timestamp = _as_iso(utc_now())
        with self._transaction():
            self._conn.execute(
                """
                UPDATE patch_releases SET status = ?, rolled_back_at = ?, rollback_reason = ?
                WHERE id = ?
                """,
                (ReleaseStatus.ROLLED_BACK.value, timestamp, reason, release_id),
            )
            cursor = self._conn.execute(
                "UPDATE patch_diffs SET status = ?, updated_at = ? WHERE release_id = ?",
                (PatchStatus.ROLLED_BACK.value, timestamp, release_id),
            )
        return cursor.rowcount

    def assign_patches_to_release(
        self,
        release_id: str,
        store_id: str,
        file_path: Optional[str] = None,
    ) -> int:
        query = """
            UPDATE patch_diffs SET release_id = ?, updated_at = ?
            WHERE store_id = ? AND release_id IS NULL AND status IN (?, ?)
        """
        params: List[Any] = [
            release_id,
            _as_iso(utc_now()),
            store_id,
            PatchStatus.OPEN.value,
            PatchStatus.READY_FOR_REVIEW.value,
        ]
        if file_path:
            query += " AND file_path = ?"
            params.append(file_path)
        with self._transaction():
            cursor = self._conn.execute(query, params)
        return cursor.rowcount

    # Patch operations ----------------------------------------------------------------
    def insert_patch(self, patch: Patch) -> Patch:
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO patch_diffs (
                    id, release_id, store_id, file_path, patch_name, change_type,
                    unified_diff, structural_diff, change_summary, change_description,
                    baseline_version, priority, status, created_by, session_id,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    patch.id,
                    patch.release_id,
                    patch.store_id,
                    patch.file_path,
                    patch.patch_name,
                    patch.change_type,
                    patch.unified_diff,
                    self._dump_changes(patch.structural_diff),
                    patch.change_summary,
                    patch.change_description,
                    patch.baseline_version,
                    patch.priority,
                    patch.status.value,
                    patch.created_by,
                    patch.session_id,
                    _as_iso(patch.created_at),
                    _as_iso(patch.updated_at),
                ),
            )
        return patch

    def get_patch(self, patch_id: str) -> Optional[Patch]:
        rows = self._query("SELECT * FROM patch_diffs WHERE id = ?", (patch_id,))
        if not rows:
            return None
        return self._row_to_patch(rows[0])

    def update_patch_diff(
        self,
        patch_id: str,
        *,
        unified_diff: str,
        structural_diff: Optional[List[TextChange]],
        change_summary: Optional[str] = None,
        change_description: Optional[str] = None,
        baseline_version: Optional[int] = None,
    ) -> None:
        assignments = ["unified_diff = ?", "structural_diff = ?", "updated_at = ?"]
        params: List[Any] = [unified_diff, self._dump_changes(structural_diff), _as_iso(utc_now())]
        if baseline_version is not None:
            assignments.append("baseline_version = ?")
            params.append(baseline_version)
        if change_summary is not None:
            assignments.append("change_summary = ?")
            params.append(change_summary)
        if change_description is not None:
            assignments.append("change_description = ?")
            params.append(change_description)
        params.append(patch_id)
        with self._transaction():
            self._conn.execute(
                f"UPDATE patch_diffs SET {', '.join(assignments)} WHERE id = ?",
                params,
            )

    def find_open_manual_patch(self, store_id: str, file_path: str, created_by: str) -> Optional[Patch]:
        """Return the most recently touched open manual edit for a user and file."""
        rows = self._query(
            """
            SELECT * FROM patch_diffs
            WHERE store_id = ? AND file_path = ? AND status = ?
              AND change_type = 'manual_edit' AND created_by = ?
            ORDER BY updated_at DESC, rowid DESC
            LIMIT 1
            """,
            (store_id, file_path, PatchStatus.OPEN.value, created_by),
        )
        if not rows:
            return None
        return self._row_to_patch(rows[0])

    def list_candidate_patches(
        self,
        store_id: str,
        file_path: str,
        *,
        statuses: Sequence[PatchStatus],
        release_version: Optional[str] = None,
    ) -> List[CandidatePatch]:
        """Read patch rows for a file joined with release attributes, in composition order."""
        placeholders = ",".join("?" for _ in statuses)
        query = f"""
            SELECT cp.*, pr.version_name AS release_version_name,
                   pr.status AS release_status, pr.ab_test_config AS release_ab_config
            FROM patch_diffs cp
            LEFT JOIN patch_releases pr ON cp.release_id = pr.id
            WHERE cp.store_id = ? AND cp.file_path = ?
              AND cp.status IN ({placeholders})
              AND (pr.status IS NULL OR pr.status != ?)
        """
        params: List[Any] = [store_id, file_path, *(status.value for status in statuses)]
        params.append(ReleaseStatus.ROLLED_BACK.value)
        if release_version:
            query += " AND pr.version_name = ?"
            params.append(release_version)
        query += " ORDER BY cp.priority ASC, cp.created_at ASC, cp.rowid ASC"
        rows = self._query(query, params)
        return [
            CandidatePatch(
                patch=self._row_to_patch(row),
                version_name=row["release_version_name"],
                release_status=row["release_status"],
                ab_test_config=_load_json(row["release_ab_config"], default=None),
            )
            for row in rows
        ]

    def list_patches(
        self,
        store_id: str,
        file_path: str,
        *,
        status: Optional[PatchStatus] = None,
        release_version: Optional[str] = None,
    ) -> List[Patch]:
        query = """
            SELECT cp.* FROM patch_diffs cp
            LEFT JOIN patch_releases pr ON cp.release_id = pr.id
            WHERE cp.store_id = ? AND cp.file_path = ?
        """
        params: List[Any] = [store_id, file_path]
        if status is not None:
            query += " AND cp.status = ?"
            params.append(status.value)
        if release_version:
            query += " AND pr.version_name = ?"
            params.append(release_version)
        query += " ORDER BY cp.priority ASC, cp.created_at DESC"
        return [self._row_to_patch(row) for row in self._query(query, params)]

    def finalize_open_patches(
        self,
        *,
        note: str,
        store_id: Optional[str] = None,
        created_by: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> List[Patch]:
        """Move open manual edits to review, appending ``note`` to each description."""
        query = "SELECT * FROM patch_diffs WHERE status = ? AND change_type = 'manual_edit'"
        params: List[Any] = [PatchStatus.OPEN.value]
        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)
        if created_by is not None:
            query += " AND created_by = ?"
            params.append(created_by)
        if file_path:
            query += " AND file_path = ?"
            params.append(file_path)
        candidates = [self._row_to_patch(row) for row in self._query(query, params)]

        timestamp = utc_now()
        finalized: List[Patch] = []
        with self._transaction():
            for patch in candidates:
                description = f"{patch.change_description}\n\n{note}" if patch.change_description else note
                self._conn.execute(
                    "UPDATE patch_diffs SET status = ?, change_description = ?, updated_at = ? WHERE id = ?",
                    (PatchStatus.READY_FOR_REVIEW.value, description, _as_iso(timestamp), patch.id),
                )
                finalized.append(
                    patch.model_copy(
                        update={
                            "status": PatchStatus.READY_FOR_REVIEW,
                            "change_description": description,
                            "updated_at": timestamp,
                        }
                    )
                )
        return finalized

    # Preference operations -----------------------------------------------------------
    def set_user_exclusions(self, user_id: str, store_id: str, excluded: Sequence[str]) -> None:
        with self._transaction():
            self._conn.execute(
                """
                INSERT INTO user_patch_preferences (user_id, store_id, excluded_patches)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id, store_id) DO UPDATE SET
                    excluded_patches = excluded.excluded_patches
                """,
                (user_id, store_id, _dump_json(list(excluded), default=[])),
            )

    def get_user_preferences(self, user_id: str, store_id: str) -> Optional[UserPatchPreference]:
        rows = self._query(
            "SELECT * FROM user_patch_preferences WHERE user_id = ? AND store_id = ?",
            (user_id, store_id),
        )
        if not rows:
            return None
        return UserPatchPreference(
            user_id=rows[0]["user_id"],
            store_id=rows[0]["store_id"],
            excluded_patches=_load_json(rows[0]["excluded_patches"], default=[]),
        )

    # Log operations ------------------------------------------------------------------
    def record_patch_logs(self, entries: Sequence[PatchLog]) -> None:
        with self._transaction():
            self._conn.executemany(
                """
                INSERT INTO patch_logs (
                    id, store_id, patch_id, release_id, applied_by, user_id, session_id,
                    ab_variant, file_path, baseline_hash, result_hash, status,
                    error_message, duration_ms, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        entry.id,
                        entry.store_id,
                        entry.patch_id,
                        entry.release_id,
                        entry.applied_by,
                        entry.user_id,
                        entry.session_id,
                        entry.ab_variant,
                        entry.file_path,
                        entry.baseline_hash,
                        entry.result_hash,
                        entry.status.value,
                        entry.error_message,
                        entry.duration_ms,
                        _as_iso(entry.created_at),
                    )
                    for entry in entries
                ],
            )

    def list_patch_logs(self, store_id: str, file_path: Optional[str] = None) -> List[PatchLog]:
        query = "SELECT * FROM patch_logs WHERE store_id = ?"
        params: List[Any] = [store_id]
        if file_path:
            query += " AND file_path = ?"
            params.append(file_path)
        query += " ORDER BY created_at DESC"
        return [
            PatchLog(
                id=row["id"],
                store_id=row["store_id"],
                patch_id=row["patch_id"],
                release_id=row["release_id"],
                applied_by=row["applied_by"],
                user_id=row["user_id"],
                session_id=row["session_id"],
                ab_variant=row["ab_variant"],
                file_path=row["file_path"],
                baseline_hash=row["baseline_hash"],
                result_hash=row["result_hash"],
                status=LogStatus(row["status"]),
                error_message=row["error_message"],
                duration_ms=row["duration_ms"],
                created_at=_from_iso(row["created_at"]),
            )
            for row in self._query(query, params)
        ]

    def get_stats(self, store_id: str) -> dict[str, int]:
        rows = self._query(
            """
            SELECT
                COUNT(DISTINCT cp.id) AS total_patches,
                COUNT(DISTINCT cp.file_path) AS files_with_patches,
                COUNT(CASE WHEN cp.status = 'published' THEN 1 END) AS published_patches,
                COUNT(CASE WHEN cp.status = 'open' THEN 1 END) AS open_patches
            FROM patch_diffs cp
            WHERE cp.store_id = ?
            """,
            (store_id,),
        )
        release_rows = self._query(
            """
            SELECT
                COUNT(*) AS total_releases,
                COUNT(CASE WHEN status = 'published' THEN 1 END) AS published_releases
            FROM patch_releases WHERE store_id = ?
            """,
            (store_id,),
        )
        stats = {key: int(rows[0][key] or 0) for key in rows[0].keys()}
        stats.update({key: int(release_rows[0][key] or 0) for key in release_rows[0].keys()})
        return stats

    # Row mapping ---------------------------------------------------------------------
    @staticmethod
    def _dump_changes(changes: Optional[List[TextChange]]) -> Optional[str]:
        if changes is None:
            return None
        return json.dumps([change.model_dump() for change in changes])

    @staticmethod
    def _row_to_baseline(row: sqlite3.Row) -> Baseline:
        return Baseline(
            store_id=row["store_id"],
            file_path=row["file_path"],
            version=row["version"],
            code=row["code"],
            content_hash=row["content_hash"],
            created_at=_from_iso(row["created_at"]),
        )

    @staticmethod
    def _row_to_release(row: sqlite3.Row) -> Release:
        return Release(
            id=row["id"],
            store_id=row["store_id"],
            version_name=row["version_name"],
            version_number=row["version_number"],
            release_type=row["release_type"],
            description=row["description"],
            ab_test_config=_load_json(row["ab_test_config"], default=None),
            status=ReleaseStatus(row["status"]),
            created_by=row["created_by"],
            created_at=_from_iso(row["created_at"]),
            published_at=_from_iso(row["published_at"]),
            rolled_back_at=_from_iso(row["rolled_back_at"]),
            rollback_reason=row["rollback_reason"],
        )

    @staticmethod
    def _row_to_patch(row: sqlite3.Row) -> Patch:
        raw_changes = _load_json(row["structural_diff"], default=None)
        return Patch(
            id=row["id"],
            release_id=row["release_id"],
            store_id=row["store_id"],
            file_path=row["file_path"],
            patch_name=row["patch_name"],
            change_type=row["change_type"],
            unified_diff=row["unified_diff"],
            structural_diff=[TextChange(**item) for item in raw_changes] if raw_changes is not None else None,
            change_summary=row["change_summary"],
            change_description=row["change_description"],
            baseline_version=row["baseline_version"],
            priority=row["priority"],
            status=PatchStatus(row["status"]),
            created_by=row["created_by"],
            session_id=row["session_id"],
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )
