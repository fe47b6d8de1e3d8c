"""CLI commands for managing baselines, patches and releases of tenant files."""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .errors import PatchEngineError
from .service import ApplyOptions, PatchService
from .sessions import PatchOptions
from .store import PatchStatus, PatchStore, ReleaseStatus, ReleaseType

APP_HELP = "Tenant patch engine CLI entry point."
DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "paths": {
        "data": "data",
        "db_path": "data/tp.sqlite",
    },
    "diff": {
        "provider": "auto",
        "timeout_seconds": 10,
        "context_lines": 3,
    },
    "composition": {
        "max_patches": 50,
        "cache_enabled": True,
    },
    "logging": {
        "level": "WARNING",
    },
}

app = typer.Typer(help=APP_HELP)
baseline_app = typer.Typer(help="Store and inspect file baselines.")
patch_app = typer.Typer(help="Create and inspect patches.")
session_app = typer.Typer(help="Manage edit sessions.")
release_app = typer.Typer(help="Create, publish and roll back releases.")
cache_app = typer.Typer(help="Composition cache maintenance.")
app.add_typer(baseline_app, name="baseline")
app.add_typer(patch_app, name="patch")
app.add_typer(session_app, name="session")
app.add_typer(release_app, name="release")
app.add_typer(cache_app, name="cache")

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the patch engine configuration file.",
)
STORE_OPTION = typer.Option(..., "--store", "-s", help="Tenant store identifier.")


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _configure_logging(config: Dict[str, Any]) -> None:
    level_name = str((config.get("logging") or {}).get("level", "WARNING")).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown logging level: {level_name}")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _resolve_db_path(config: Dict[str, Any], config_path: Path) -> Path:
    """Resolve the SQLite path relative to the configuration file."""
    paths_cfg = config.get("paths") or {}
    db_value = paths_cfg.get("db_path")
    if db_value:
        db_path = Path(db_value)
    else:
        db_path = Path(paths_cfg.get("data") or "data") / "tp.sqlite"
    if not db_path.is_absolute():
        db_path = (config_path.parent / db_path).resolve()
    return db_path


def _open_service(config: str) -> PatchService:
    config_path = Path(config)
    config_data = load_config(config_path)
    _configure_logging(config_data)
    store = PatchStore(_resolve_db_path(config_data, config_path))
    return PatchService.from_config(config_data, store=store)


def _read_source(source: Path) -> str:
    if not source.exists():
        raise typer.BadParameter(f"Source file not found: {source}")
    return source.read_text(encoding="utf-8")


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


@app.command()
def init(
    config: str = CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write a default configuration and create the patch database."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Configuration already exists at {config_path}; use --force to overwrite.")
        raise typer.Exit(code=1)

    config_data = _copy_config_template()
    _write_config(config_path, config_data)
    db_path = _resolve_db_path(config_data, config_path)
    with PatchStore(db_path):
        pass
    typer.echo(f"Wrote {config_path} and initialised {db_path}.")


# Baselines -------------------------------------------------------------------------
@baseline_app.command("set")
def baseline_set(
    file_path: str = typer.Argument(..., help="Logical path of the tenant file."),
    source: Path = typer.Option(..., "--from-file", "-f", help="File holding the baseline text."),
    store: str = STORE_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Record a new baseline version for a file."""
    code = _read_source(source)
    with _open_service(config) as service:
        try:
            baseline = service.save_baseline(store, file_path, code)
        except PatchEngineError as error:
            _fail(str(error))
    typer.echo(f"Saved baseline v{baseline.version} for {file_path} ({baseline.content_hash[:12]}).")


@baseline_app.command("show")
def baseline_show(
    file_path: str = typer.Argument(..., help="Logical path of the tenant file."),
    store: str = STORE_OPTION,
    version: Optional[int] = typer.Option(None, "--version", help="Specific baseline version."),
    config: str = CONFIG_OPTION,
) -> None:
    """Print the latest (or a specific) baseline of a file."""
    with _open_service(config) as service:
        try:
            baseline = service.get_baseline(store, file_path, version)
        except PatchEngineError as error:
            _fail(str(error))
    typer.echo(baseline.code, nl=False)


# Patches ---------------------------------------------------------------------------
@patch_app.command("create")
def patch_create(
    file_path: str = typer.Argument(..., help="Logical path of the tenant file."),
    source: Path = typer.Option(..., "--from-file", "-f", help="File holding the modified text."),
    store: str = STORE_OPTION,
    user: str = typer.Option(..., "--user", "-u", help="Author of the edit."),
    session: Optional[str] = typer.Option(None, "--session", help="Edit session identifier."),
    change_type: str = typer.Option("manual_edit", "--change-type", help="Kind of change being saved."),
    name: Optional[str] = typer.Option(None, "--name", help="Patch name."),
    summary: str = typer.Option("", "--summary", help="Short change summary."),
    description: str = typer.Option("", "--description", help="Longer change description."),
    priority: int = typer.Option(0, "--priority", help="Composition priority; lower applies first."),
    upsert: bool = typer.Option(True, "--upsert/--no-upsert", help="Fold into the open manual edit, if any."),
    config: str = CONFIG_OPTION,
) -> None:
    """Diff a modified file against its baseline and save the result as a patch."""
    modified = _read_source(source)
    options = PatchOptions(
        store_id=store,
        created_by=user,
        session_id=session,
        change_type=change_type,
        patch_name=name,
        change_summary=summary,
        change_description=description,
        priority=priority,
        use_upsert=upsert,
    )
    with _open_service(config) as service:
        result = service.create_patch(file_path, modified, options)
    if not result.success:
        _fail(result.error or "unknown error")
    stats = result.diff_stats
    typer.echo(
        f"Patch {result.patch_id} {result.action} "
        f"(+{stats.get('additions', 0)} -{stats.get('deletions', 0)})."
    )


@patch_app.command("list")
def patch_list(
    file_path: str = typer.Argument(..., help="Logical path of the tenant file."),
    store: str = STORE_OPTION,
    status: Optional[PatchStatus] = typer.Option(None, "--status", help="Only patches in this status."),
    release: Optional[str] = typer.Option(None, "--release", help="Only patches of this release version."),
    config: str = CONFIG_OPTION,
) -> None:
    """List the patches recorded for a file."""
    with _open_service(config) as service:
        patches = service.list_patches(file_path, store, status=status, release_version=release)
    if not patches:
        typer.echo("No patches found.")
        return
    for patch in patches:
        typer.echo(
            f"- {patch.id} [{patch.status.value}] p{patch.priority} {patch.change_type}: {patch.patch_name}"
        )


@patch_app.command("revert")
def patch_revert(
    patch_id: str = typer.Argument(..., help="Patch to undo."),
    user: str = typer.Option(..., "--user", "-u", help="Author of the revert."),
    config: str = CONFIG_OPTION,
) -> None:
    """Create a patch that undoes an existing one."""
    with _open_service(config) as service:
        result = service.revert_patch(patch_id, user)
    if not result.success:
        _fail(result.error or "unknown error")
    typer.echo(f"Created revert patch {result.patch_id}.")


@patch_app.command("remove-change")
def patch_remove_change(
    patch_id: str = typer.Argument(..., help="Patch to edit."),
    text: str = typer.Argument(..., help="Text of the added line to drop."),
    config: str = CONFIG_OPTION,
) -> None:
    """Drop a single added line from a patch."""
    with _open_service(config) as service:
        result = service.remove_change(patch_id, text)
    if not result.success:
        _fail(result.error or "unknown error")
    typer.echo(f"Updated patch {patch_id}.")


# Sessions --------------------------------------------------------------------------
@session_app.command("finalize")
def session_finalize(
    session_id: Optional[str] = typer.Argument(None, help="Edit session identifier."),
    store: Optional[str] = typer.Option(None, "--store", "-s", help="Tenant store identifier."),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Author whose open edits are finalized."),
    file_path: Optional[str] = typer.Option(None, "--file", help="Only edits to this file."),
    finalize_all: bool = typer.Option(False, "--all", help="Finalize every open manual edit."),
    config: str = CONFIG_OPTION,
) -> None:
    """Move open manual edits to ready_for_review."""
    if not finalize_all and (store is None or user is None):
        raise typer.BadParameter("--store and --user are required unless --all is given")
    with _open_service(config) as service:
        result = service.finalize_edit_session(
            session_id,
            store_id=store,
            created_by=user,
            file_path=file_path,
            finalize_all=finalize_all,
        )
    if not result.success:
        _fail(result.error or "unknown error")
    typer.echo(f"Finalized {result.finalized_count} patch(es).")


# Releases --------------------------------------------------------------------------
@release_app.command("create")
def release_create(
    version_name: str = typer.Argument(..., help="Human readable version, e.g. v1.2.0."),
    store: str = STORE_OPTION,
    user: str = typer.Option(..., "--user", "-u", help="Author of the release."),
    release_type: ReleaseType = typer.Option(ReleaseType.MINOR, "--type", help="Release type."),
    description: str = typer.Option("", "--description", help="Release notes."),
    variant: Optional[str] = typer.Option(None, "--variant", help="Restrict the release to an A/B variant."),
    config: str = CONFIG_OPTION,
) -> None:
    """Create a draft release."""
    ab_config = {"variant": variant} if variant else None
    with _open_service(config) as service:
        try:
            release = service.create_release(
                store,
                version_name,
                user,
                release_type=release_type,
                description=description,
                ab_test_config=ab_config,
            )
        except PatchEngineError as error:
            _fail(str(error))
    typer.echo(f"Created release {release.version_name} #{release.version_number} ({release.id}).")


@release_app.command("list")
def release_list(
    store: str = STORE_OPTION,
    status: Optional[ReleaseStatus] = typer.Option(None, "--status", help="Only releases in this status."),
    config: str = CONFIG_OPTION,
) -> None:
    """List releases for a store, newest first."""
    with _open_service(config) as service:
        summaries = service.list_releases(store, status)
    if not summaries:
        typer.echo("No releases found.")
        return
    for summary in summaries:
        release = summary.release
        typer.echo(
            f"- {release.id} {release.version_name} #{release.version_number} "
            f"[{release.status.value}] {summary.patch_count} patch(es)"
        )


@release_app.command("assign")
def release_assign(
    release_id: str = typer.Argument(..., help="Draft release receiving the patches."),
    file_path: Optional[str] = typer.Option(None, "--file", help="Only patches for this file."),
    config: str = CONFIG_OPTION,
) -> None:
    """Attach unreleased open or in-review patches to a release."""
    with _open_service(config) as service:
        try:
            count = service.assign_patches(release_id, file_path)
        except PatchEngineError as error:
            _fail(str(error))
    typer.echo(f"Assigned {count} patch(es).")


@release_app.command("publish")
def release_publish(
    release_id: str = typer.Argument(..., help="Release to publish."),
    config: str = CONFIG_OPTION,
) -> None:
    """Publish a draft release and its patches."""
    with _open_service(config) as service:
        result = service.publish_release(release_id)
    if not result.success:
        _fail(result.error or "unknown error")
    typer.echo(f"Published release {release_id}.")


@release_app.command("rollback")
def release_rollback(
    release_id: str = typer.Argument(..., help="Release to roll back."),
    reason: str = typer.Option("", "--reason", help="Why the release is rolled back."),
    config: str = CONFIG_OPTION,
) -> None:
    """Roll back a release and every patch it owns."""
    with _open_service(config) as service:
        result = service.rollback_release(release_id, reason)
    if not result.success:
        _fail(result.error or "unknown error")
    typer.echo(f"Rolled back release {release_id}.")


# Composition -----------------------------------------------------------------------
@app.command()
def apply(
    file_path: str = typer.Argument(..., help="Logical path of the tenant file."),
    store: str = STORE_OPTION,
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Requesting user, for exclusions."),
    release: Optional[str] = typer.Option(None, "--release", help="Only patches of this release version."),
    variant: Optional[str] = typer.Option(None, "--variant", help="A/B variant of the request."),
    preview: bool = typer.Option(False, "--preview", help="Include open patches."),
    max_patches: Optional[int] = typer.Option(None, "--max-patches", help="Upper bound on composed patches."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the composed file here."),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
    config: str = CONFIG_OPTION,
) -> None:
    """Compose the visible patches of a file and print the result."""
    with _open_service(config) as service:
        options = ApplyOptions(
            store_id=store,
            user_id=user,
            release_version=release,
            ab_variant=variant,
            preview_mode=preview,
            max_patches=max_patches if max_patches is not None else service.max_patches,
        )
        result = service.apply_patches(file_path, options)
    if not result.success:
        _fail(result.error or "unknown error")

    if as_json:
        typer.echo(json.dumps(result.model_dump(), indent=2))
        return
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.patched_code or "", encoding="utf-8")
        typer.echo(f"Applied {result.applied_count}/{result.total_patches} patch(es); wrote {output}.")
        return
    typer.echo(result.patched_code or "", nl=False)


@cache_app.command("clear")
def cache_clear(
    file_path: Optional[str] = typer.Argument(None, help="Only clear compositions of this file."),
    config: str = CONFIG_OPTION,
) -> None:
    """Clear cached compositions.

    The cache lives inside one service instance; each CLI invocation starts
    with an empty one, so this matters only to long-running embedders.
    """
    with _open_service(config) as service:
        service.clear_cache(file_path)
    scope = file_path or "all files"
    typer.echo(f"Cleared composition cache for {scope} (cache is per process).")


@app.command()
def stats(
    store: str = STORE_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Show patch and release counts for a store."""
    with _open_service(config) as service:
        summary = service.get_stats(store)
    for key, value in summary.items():
        typer.echo(f"{key}: {value}")


@app.command("exclude")
def exclude(
    patch_ids: List[str] = typer.Argument(..., help="Patches the user opts out of."),
    store: str = STORE_OPTION,
    user: str = typer.Option(..., "--user", "-u", help="User whose preferences change."),
    config: str = CONFIG_OPTION,
) -> None:
    """Replace a user's patch exclusion list."""
    with _open_service(config) as service:
        service.set_user_exclusions(user, store, patch_ids)
    typer.echo(f"Excluded {len(patch_ids)} patch(es) for {user}.")


if __name__ == "__main__":
    app()
