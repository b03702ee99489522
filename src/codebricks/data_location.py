"""Moving the data root to a new location.

Migration protocol:
1. validate the target (writable, not inside the current root)
2. optionally back up the current root to a sibling ``<name>.backup``
3. optionally copy every file of the current root into a staging sibling
   ``<target>.staging-<id>``; on any copy failure discard it and report
   ``success=False`` without touching the target
4. move the staged files into the target, persist the new location and
   swap the active-path pointer
5. if the swap or the reload from the target fails, undo the commit
   (replaced target files are restored) and stay on the current root

The original root is never modified. Migration is not cancellable: a caller
that stops waiting must let the running step finish.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from .config import (
    BACKUP_SUFFIX,
    ITEM_SUFFIX,
    SCOPE_FILENAME,
    SCOPES_DIRNAME,
    STAGING_SUFFIX,
    TEMPLATES_DIRNAME,
    TOPIC_FILENAME,
    get_system_default_path,
    get_user_global_path,
    get_workspace_path,
    load_settings,
    save_settings,
)
from .errors import CodebricksError, InvalidPathError
from .events import EventChannel, LocationChanged
from .models import (
    LocationInfo,
    LocationOption,
    LocationType,
    MigrationProgress,
    MigrationRecord,
    MigrationResult,
    PathValidation,
)
from .paths import StoragePaths
from .topics import UndoLog

log = logging.getLogger(__name__)

ProgressCallback = Callable[[MigrationProgress], None]


def _list_files(root: Path) -> list[Path]:
    if not root.is_dir():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())


def _copy_file(src: Path, dst: Path) -> None:
    dst.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(src, dst)


def _backup_tree(src: Path, dst: Path) -> None:
    if dst.exists():
        shutil.rmtree(dst)
    shutil.copytree(src, dst)


def _commit_staged(staging: Path, target: Path, undo: UndoLog) -> None:
    """Move staged files into ``target``.

    Target files that get replaced are set aside next to the staging
    directory so ``undo`` can put them back.
    """
    if not target.exists():
        staging.rename(target)
        undo.push(f"move {target} back to {staging}", lambda: target.rename(staging))
        return

    displaced = staging.with_name(staging.name + "-displaced")
    for src in _list_files(staging):
        relative = src.relative_to(staging)
        dst = target / relative
        if dst.exists():
            aside = displaced / relative
            aside.parent.mkdir(parents=True, exist_ok=True)
            dst.replace(aside)
            undo.push(f"restore {dst}", lambda dst=dst, aside=aside: aside.replace(dst))
        dst.parent.mkdir(parents=True, exist_ok=True)
        src.replace(dst)
        undo.push(f"remove {dst}", lambda dst=dst: dst.unlink(missing_ok=True))


def _discard(*dirs: Path) -> None:
    for directory in dirs:
        shutil.rmtree(directory, ignore_errors=True)


def _nearest_existing(path: Path) -> Path:
    current = path
    while not current.exists() and current != current.parent:
        current = current.parent
    return current


class DataLocationService:
    """Owns the active data root of one engine."""

    def __init__(
        self,
        paths: StoragePaths,
        events: EventChannel,
        settings_path: Path | None = None,
        cwd: Path | None = None,
    ):
        self.paths = paths
        self.events = events
        self.settings_path = settings_path
        self.cwd = cwd

    def get_data_path(self) -> Path:
        return self.paths.data_root

    def get_scope_path(self, scope_id: str) -> Path:
        return self.paths.scope_dir(scope_id)

    def location_type(self, path: Path | str) -> LocationType:
        resolved = Path(path).expanduser().resolve()
        if resolved == get_system_default_path().resolve():
            return "system"
        if resolved == get_user_global_path().resolve():
            return "global"
        if resolved == get_workspace_path(self.cwd).resolve():
            return "workspace"
        return "custom"

    # ─────────────────────────────────────────────────────────────────────────
    # Validation
    # ─────────────────────────────────────────────────────────────────────────

    def validate_path(self, path: Path | str) -> PathValidation:
        """Check that ``path`` can become the data root. No side effects."""
        target = Path(path).expanduser().resolve()
        current = self.paths.data_root.expanduser().resolve()
        result = PathValidation(valid=False, path=str(target), exists=target.exists())

        if target != current and target.is_relative_to(current):
            result.reason = "Target is inside the current data root"
            return result

        if result.exists:
            if not target.is_dir():
                result.reason = "Target exists and is not a directory"
                return result
            result.writable = os.access(target, os.W_OK | os.X_OK)
        else:
            ancestor = _nearest_existing(target)
            result.writable = ancestor.is_dir() and os.access(ancestor, os.W_OK | os.X_OK)

        if not result.writable:
            result.reason = "Target is not writable"
            return result

        result.valid = True
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Migration
    # ─────────────────────────────────────────────────────────────────────────

    async def set_data_path(
        self,
        new_path: Path | str,
        migrate_data: bool = True,
        create_backup: bool = True,
        progress: ProgressCallback | None = None,
    ) -> MigrationResult:
        """Move the data root to ``new_path``.

        Returns:
            MigrationResult; ``success`` is False with accumulated ``errors``
            when copying, committing or reloading failed, in which case
            nothing was switched and the target holds only what it held
            before.

        Raises:
            InvalidPathError: If the target is unwritable or inside the
                current root.
        """
        started = time.monotonic()
        source = self.paths.data_root
        target = Path(new_path).expanduser().resolve()

        def report(phase: str, message: str, done: int = 0, total: int = 0) -> None:
            if progress is not None:
                progress(MigrationProgress(phase=phase, files_done=done, files_total=total, message=message))

        report("validate", f"Validating {target}")
        result = MigrationResult(success=False, source_location=str(source), target_location=str(target))
        if target == source.expanduser().resolve():
            result.success = True
            result.warnings.append("Target is already the current data location")
            report("done", "Nothing to migrate")
            return result

        validation = self.validate_path(target)
        if not validation.valid:
            raise InvalidPathError(str(target), validation.reason or "invalid target")

        files = _list_files(source) if migrate_data else []
        result.total_files = len(files)

        if create_backup and source.is_dir():
            backup = source.with_name(source.name + BACKUP_SUFFIX)
            report("backup", f"Backing up to {backup}")
            try:
                await asyncio.to_thread(_backup_tree, source, backup)
            except (OSError, shutil.Error) as e:
                result.errors.append(f"Backup failed: {e}")
                return self._finish(result, started, report)
            result.backup_path = str(backup)

        staging = target.with_name(f"{target.name}{STAGING_SUFFIX}-{uuid.uuid4().hex[:8]}")
        displaced = staging.with_name(staging.name + "-displaced")
        if migrate_data:
            report("copy", f"Copying {len(files)} file(s)", 0, len(files))
            for src in files:
                relative = src.relative_to(source)
                try:
                    await asyncio.to_thread(_copy_file, src, staging / relative)
                except OSError as e:
                    result.errors.append(f"{relative}: {e}")
                    continue
                result.migrated_files += 1
                report("copy", str(relative), result.migrated_files, len(files))

            if result.errors:
                log.warning("Migration to %s failed with %d error(s); discarding the copy", target, len(result.errors))
                await asyncio.to_thread(_discard, staging)
                return self._finish(result, started, report)

        report("swap", f"Switching data location to {target}")
        previous_settings = load_settings(self.settings_path)
        undo = UndoLog()
        try:
            if staging.exists():
                await asyncio.to_thread(_commit_staged, staging, target, undo)
            self._save_location(target, result, started)
        except OSError as e:
            result.errors.append(f"Could not switch to {target}: {e}")
            result.errors.extend(undo.rollback())
            await asyncio.to_thread(_discard, staging, displaced)
            return self._finish(result, started, report)

        self.paths.data_root = target
        try:
            self.events.publish(LocationChanged(str(source), str(target)))
        except (OSError, CodebricksError) as e:
            log.error("Reloading from %s failed, staying at %s: %s", target, source, e)
            result.errors.append(f"Could not load data from {target}: {e}")
            self.paths.data_root = source
            result.errors.extend(undo.rollback())
            save_settings(previous_settings, self.settings_path)
            self.events.publish(LocationChanged(str(target), str(source)))
            await asyncio.to_thread(_discard, staging, displaced)
            return self._finish(result, started, report)

        await asyncio.to_thread(_discard, displaced)
        result.success = True
        log.info("Data location changed %s -> %s (%d file(s))", source, target, result.migrated_files)
        report("done", "Migration complete", result.migrated_files, result.total_files)
        return self._finish(result, started)

    async def reset_to_system_default(
        self,
        migrate_data: bool = True,
        create_backup: bool = True,
        progress: ProgressCallback | None = None,
    ) -> MigrationResult:
        return await self.set_data_path(get_system_default_path(), migrate_data, create_backup, progress)

    def _finish(
        self,
        result: MigrationResult,
        started: float,
        report: Callable[..., None] | None = None,
    ) -> MigrationResult:
        result.duration_ms = int((time.monotonic() - started) * 1000)
        if not result.success:
            try:
                self._append_history(self._record(result), load_settings(self.settings_path))
            except OSError as e:
                log.warning("Could not record failed migration: %s", e)
            if report is not None:
                report("done", f"Migration failed with {len(result.errors)} error(s)")
        return result

    def _record(self, result: MigrationResult) -> MigrationRecord:
        return MigrationRecord(
            id=uuid.uuid4().hex[:12],
            from_location=result.source_location,
            to_location=result.target_location,
            timestamp=datetime.now(UTC),
            duration_ms=result.duration_ms,
            files_count=result.migrated_files,
            success=result.success,
            errors=list(result.errors),
        )

    def _append_history(self, record: MigrationRecord, settings: dict) -> None:
        history = settings.get("migration_history")
        if not isinstance(history, list):
            history = []
        history.append(record.model_dump(mode="json"))
        settings["migration_history"] = history
        save_settings(settings, self.settings_path)

    def _save_location(self, target: Path, result: MigrationResult, started: float) -> None:
        settings = load_settings(self.settings_path)
        settings["data_location"] = str(target)
        settings["use_system_default"] = target == get_system_default_path().resolve()
        record = self._record(result.model_copy(update={"success": True}))
        record.duration_ms = int((time.monotonic() - started) * 1000)
        self._append_history(record, settings)

    def get_migration_history(self) -> list[MigrationRecord]:
        history = load_settings(self.settings_path).get("migration_history") or []
        records = []
        for entry in history:
            try:
                records.append(MigrationRecord.model_validate(entry))
            except ValueError as e:
                log.warning("Skipping malformed migration record: %s", e)
        return records

    # ─────────────────────────────────────────────────────────────────────────
    # Location overview
    # ─────────────────────────────────────────────────────────────────────────

    def _has_data(self) -> bool:
        scopes_dir = self.paths.data_root / SCOPES_DIRNAME
        return scopes_dir.is_dir() and any(scopes_dir.iterdir())

    def get_available_locations(self) -> list[LocationOption]:
        """Candidate data roots, system default first (recommended)."""
        current = self.paths.data_root.expanduser().resolve()
        has_data = self._has_data()
        candidates: list[tuple[str, str, str, Path, LocationType]] = [
            ("system", "System default", "Per-user application data directory", get_system_default_path(), "system"),
            ("global", "User global", "Shared by every workspace of this user", get_user_global_path(), "global"),
            ("workspace", "Workspace", "Stored next to the current project", get_workspace_path(self.cwd), "workspace"),
        ]
        if self.location_type(current) == "custom":
            candidates.append(("custom", "Custom", "Currently configured custom location", current, "custom"))

        options = []
        for option_id, name, description, path, location_type in candidates:
            resolved = path.expanduser().resolve()
            is_current = resolved == current
            options.append(
                LocationOption(
                    id=option_id,
                    name=name,
                    description=description,
                    path=str(resolved),
                    type=location_type,
                    recommended=option_id == "system",
                    available=is_current or self.validate_path(resolved).valid,
                    current=is_current,
                    migration_required=not is_current and has_data,
                )
            )
        return options

    def get_location_info(self) -> LocationInfo:
        root = self.paths.data_root
        info = LocationInfo(
            path=str(root),
            type=self.location_type(root),
            is_default=root.expanduser().resolve() == get_system_default_path().resolve(),
        )
        for file in _list_files(root):
            try:
                info.size_bytes += file.stat().st_size
            except OSError:
                continue
            if file.name == TOPIC_FILENAME:
                info.topic_count += 1
            elif file.suffix == ITEM_SUFFIX and file.parent.name == TEMPLATES_DIRNAME:
                info.template_count += 1
            elif file.name == SCOPE_FILENAME:
                info.scopes.append(file.parent.name)
        info.scopes.sort()
        return info
