"""Persistent scope configuration (scope.json)."""

from __future__ import annotations

import logging
import shutil
from datetime import UTC, datetime

from .config import DEFAULT_SCOPE_ID, DEFAULT_SCOPE_NAME, SCOPE_FILENAME
from .errors import DuplicateNameError, ScopeNotFoundError, StorageError
from .models import ScopeConfig, ScopeMetadata
from .paths import StoragePaths, validate_name
from .storage import read_model, write_model

log = logging.getLogger(__name__)


def new_scope_config(
    scope_id: str,
    name: str | None = None,
    *,
    description: str = "",
    scope_type: str | None = None,
) -> ScopeConfig:
    """Create an empty scope configuration stamped with creation metadata."""
    now = datetime.now(UTC)
    if scope_type is None:
        scope_type = "local" if scope_id == DEFAULT_SCOPE_ID else "custom"
    return ScopeConfig(
        id=scope_id,
        name=name or (DEFAULT_SCOPE_NAME if scope_id == DEFAULT_SCOPE_ID else scope_id),
        description=description,
        type=scope_type,
        metadata=ScopeMetadata(created=now, updated=now),
    )


class ScopeStore:
    """Load and persist one scope.json per scope directory."""

    def __init__(self, paths: StoragePaths):
        self.paths = paths

    def exists(self, scope_id: str) -> bool:
        return self.paths.scope_file(scope_id).exists()

    def list_ids(self) -> list[str]:
        """Ids of every scope directory holding a scope.json, sorted."""
        scopes_dir = self.paths.scopes_dir
        if not scopes_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in scopes_dir.iterdir()
            if entry.is_dir() and not entry.name.startswith(".") and (entry / SCOPE_FILENAME).exists()
        )

    def load(self, scope_id: str) -> ScopeConfig:
        """Load a scope.

        Raises:
            ScopeNotFoundError: If the scope has no readable scope.json.
        """
        path = self.paths.scope_file(scope_id)
        if not path.exists():
            raise ScopeNotFoundError(scope_id)

        # Directory name is authoritative for the id
        scope = read_model(path, ScopeConfig, {"id": scope_id})
        if scope is None:
            raise ScopeNotFoundError(scope_id)
        return scope

    def save(self, scope: ScopeConfig) -> None:
        """Persist a scope, bumping its updated timestamp."""
        scope.metadata.updated = datetime.now(UTC)
        try:
            write_model(self.paths.scope_file(scope.id), scope)
        except OSError as e:
            raise StorageError.from_os_error(f"Failed to save scope '{scope.id}'", e) from e

    def create(self, scope: ScopeConfig) -> ScopeConfig:
        validate_name(scope.id, "scope")
        if self.exists(scope.id):
            raise DuplicateNameError("scope", scope.id, None)
        self.save(scope)
        log.info("Created scope %s", scope.id)
        return scope

    def delete(self, scope_id: str) -> None:
        scope_dir = self.paths.scope_dir(scope_id)
        if not scope_dir.exists():
            raise ScopeNotFoundError(scope_id)
        try:
            shutil.rmtree(scope_dir)
        except OSError as e:
            raise StorageError.from_os_error(f"Failed to delete scope '{scope_id}'", e) from e
        log.info("Deleted scope %s", scope_id)
