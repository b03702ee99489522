"""Configuration management for codebricks.

This module contains all configurable constants for the template repository
plus the discovery rules for the data root and the settings file.
Magic values are documented here rather than scattered throughout the codebase.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

log = logging.getLogger(__name__)

__all__ = ["ConfigurationError"]


# =============================================================================
# On-disk layout
# =============================================================================

# Directory under the data root that holds one directory per scope
SCOPES_DIRNAME = "scopes"

# Scope configuration document (languages, favorites, usage)
SCOPE_FILENAME = "scope.json"

# Per-topic metadata file; a directory is a topic iff it holds this file
TOPIC_FILENAME = "topic.json"

# Per-topic content directories. These names are reserved and cannot be
# used as topic names, otherwise a subtopic would shadow them.
TEMPLATES_DIRNAME = "templates"
LINKS_DIRNAME = "links"
RESERVED_TOPIC_NAMES = frozenset({TEMPLATES_DIRNAME, LINKS_DIRNAME})

# File extension for template and link documents
ITEM_SUFFIX = ".json"

# Suffix appended to the data root directory name for pre-migration backups
BACKUP_SUFFIX = ".backup"

# Suffix of the sibling directory a migration copies into before committing
STAGING_SUFFIX = ".staging"


# =============================================================================
# Scopes
# =============================================================================

# Scope created on first start and restored when the current scope is deleted
DEFAULT_SCOPE_ID = "local"
DEFAULT_SCOPE_NAME = "Local"

# Version stamped into scope.json and export bundles
FORMAT_VERSION = "1.0.0"


# =============================================================================
# Recommendations
# =============================================================================

# Number of recommended templates returned when the caller gives no limit
DEFAULT_RECOMMEND_LIMIT = 6

# Number of entries in the "most used" list of scope usage statistics
USAGE_STATS_LIMIT = 10


# =============================================================================
# Documentation
# =============================================================================

# Plain-string documentation longer than this is always treated as markdown,
# never as a file reference
DOC_FILE_REFERENCE_MAX_LENGTH = 500


# =============================================================================
# Locking
# =============================================================================

# Seconds a structural operation waits for an overlapping one before raising
# ConcurrentModificationError. None waits indefinitely.
LOCK_TIMEOUT_SECONDS: float | None = 30.0


# =============================================================================
# Discovery
# =============================================================================


def get_system_default_path() -> Path:
    """Get the operating system's standard application data directory."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "codebricks"
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        return Path(appdata) / "codebricks" if appdata else home / "AppData" / "Roaming" / "codebricks"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "codebricks"
    return home / ".config" / "codebricks"


def get_user_global_path() -> Path:
    """Get the per-user data directory independent of platform conventions."""
    return Path.home() / ".codebricks" / "data"


def get_workspace_path(cwd: Path | None = None) -> Path:
    """Get the workspace-local data directory."""
    return (cwd or Path.cwd()) / ".codebricks"


def get_settings_path() -> Path:
    """Get the settings file location.

    Discovery order:
    1. CODEBRICKS_CONFIG environment variable
    2. ~/.codebricks/settings.yaml
    """
    override = os.environ.get("CODEBRICKS_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".codebricks" / "settings.yaml"


def load_settings(path: Path | None = None) -> dict[str, Any]:
    """Load the YAML settings file.

    Returns:
        Settings mapping; empty when the file is missing or malformed.
    """
    settings_path = path or get_settings_path()
    if not settings_path.exists():
        return {}

    try:
        data = yaml.safe_load(settings_path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("Could not read settings %s: %s", settings_path, e)
        return {}

    if not isinstance(data, dict):
        log.warning("Ignoring settings %s: expected a mapping", settings_path)
        return {}
    return data


def save_settings(settings: dict[str, Any], path: Path | None = None) -> None:
    """Write the YAML settings file, creating its directory if needed."""
    settings_path = path or get_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = settings_path.with_suffix(settings_path.suffix + ".tmp")
    tmp_path.write_text(yaml.safe_dump(settings, sort_keys=False), encoding="utf-8")
    tmp_path.replace(settings_path)


def get_data_root(explicit: Path | str | None = None, settings_path: Path | None = None) -> Path:
    """Get the active data root directory.

    Discovery order:
    1. Explicit argument (e.g. --data-root)
    2. CODEBRICKS_DATA_ROOT environment variable
    3. data_location in the settings file (unless use_system_default is set)
    4. System default path

    Raises:
        ConfigurationError: If a configured location is not a directory.
    """
    if explicit:
        return Path(explicit).expanduser()

    root = os.environ.get("CODEBRICKS_DATA_ROOT")
    if root:
        return Path(root).expanduser()

    settings = load_settings(settings_path)
    location = settings.get("data_location")
    if location and not settings.get("use_system_default", False):
        candidate = Path(str(location)).expanduser()
        if candidate.exists() and not candidate.is_dir():
            raise ConfigurationError(
                f"Configured data location is not a directory: {candidate}",
                {"suggestion": "Run 'bricks data reset' or fix data_location in the settings file"},
            )
        return candidate

    return get_system_default_path()


def get_default_scope(settings_path: Path | None = None) -> str:
    """Get the scope to open at start-up."""
    env_scope = os.environ.get("CODEBRICKS_SCOPE")
    if env_scope:
        return env_scope
    settings = load_settings(settings_path)
    return str(settings.get("current_scope") or DEFAULT_SCOPE_ID)
