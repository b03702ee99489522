"""Storage path resolution.

Maps a data root plus scope id to concrete directories, and provides the
pure helpers used to manipulate logical "/"-joined topic and item paths.

Logical addresses:
    topic      c/basics
    template   c/basics/templates/hello
    link       c/basics/links/reference

On disk (per scope):
    {data_root}/scopes/{scope_id}/scope.json
    {data_root}/scopes/{scope_id}/c/basics/topic.json
    {data_root}/scopes/{scope_id}/c/basics/templates/hello.json
    {data_root}/scopes/{scope_id}/c/basics/links/reference.json
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, NamedTuple

from .config import (
    ITEM_SUFFIX,
    LINKS_DIRNAME,
    RESERVED_TOPIC_NAMES,
    SCOPE_FILENAME,
    SCOPES_DIRNAME,
    TEMPLATES_DIRNAME,
    TOPIC_FILENAME,
)
from .errors import InvalidNameError

ItemKind = Literal["topic", "template", "link"]


class ItemAddress(NamedTuple):
    kind: ItemKind
    topic_path: str
    name: str


# ─────────────────────────────────────────────────────────────────────────────
# Logical path helpers
# ─────────────────────────────────────────────────────────────────────────────


def normalize_path(path: str | None) -> str:
    """Strip surrounding slashes and collapse empty segments."""
    if not path:
        return ""
    return "/".join(part for part in path.replace("\\", "/").split("/") if part)


def split_path(path: str) -> list[str]:
    normalized = normalize_path(path)
    return normalized.split("/") if normalized else []


def join_path(*parts: str | None) -> str:
    return "/".join(normalize_path(p) for p in parts if p and normalize_path(p))


def parent_path(path: str) -> str | None:
    """Parent topic path, or None for a root topic."""
    head, sep, _ = normalize_path(path).rpartition("/")
    return head if sep else None


def path_name(path: str) -> str:
    return normalize_path(path).rpartition("/")[2]


def is_same_or_descendant(path: str, ancestor: str) -> bool:
    """True if ``path`` equals ``ancestor`` or lies beneath it."""
    return path == ancestor or path.startswith(ancestor + "/")


def paths_overlap(a: str, b: str) -> bool:
    return is_same_or_descendant(a, b) or is_same_or_descendant(b, a)


def replace_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Rewrite ``old_prefix`` to ``new_prefix`` if ``path`` lies under it."""
    if path == old_prefix:
        return new_prefix
    if path.startswith(old_prefix + "/"):
        return new_prefix + path[len(old_prefix):]
    return path


def template_item_path(topic_path: str, name: str) -> str:
    return f"{topic_path}/{TEMPLATES_DIRNAME}/{name}"


def link_item_path(topic_path: str, name: str) -> str:
    return f"{topic_path}/{LINKS_DIRNAME}/{name}"


def parse_item_path(path: str) -> ItemAddress:
    """Parse a logical address into (kind, topic_path, name).

    Examples:
        "c/basics/templates/hello" -> ("template", "c/basics", "hello")
        "c/basics/links/ref"       -> ("link", "c/basics", "ref")
        "c/basics"                 -> ("topic", "c/basics", "basics")
    """
    parts = split_path(path)
    if len(parts) >= 3 and parts[-2] == TEMPLATES_DIRNAME:
        return ItemAddress("template", "/".join(parts[:-2]), parts[-1])
    if len(parts) >= 3 and parts[-2] == LINKS_DIRNAME:
        return ItemAddress("link", "/".join(parts[:-2]), parts[-1])
    normalized = "/".join(parts)
    return ItemAddress("topic", normalized, path_name(normalized))


def validate_name(name: str, kind: str = "topic") -> str:
    """Validate a single path segment.

    Raises:
        InvalidNameError: For empty names, separators, leading dots, or a
            topic named like a reserved content directory.
    """
    if not name or not name.strip():
        raise InvalidNameError(name, "name cannot be empty")
    if name != name.strip():
        raise InvalidNameError(name, "name cannot start or end with whitespace")
    if "/" in name or "\\" in name:
        raise InvalidNameError(name, "name cannot contain path separators")
    if name.startswith("."):
        raise InvalidNameError(name, "name cannot start with a dot")
    if kind == "topic" and name in RESERVED_TOPIC_NAMES:
        raise InvalidNameError(name, f"'{name}' is reserved for topic content")
    return name


# ─────────────────────────────────────────────────────────────────────────────
# Filesystem locations
# ─────────────────────────────────────────────────────────────────────────────


class StoragePaths:
    """Resolve logical addresses to directories under a data root.

    ``data_root`` is the active-path pointer; only the data location service
    swaps it, and only after a migration fully succeeds.
    """

    def __init__(self, data_root: Path | str):
        self.data_root = Path(data_root)

    def __repr__(self) -> str:
        return f"StoragePaths({str(self.data_root)!r})"

    @property
    def scopes_dir(self) -> Path:
        return self.data_root / SCOPES_DIRNAME

    def scope_dir(self, scope_id: str) -> Path:
        validate_name(scope_id, "scope")
        return self.scopes_dir / scope_id

    def scope_file(self, scope_id: str) -> Path:
        return self.scope_dir(scope_id) / SCOPE_FILENAME

    def topic_dir(self, scope_id: str, topic_path: str) -> Path:
        return self.scope_dir(scope_id).joinpath(*split_path(topic_path))

    def topic_file(self, scope_id: str, topic_path: str) -> Path:
        return self.topic_dir(scope_id, topic_path) / TOPIC_FILENAME

    def templates_dir(self, scope_id: str, topic_path: str) -> Path:
        return self.topic_dir(scope_id, topic_path) / TEMPLATES_DIRNAME

    def template_file(self, scope_id: str, topic_path: str, name: str) -> Path:
        return self.templates_dir(scope_id, topic_path) / f"{name}{ITEM_SUFFIX}"

    def links_dir(self, scope_id: str, topic_path: str) -> Path:
        return self.topic_dir(scope_id, topic_path) / LINKS_DIRNAME

    def link_file(self, scope_id: str, topic_path: str, name: str) -> Path:
        return self.links_dir(scope_id, topic_path) / f"{name}{ITEM_SUFFIX}"

    def relative_topic_path(self, scope_id: str, directory: Path) -> str:
        """Logical topic path of a directory inside a scope."""
        return directory.relative_to(self.scope_dir(scope_id)).as_posix()
