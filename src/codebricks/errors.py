"""Error taxonomy for codebricks.

Every failure surfaced by the engine is a CodebricksError subclass with a
distinct ErrorCode, so a UI or the CLI can map it to actionable guidance.
Suggestions travel in ``details["suggestion"]``.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable machine-readable error codes."""

    NOT_FOUND = "NOT_FOUND"
    TOPIC_NOT_FOUND = "TOPIC_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    LINK_NOT_FOUND = "LINK_NOT_FOUND"
    SCOPE_NOT_FOUND = "SCOPE_NOT_FOUND"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    INVALID_NAME = "INVALID_NAME"
    CYCLIC_MOVE = "CYCLIC_MOVE"
    NON_EMPTY_TOPIC = "NON_EMPTY_TOPIC"
    INVALID_PATH = "INVALID_PATH"
    STORAGE_ERROR = "STORAGE_ERROR"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    INVALID_IMPORT = "INVALID_IMPORT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


def format_error_json(code: str, message: str, details: dict[str, Any] | None = None) -> str:
    """Format an error as a single-line JSON document."""
    payload: dict[str, Any] = {"error": {"code": str(code), "message": message}}
    if details:
        payload["error"]["details"] = details
    return json.dumps(payload, default=str)


class CodebricksError(Exception):
    """Base class for all engine errors."""

    code: ErrorCode = ErrorCode.NOT_FOUND

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    @property
    def suggestion(self) -> str | None:
        return self.details.get("suggestion")

    def to_json(self) -> str:
        return format_error_json(self.code, self.message, self.details)


# ─────────────────────────────────────────────────────────────────────────────
# Not found
# ─────────────────────────────────────────────────────────────────────────────


class NotFoundError(CodebricksError):
    """A topic, template, link or scope does not exist."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, kind: str, path: str, details: dict[str, Any] | None = None):
        self.kind = kind
        self.path = path
        super().__init__(f"{kind.capitalize()} not found: {path}", details)


class TopicNotFoundError(NotFoundError):
    code = ErrorCode.TOPIC_NOT_FOUND

    def __init__(self, path: str):
        super().__init__("topic", path, {"suggestion": "Check the topic path or create the topic first"})


class TemplateNotFoundError(NotFoundError):
    code = ErrorCode.TEMPLATE_NOT_FOUND

    def __init__(self, path: str):
        super().__init__("template", path)


class LinkNotFoundError(NotFoundError):
    code = ErrorCode.LINK_NOT_FOUND

    def __init__(self, path: str):
        super().__init__("link", path)


class ScopeNotFoundError(NotFoundError):
    code = ErrorCode.SCOPE_NOT_FOUND

    def __init__(self, scope_id: str):
        super().__init__("scope", scope_id, {"suggestion": "Create the scope or switch to an existing one"})


# ─────────────────────────────────────────────────────────────────────────────
# Validation and structural guards
# ─────────────────────────────────────────────────────────────────────────────


class DuplicateNameError(CodebricksError):
    """A sibling with the same name already exists."""

    code = ErrorCode.DUPLICATE_NAME

    def __init__(self, kind: str, name: str, parent: str | None):
        where = f"'{parent}'" if parent else "the root"
        super().__init__(
            f"A {kind} named '{name}' already exists in {where}",
            {"name": name, "parent": parent, "suggestion": "Pick another name"},
        )


class InvalidNameError(CodebricksError):
    """The name cannot be used as a path segment."""

    code = ErrorCode.INVALID_NAME

    def __init__(self, name: str, reason: str):
        super().__init__(
            f"Invalid name '{name}': {reason}",
            {"name": name, "suggestion": "Use a plain name without slashes or a leading dot"},
        )


class CyclicMoveError(CodebricksError):
    """Moving a topic under itself or one of its descendants."""

    code = ErrorCode.CYCLIC_MOVE

    def __init__(self, path: str, new_parent: str):
        super().__init__(
            f"Cannot move '{path}' into '{new_parent}': target is the topic itself or one of its descendants",
            {"path": path, "new_parent": new_parent, "suggestion": "Choose a parent outside the moved subtree"},
        )


class NonEmptyTopicError(CodebricksError):
    """Deleting a topic that still has content without confirmation."""

    code = ErrorCode.NON_EMPTY_TOPIC

    def __init__(self, path: str, subtopics: int, templates: int, links: int):
        super().__init__(
            f"Topic '{path}' is not empty ({subtopics} subtopic(s), {templates} template(s), {links} link(s))",
            {
                "path": path,
                "subtopics": subtopics,
                "templates": templates,
                "links": links,
                "suggestion": "Ask to delete children (delete_children=True)",
            },
        )


class InvalidPathError(CodebricksError):
    """A data location target cannot be used."""

    code = ErrorCode.INVALID_PATH

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Invalid data path {path}: {reason}",
            {"path": path, "reason": reason, "suggestion": "Pick a writable directory outside the current data root"},
        )


class ImportValidationError(CodebricksError):
    """An export bundle is malformed."""

    code = ErrorCode.INVALID_IMPORT


class ConfigurationError(CodebricksError):
    """Raised when configuration is missing or unusable."""

    code = ErrorCode.CONFIGURATION_ERROR


# ─────────────────────────────────────────────────────────────────────────────
# Runtime failures
# ─────────────────────────────────────────────────────────────────────────────


class StorageError(CodebricksError):
    """An underlying filesystem operation failed.

    ``errors`` holds every sub-error accumulated while the operation (and its
    rollback) ran. ``transient`` is set for conditions worth retrying, such as
    permission problems.
    """

    code = ErrorCode.STORAGE_ERROR

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        transient: bool = False,
    ):
        self.errors = list(errors or [])
        self.transient = transient
        details: dict[str, Any] = {"errors": self.errors, "transient": transient}
        if transient:
            details["suggestion"] = "Check file permissions and retry"
        super().__init__(message, details)

    @classmethod
    def from_os_error(cls, context: str, error: OSError) -> StorageError:
        return cls(
            f"{context}: {error}",
            errors=[str(error)],
            transient=isinstance(error, PermissionError),
        )


class ConcurrentModificationError(CodebricksError):
    """Another structural operation holds an overlapping topic path."""

    code = ErrorCode.CONCURRENT_MODIFICATION

    def __init__(self, path: str, held: str):
        super().__init__(
            f"Topic '{path}' is locked by an operation on '{held}'",
            {"path": path, "held": held, "suggestion": "Retry once the running operation finishes"},
        )
