"""JSON document persistence helpers."""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

log = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def write_json(path: Path, payload: Any) -> None:
    """Write JSON to ``path``.

    Uses atomic write pattern (write to temp, then rename), so readers never
    observe a half-written document.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w", dir=path.parent, delete=False, suffix=".tmp", encoding="utf-8"
    ) as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
        temp_path = Path(f.name)

    temp_path.replace(path)


def write_model(path: Path, model: BaseModel) -> None:
    write_json(path, model.model_dump(mode="json"))


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def read_model(
    path: Path, model_type: type[ModelT], overrides: dict[str, Any] | None = None
) -> ModelT | None:
    """Load a model from a JSON file, returning None for malformed files.

    ``overrides`` replace values from the file before validation (used to make
    the on-disk location authoritative over embedded paths).
    """
    try:
        data = read_json(path)
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        log.warning("Skipping unreadable file %s: %s", path, e)
        return None

    if not isinstance(data, dict):
        log.warning("Skipping %s: expected a JSON object", path)
        return None

    if overrides:
        data.update(overrides)
    try:
        return model_type.model_validate(data)
    except ValidationError as e:
        log.warning("Skipping invalid %s %s: %s", model_type.__name__, path, e)
        return None
