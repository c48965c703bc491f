"""Durable JSON persistence for pydantic models.

Load-at-init, atomic-write-on-mutate: :meth:`JsonFileStore.save` writes
a sibling ``.tmp`` file and renames it over the target, so a crash
mid-write leaves either the old or the new document, never a torn one.
A file that fails validation is logged and treated as absent.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class JsonFileStore(Generic[M]):
    """Persist one pydantic model instance as a JSON document."""

    def __init__(self, path: Path, model: type[M]) -> None:
        self._path = path
        self._model = model

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> M | None:
        """Return the stored model, or ``None`` when absent or unreadable."""
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.exception("Could not read %s", self._path)
            return None
        try:
            return self._model.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Ignoring corrupt %s (%d validation errors)",
                self._path,
                exc.error_count(),
            )
            return None

    def save(self, value: M) -> None:
        """Atomically replace the stored document with *value*."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(value.model_dump_json(indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    def clear(self) -> None:
        """Delete the stored document.  Missing files are not an error."""
        self._path.unlink(missing_ok=True)
