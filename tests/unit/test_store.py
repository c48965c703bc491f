"""Tests for smartthings2mqtt._store — atomic JSON persistence.

Test Techniques Used:
    - State-based Testing: file contents after save/clear
    - Error Guessing: missing, corrupt and schema-invalid files
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel

from smartthings2mqtt._store import JsonFileStore


class _Doc(BaseModel):
    name: str
    count: int = 0


class TestJsonFileStore:
    """Technique: State-based Testing."""

    def test_missing_file_loads_none(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "doc.json", _Doc)
        assert store.load() is None
        assert not store.exists()

    def test_save_then_load(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "doc.json", _Doc)
        store.save(_Doc(name="lamp", count=2))

        assert store.load() == _Doc(name="lamp", count=2)

    def test_save_creates_parent_directories(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "nested" / "dir" / "doc.json", _Doc)
        store.save(_Doc(name="x"))
        assert store.exists()

    def test_save_leaves_no_temporary_file(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "doc.json", _Doc)
        store.save(_Doc(name="x"))
        store.save(_Doc(name="y"))

        assert sorted(p.name for p in tmp_path.iterdir()) == ["doc.json"]

    def test_corrupt_file_is_treated_as_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.json"
        path.write_text("{", encoding="utf-8")

        assert JsonFileStore(path, _Doc).load() is None

    def test_schema_mismatch_is_treated_as_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "doc.json"
        path.write_text('{"count": "many"}', encoding="utf-8")

        assert JsonFileStore(path, _Doc).load() is None

    def test_clear_is_idempotent(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "doc.json", _Doc)
        store.save(_Doc(name="x"))

        store.clear()
        store.clear()

        assert not store.exists()
