"""Key-value state store for ballot snapshots.

Keys are ballot ids; values are the plain-dict records produced by
``Ballot.to_records``. Without a storage path the store lives in memory.
With one, the whole mapping is kept in a single JSON document that is
rewritten atomically (temp file + rename) on every put, so a crash
mid-write never leaves a truncated file behind.
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional


class StateStore:
    """Ballot snapshot store, in-memory or backed by one JSON file."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._records: dict[str, dict[str, Any]] = {}

        if storage_path and storage_path.exists():
            self._records = self._load_from_file(storage_path)

    def get(self, key: str) -> Optional[dict[str, Any]]:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    def put(self, key: str, record: dict[str, Any]) -> None:
        """Store a record under ``key``.

        Raises OSError if the file write fails; the in-memory mapping is
        only updated after the write succeeds.
        """
        updated = dict(self._records)
        updated[key] = copy.deepcopy(record)
        if self._storage_path:
            self._write_file(self._storage_path, updated)
        self._records = updated

    def keys(self) -> list[str]:
        return list(self._records)

    @staticmethod
    def _load_from_file(path: Path) -> dict[str, dict[str, Any]]:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"State file {path} must contain a JSON object")
        return data

    @staticmethod
    def _write_file(path: Path, records: dict[str, dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, sort_keys=True, ensure_ascii=False)
            os.replace(tmp_name, path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
