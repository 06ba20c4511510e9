"""Durable translation history.

The history is a single JSON document (``{"history": [...]}``), newest
record first, rewritten atomically on every mutation: the payload goes to
a temp file in the same directory which then replaces the target, and the
previous file is kept as ``.bak`` for corrupt-file recovery.
"""

import json
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from babeldesk.jobs.models import HistoryRecord, utcnow

logger = logging.getLogger(__name__)


class HistoryStore(ABC):
    """Keyed by job id. ``upsert`` only touches the fields it is given."""

    @abstractmethod
    def list(self) -> List[HistoryRecord]:
        ...

    @abstractmethod
    def get(self, record_id: str) -> Optional[HistoryRecord]:
        ...

    @abstractmethod
    def upsert(self, record_id: str, **fields: Any) -> Optional[HistoryRecord]:
        """Merge ``fields`` into an existing record. Returns None if absent."""
        ...

    @abstractmethod
    def append(self, record: HistoryRecord) -> List[HistoryRecord]:
        ...

    @abstractmethod
    def remove(self, record_id: str) -> List[HistoryRecord]:
        ...


def atomic_json_write(path: Path, payload: Dict[str, Any], **kwargs: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists():
        backup = path.with_suffix(".bak")
        try:
            shutil.copy2(str(path), str(backup))
        except OSError as exc:
            logger.warning("Failed to create backup %s: %s", backup, exc)

    tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, **kwargs)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def safe_json_load(path: Path, default: Dict[str, Any]) -> Any:
    """Load ``path``, falling back to ``path.bak`` and then ``default``."""
    for candidate in (path, path.with_suffix(".bak")):
        if not candidate.exists():
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("Corrupt history file %s: %s", candidate, exc)
    return default


class JsonHistoryStore(HistoryStore):
    """History persisted to a JSON file, capped at ``limit`` records."""

    def __init__(self, path: str, limit: int = 500):
        self._path = Path(path)
        self._limit = limit
        data = safe_json_load(self._path, {"history": []})
        self._records: List[HistoryRecord] = []
        entries = data.get("history") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            logger.error("History file %s is not a history document; starting empty", self._path)
            entries = []
        for raw in entries:
            try:
                self._records.append(HistoryRecord.model_validate(raw))
            except ValueError as exc:
                logger.warning("Skipping unreadable history entry: %s", exc)

    @property
    def path(self) -> Path:
        return self._path

    def list(self) -> List[HistoryRecord]:
        return [r.model_copy(deep=True) for r in self._records]

    def get(self, record_id: str) -> Optional[HistoryRecord]:
        for record in self._records:
            if record.id == record_id:
                return record.model_copy(deep=True)
        return None

    def upsert(self, record_id: str, **fields: Any) -> Optional[HistoryRecord]:
        for index, record in enumerate(self._records):
            if record.id != record_id:
                continue
            merged = record.model_dump()
            merged.update(fields)
            merged["updated_at"] = utcnow()
            self._records[index] = HistoryRecord.model_validate(merged)
            self._save()
            return self._records[index].model_copy(deep=True)
        return None

    def append(self, record: HistoryRecord) -> List[HistoryRecord]:
        self._records = [record.model_copy(deep=True), *self._records][: self._limit]
        self._save()
        return self.list()

    def remove(self, record_id: str) -> List[HistoryRecord]:
        self._records = [r for r in self._records if r.id != record_id]
        self._save()
        return self.list()

    def _save(self) -> None:
        payload = {"history": [r.model_dump(mode="json") for r in self._records]}
        atomic_json_write(self._path, payload, indent=2)
