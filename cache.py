"""
Local fallback cache

Browser-localStorage equivalent for the API process: one JSON array per
(store_id, collection) key, kept as a file under the cache directory. Records
that carry no store_id (the store registry itself) live in the global scope.

The cache is the degraded path only. It holds every record this process wrote,
whether the remote write succeeded (mirrored) or failed (flagged `_local`), so
reads served from it can be stale relative to the remote store.
"""

from __future__ import annotations
import json
import re
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

GLOBAL_SCOPE = "_global"

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def scope_of(store_id: Optional[str]) -> str:
    return store_id or GLOBAL_SCOPE


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def matches(record: dict[str, Any], filter_dict: Optional[dict[str, Any]]) -> bool:
    return all(record.get(k) == v for k, v in (filter_dict or {}).items())


class LocalCache:
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._lock = threading.RLock()

    def _path(self, scope: str, collection: str) -> Path:
        return self.directory / _UNSAFE.sub("_", scope) / f"{_UNSAFE.sub('_', collection)}.json"

    @staticmethod
    def _read(path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            # A torn write leaves nothing usable; start over
            return []
        return data if isinstance(data, list) else []

    def load(self, scope: str, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            return self._read(self._path(scope, collection))

    def save(self, scope: str, collection: str, records: list[dict[str, Any]]) -> None:
        path = self._path(scope, collection)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(records, default=_json_default, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)

    def find(self, scope: str, collection: str, filter_dict: Optional[dict[str, Any]] = None, limit: Optional[int] = None) -> list[dict[str, Any]]:
        found = [r for r in self.load(scope, collection) if matches(r, filter_dict)]
        return found[:limit] if limit else found

    def get(self, scope: str, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        for record in self.load(scope, collection):
            if record.get("id") == doc_id:
                return record
        return None

    def locate(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Look a record up in every scope, for callers that do not know its store."""
        name = f"{_UNSAFE.sub('_', collection)}.json"
        with self._lock:
            if not self.directory.is_dir():
                return None
            for path in sorted(self.directory.glob(f"*/{name}")):
                for record in self._read(path):
                    if record.get("id") == doc_id:
                        return record
        return None

    def upsert(self, scope: str, collection: str, record: dict[str, Any]) -> None:
        with self._lock:
            records = self.load(scope, collection)
            for i, existing in enumerate(records):
                if existing.get("id") == record.get("id"):
                    records[i] = {**existing, **record}
                    break
            else:
                records.append(record)
            self.save(scope, collection, records)

    def patch(self, scope: str, collection: str, doc_id: str, patch: dict[str, Any]) -> bool:
        with self._lock:
            records = self.load(scope, collection)
            for record in records:
                if record.get("id") == doc_id:
                    record.update(patch)
                    self.save(scope, collection, records)
                    return True
        return False

    def increment(self, scope: str, collection: str, doc_id: str, field: str, delta: float) -> bool:
        with self._lock:
            record = self.get(scope, collection, doc_id)
            if record is None:
                return False
            return self.patch(scope, collection, doc_id, {field: (record.get(field) or 0) + delta})

    def remove(self, scope: str, collection: str, doc_id: str) -> bool:
        with self._lock:
            records = self.load(scope, collection)
            kept = [r for r in records if r.get("id") != doc_id]
            if len(kept) == len(records):
                return False
            self.save(scope, collection, kept)
            return True
