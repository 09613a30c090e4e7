from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence
import logging
import re
import shutil
import threading
from uuid import uuid4

import yaml

from .errors import DuplicateDocumentError, StorageError

logger = logging.getLogger(__name__)

MAX_BATCH_OPERATIONS = 500
EVENT_LOG_NAME = "events"

_MISSING = object()
_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in"})
_COLLECTION_RE = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def matches(self, document: dict[str, Any]) -> bool:
        current = document.get(self.field, _MISSING)
        # A missing field is "not equal" to anything, so legacy documents
        # without a status still match status != "cancelled".
        if self.op == "!=":
            return current is _MISSING or current != self.value
        if current is _MISSING or current is None:
            return False
        if self.op == "==":
            return current == self.value
        if self.op == "in":
            return current in self.value

        try:
            if self.op == "<":
                return current < self.value
            if self.op == "<=":
                return current <= self.value
            if self.op == ">":
                return current > self.value
            return current >= self.value
        except TypeError:
            return False


def where(field: str, op: str, value: Any) -> Filter:
    if op not in _OPERATORS:
        raise ValueError(f"unsupported filter operator: {op}")
    return Filter(field, op, value)


@dataclass(frozen=True)
class _BatchOperation:
    kind: str
    collection: str
    doc_id: str
    data: dict[str, Any]
    merge: bool = False


class WriteBatch:
    """Ordered set/update operations committed together per collection file."""

    def __init__(self, store: "YamlDocumentStore") -> None:
        self._store = store
        self._operations: list[_BatchOperation] = []

    def __len__(self) -> int:
        return len(self._operations)

    def set(self, collection: str, data: dict[str, Any], doc_id: str | None = None, merge: bool = False) -> str:
        self._check_capacity()
        effective_id = doc_id or _generate_id()
        self._operations.append(_BatchOperation("set", collection, effective_id, dict(data), merge))
        return effective_id

    def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> None:
        self._check_capacity()
        self._operations.append(_BatchOperation("update", collection, doc_id, dict(changes)))

    async def commit(self) -> int:
        operations, self._operations = self._operations, []
        return self._store._commit(operations)

    def _check_capacity(self) -> None:
        if len(self._operations) >= MAX_BATCH_OPERATIONS:
            raise StorageError(f"A write batch holds at most {MAX_BATCH_OPERATIONS} operations.")


class YamlDocumentStore:
    """Document collections kept as YAML lists, one file per collection."""

    def __init__(self, base_dir: str | Path = "data", clock: Callable[[], datetime] | None = None) -> None:
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / f"{EVENT_LOG_NAME}.yaml"
        self._clock = clock or datetime.now
        self._lock = threading.RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not self.log_file.exists():
            self.log_file.write_text("[]\n", encoding="utf-8")

    def _collection_file(self, collection: str) -> Path:
        if not _COLLECTION_RE.match(collection) or collection == EVENT_LOG_NAME:
            raise ValueError(f"invalid collection name: {collection!r}")
        return self.base_dir / f"{collection}.yaml"

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict) and (path == self.log_file or row.get("id")):
                sanitized.append(row)
            elif path != self.log_file:
                self.log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping with an id",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise StorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = self._clock().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.exception("Could not back up corrupted file %s", path)

        path.write_text("[]\n", encoding="utf-8")
        logger.warning("Recovered corrupted YAML file %s: %s", path.name, error)
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or self._clock()).isoformat(timespec="seconds")
        with self._lock:
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def get_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            events = self._read_yaml_list(self.log_file)
        return [event for event in events if event_type is None or event.get("event_type") == event_type]

    async def query(
        self,
        collection: str,
        *filters: Filter,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._read_yaml_list(self._collection_file(collection))
        matched = [_copy_document(row) for row in rows if all(item.matches(row) for item in filters)]
        if order_by is not None:
            matched.sort(key=lambda row: str(row.get(order_by, "")))
        return matched

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            rows = self._read_yaml_list(self._collection_file(collection))
        for row in rows:
            if str(row.get("id")) == doc_id:
                return _copy_document(row)
        return None

    async def count(self, collection: str, *filters: Filter) -> int:
        with self._lock:
            rows = self._read_yaml_list(self._collection_file(collection))
        return sum(1 for row in rows if all(item.matches(row) for item in filters))

    async def create(
        self,
        collection: str,
        data: dict[str, Any],
        doc_id: str | None = None,
        unique_on: Sequence[Filter] = (),
    ) -> dict[str, Any]:
        """Insert one document.

        With ``unique_on`` the insert is a compare-and-create: it fails with
        DuplicateDocumentError when any stored document matches every filter.
        """
        path = self._collection_file(collection)
        with self._lock:
            rows = self._read_yaml_list(path)
            effective_id = doc_id or _generate_id()
            if any(str(row.get("id")) == effective_id for row in rows):
                raise DuplicateDocumentError(f"{collection}/{effective_id} already exists")
            if unique_on and any(all(item.matches(row) for item in unique_on) for row in rows):
                raise DuplicateDocumentError(f"{collection}: a document matching the unique key already exists")

            document = {"id": effective_id, **{key: value for key, value in data.items() if key != "id"}}
            rows.append(document)
            self._write_yaml_list(path, rows)
        return _copy_document(document)

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Merge ``changes`` into an existing document; other fields are kept."""
        path = self._collection_file(collection)
        with self._lock:
            rows = self._read_yaml_list(path)
            for row in rows:
                if str(row.get("id")) == doc_id:
                    row.update({key: value for key, value in changes.items() if key != "id"})
                    self._write_yaml_list(path, rows)
                    return _copy_document(row)
        raise StorageError(f"{collection}/{doc_id} does not exist")

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _commit(self, operations: Iterable[_BatchOperation]) -> int:
        operations = list(operations)
        if not operations:
            return 0

        with self._lock:
            collections: dict[str, list[dict[str, Any]]] = {}
            for operation in operations:
                if operation.collection not in collections:
                    collections[operation.collection] = self._read_yaml_list(self._collection_file(operation.collection))

            # Validate and apply in memory first so a bad operation leaves every file untouched.
            for operation in operations:
                rows = collections[operation.collection]
                existing = next((row for row in rows if str(row.get("id")) == operation.doc_id), None)
                payload = {key: value for key, value in operation.data.items() if key != "id"}
                if operation.kind == "update":
                    if existing is None:
                        raise StorageError(f"{operation.collection}/{operation.doc_id} does not exist")
                    existing.update(payload)
                elif existing is not None and operation.merge:
                    existing.update(payload)
                elif existing is not None:
                    existing.clear()
                    existing.update({"id": operation.doc_id, **payload})
                else:
                    rows.append({"id": operation.doc_id, **payload})

            for collection, rows in collections.items():
                self._write_yaml_list(self._collection_file(collection), rows)
        return len(operations)


def _generate_id() -> str:
    return uuid4().hex


def _copy_document(row: dict[str, Any]) -> dict[str, Any]:
    return {"id": str(row.get("id")), **{key: value for key, value in row.items() if key != "id"}}
