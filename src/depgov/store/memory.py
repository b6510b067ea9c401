"""In-memory store backed by dicts."""

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

from depgov.exceptions import DuplicateRecordError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _default_id(record) -> str:
    return record.id


def _default_tenant(record) -> str:
    return record.tenant_id


class MemoryStore(Generic[T]):
    """Dict-backed ``KeyedStore``.

    Writers take a lock and swap in a new dict; readers work on whatever
    dict is current, so they never wait on a write.
    """

    def __init__(
        self,
        id_of: Callable[[T], str] = _default_id,
        tenant_of: Callable[[T], str] = _default_tenant,
    ):
        self.id_of = id_of
        self.tenant_of = tenant_of
        self._records: dict[str, T] = {}
        self._keys: dict[str, str] = {}
        self._lock = threading.RLock()

    def get(self, record_id: str) -> Optional[T]:
        return self._records.get(record_id)

    def put(self, record: T) -> None:
        with self._lock:
            records = dict(self._records)
            records[self.id_of(record)] = record
            self._records = records

    def add(self, record: T) -> None:
        record_id = self.id_of(record)
        with self._lock:
            if record_id in self._records:
                raise DuplicateRecordError(f"Record {record_id} already exists")
            self.put(record)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            if record_id not in self._records:
                return False
            records = dict(self._records)
            del records[record_id]
            self._records = records
            self._keys = {k: v for k, v in self._keys.items() if v != record_id}
            return True

    def list_by_tenant(self, tenant_id: str) -> list[T]:
        return [r for r in self._records.values() if self.tenant_of(r) == tenant_id]

    def all(self) -> list[T]:
        return list(self._records.values())

    def get_or_add(self, key: str, record: T, on_existing: Callable[[T], T]) -> tuple[T, bool]:
        with self._lock:
            existing_id = self._keys.get(key)
            existing = self._records.get(existing_id) if existing_id else None
            if existing is not None:
                updated = on_existing(existing)
                self.put(updated)
                return updated, False

            self.add(record)
            self._keys = {**self._keys, key: self.id_of(record)}
            logger.debug(f"Inserted record {self.id_of(record)} under key {key}")
            return record, True

    def __len__(self) -> int:
        return len(self._records)
