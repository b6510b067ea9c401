"""Keyed store interface used by the engines."""

from typing import Callable, Generic, Optional, Protocol, TypeVar

T = TypeVar("T")


class KeyedStore(Protocol, Generic[T]):
    """Tenant-partitioned record store.

    Reads never block on writers. ``add`` is insert-only and raises
    ``DuplicateRecordError`` for an existing id; ``put`` replaces.
    """

    def get(self, record_id: str) -> Optional[T]: ...

    def put(self, record: T) -> None: ...

    def add(self, record: T) -> None: ...

    def delete(self, record_id: str) -> bool: ...

    def list_by_tenant(self, tenant_id: str) -> list[T]: ...

    def all(self) -> list[T]: ...

    def get_or_add(self, key: str, record: T, on_existing: Callable[[T], T]) -> tuple[T, bool]:
        """
        Atomically insert ``record`` under secondary ``key`` unless one exists.

        Args:
            key: Secondary identity (e.g. a violation dedupe key)
            record: Record to insert when the key is new
            on_existing: Called with the stored record when the key exists;
                its return value replaces the stored record

        Returns:
            (stored record, created)
        """
        ...
