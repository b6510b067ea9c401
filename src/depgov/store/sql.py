"""SQLAlchemy-backed store.

Each logical store is a ``kind`` in the shared ``records`` table. Records
are serialized with their ``to_dict()`` and rebuilt with ``from_dict``.
"""

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from depgov.db.models import Record
from depgov.db.session import session_scope
from depgov.exceptions import DuplicateRecordError
from depgov.utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlStore(Generic[T]):
    """``KeyedStore`` over the ``records`` table.

    Every call opens its own session, so reads run independently of any
    writer. Writes are serialized per store instance.
    """

    def __init__(
        self,
        kind: str,
        factory: sessionmaker,
        from_dict: Callable[[dict], T],
        id_of: Callable[[T], str] = lambda r: r.id,
        tenant_of: Callable[[T], str] = lambda r: r.tenant_id,
    ):
        self.kind = kind
        self.factory = factory
        self.from_dict = from_dict
        self.id_of = id_of
        self.tenant_of = tenant_of
        self._lock = threading.Lock()

    def _row(self, session, record_id: str) -> Optional[Record]:
        return session.get(Record, (self.kind, record_id))

    def get(self, record_id: str) -> Optional[T]:
        with session_scope(self.factory) as session:
            row = self._row(session, record_id)
            return self.from_dict(row.payload) if row else None

    def put(self, record: T) -> None:
        record_id = self.id_of(record)
        with self._lock, session_scope(self.factory) as session:
            row = self._row(session, record_id)
            if row is None:
                session.add(
                    Record(kind=self.kind, id=record_id, tenant_id=self.tenant_of(record), payload=record.to_dict())
                )
            else:
                row.payload = record.to_dict()
                row.tenant_id = self.tenant_of(record)
                row.updated_at = utcnow()

    def add(self, record: T) -> None:
        record_id = self.id_of(record)
        try:
            with self._lock, session_scope(self.factory) as session:
                if self._row(session, record_id) is not None:
                    raise DuplicateRecordError(f"Record {record_id} already exists")
                session.add(
                    Record(kind=self.kind, id=record_id, tenant_id=self.tenant_of(record), payload=record.to_dict())
                )
        except IntegrityError as e:
            raise DuplicateRecordError(f"Record {record_id} already exists") from e

    def delete(self, record_id: str) -> bool:
        with self._lock, session_scope(self.factory) as session:
            row = self._row(session, record_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def list_by_tenant(self, tenant_id: str) -> list[T]:
        with session_scope(self.factory) as session:
            rows = session.scalars(
                select(Record).where(Record.kind == self.kind, Record.tenant_id == tenant_id)
            ).all()
            return [self.from_dict(row.payload) for row in rows]

    def all(self) -> list[T]:
        with session_scope(self.factory) as session:
            rows = session.scalars(select(Record).where(Record.kind == self.kind)).all()
            return [self.from_dict(row.payload) for row in rows]

    def get_or_add(self, key: str, record: T, on_existing: Callable[[T], T]) -> tuple[T, bool]:
        with self._lock, session_scope(self.factory) as session:
            row = session.scalars(
                select(Record).where(Record.kind == self.kind, Record.dedupe_key == key)
            ).first()
            if row is not None:
                updated = on_existing(self.from_dict(row.payload))
                row.payload = updated.to_dict()
                row.updated_at = utcnow()
                return updated, False

            session.add(
                Record(
                    kind=self.kind,
                    id=self.id_of(record),
                    tenant_id=self.tenant_of(record),
                    dedupe_key=key,
                    payload=record.to_dict(),
                )
            )
            logger.debug(f"Inserted {self.kind} record {self.id_of(record)} under key {key}")
            return record, True
