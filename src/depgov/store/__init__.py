"""Keyed record stores."""

from depgov.store.base import KeyedStore
from depgov.store.memory import MemoryStore
from depgov.store.sql import SqlStore

__all__ = ["KeyedStore", "MemoryStore", "SqlStore"]
