"""
Storage Backend Module

Persistence boundary for the ledgers. The engine only hands plain dictionaries
to a ``StorageInterface``; monetary values are stored as Decimal strings and
dates as ISO strings. ``InMemoryStorage`` backs tests and embedded use.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from datetime import datetime
from dataclasses import dataclass
from contextlib import contextmanager
import copy
import json
import threading


@dataclass
class StorageRecord:
    """Base class for all stored aggregates"""
    id: str
    created_at: datetime
    updated_at: datetime

    def _base_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @staticmethod
    def _parse_base(data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'id': data['id'],
            'created_at': datetime.fromisoformat(data['created_at']),
            'updated_at': datetime.fromisoformat(data['updated_at']),
        }


class AggregateLocks:
    """
    Registry of one lock per aggregate id (single writer per loan/receivable).

    Entries exist only while some thread holds or waits on them.
    """

    def __init__(self):
        self._locks: Dict[str, List[Any]] = {}  # id -> [lock, holders]
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    @contextmanager
    def hold(self, aggregate_id: str):
        with self._registry_lock:
            entry = self._locks.setdefault(aggregate_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[aggregate_id]


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    _registry_guard = threading.Lock()

    @property
    def locks(self) -> AggregateLocks:
        """Per-aggregate write locks shared by every ledger on this storage"""
        with StorageInterface._registry_guard:
            registry = getattr(self, '_aggregate_locks', None)
            if registry is None:
                registry = self._aggregate_locks = AggregateLocks()
            return registry

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, or None if absent"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose top-level fields equal every filter value"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for all-or-nothing writes"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing and embedding"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        # JSON round trip both deep-copies and proves the record is serializable
        return json.loads(json.dumps(record, default=str))

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return self._copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._copy(record) for record in self._table(table).values()]

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                self._copy(record) for record in self._table(table).values()
                if all(record.get(key) == value for key, value in filters.items())
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def begin_transaction(self) -> None:
        # Held until commit/rollback so no other writer lands inside the snapshot
        self._lock.acquire()
        self._snapshot = copy.deepcopy(self._data)

    def commit(self) -> None:
        self._snapshot = None
        self._lock.release()

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._data = self._snapshot
            self._snapshot = None
        self._lock.release()
