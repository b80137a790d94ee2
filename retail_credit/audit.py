"""
Audit Trail Module

Hash-chained immutable log of ledger mutations with SHA-256 for tamper
detection. Every accepted loan or receivable change is recorded here.
"""

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .clock import Clock, SystemClock
from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    LOAN_CREATED = "loan_created"
    INSTALLMENT_PAYMENT = "installment_payment"
    LOAN_PAID_OFF = "loan_paid_off"
    LOAN_CANCELLED = "loan_cancelled"

    RECEIVABLE_CREATED = "receivable_created"
    RECEIVABLE_PAYMENT = "receivable_payment"


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """Immutable audit event chained to its predecessor by hash"""
    event_type: AuditEventType
    entity_type: str  # loan or receivable
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    sequence: int = 0

    def __post_init__(self):
        self.metadata = _json_safe(self.metadata or {})

    def calculate_hash(self) -> str:
        """SHA-256 over every field except ``current_hash``"""
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = self._base_dict()
        result.update({
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'current_hash': self.current_hash,
            'metadata': self.metadata,
            'sequence': self.sequence,
        })
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        return cls(
            **cls._parse_base(data),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data['metadata'],
            sequence=data.get('sequence', 0),
        )


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, clock: Optional[Clock] = None,
                 table_name: str = "audit_events"):
        self.storage = storage
        self.clock = clock or SystemClock()
        self.table_name = table_name
        self._last_hash = ""
        self._last_sequence = 0
        self._lock = threading.Lock()
        self._load_last_hash()

    def _load_last_hash(self) -> None:
        """Load the hash and sequence of the most recent audit event"""
        events = self._ordered_events()
        if events:
            self._last_hash = events[-1].current_hash
            self._last_sequence = events[-1].sequence
        else:
            self._last_hash = ""
            self._last_sequence = 0

    def _ordered_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """
        Append an event to the chain

        Args:
            event_type: Type of audit event
            entity_type: ``loan`` or ``receivable``
            entity_id: ID of the aggregate
            metadata: Event-specific data (Decimal/date/Enum values are stringified)

        Returns:
            Created AuditEvent
        """
        with self._lock:
            # Another trail on the same storage may have appended since
            if self.storage.count(self.table_name) != self._last_sequence:
                self._load_last_hash()
            now = self.clock.now()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash,
                current_hash="",
                metadata=metadata or {},
                sequence=self._last_sequence + 1,
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())

            self._last_hash = event.current_hash
            self._last_sequence = event.sequence
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """All events for one aggregate, oldest first"""
        return [
            e for e in self._ordered_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        return [e for e in self._ordered_events() if e.event_type == event_type]

    def verify_chain(self) -> bool:
        """
        Check every event's hash and its link to the predecessor.

        Returns:
            True when the chain is intact
        """
        previous_hash = ""
        for event in self._ordered_events():
            if event.previous_hash != previous_hash or not event.verify_hash():
                return False
            previous_hash = event.current_hash
        return True
