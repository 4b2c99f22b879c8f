"""
certledger Audit Event Emitter

Append-only notification of everything that changes ledger state.
Events are emitted only after an operation's checks have all passed, so
the log never contains an event for a call that was rejected.
"""

import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from .logging_config import AuditLogger, audit_log


@dataclass(frozen=True)
class LedgerEvent:
    """Base class; `name` identifies the event kind."""

    name = "LedgerEvent"

    def fields(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IssuedEvent(LedgerEvent):
    slot_id: int
    issuer: str
    content_hash: str
    category: str
    created_at: int
    name = "Issued"


@dataclass(frozen=True)
class ValidatedEvent(LedgerEvent):
    content_hash: str
    is_valid: bool
    name = "Validated"


@dataclass(frozen=True)
class RedeemedEvent(LedgerEvent):
    slot_id: int
    redeemed_by: str
    name = "Redeemed"


@dataclass(frozen=True)
class ExtendedEvent(LedgerEvent):
    content_hash: str
    new_deadline: int
    name = "Extended"


@dataclass(frozen=True)
class CategoryApprovedEvent(LedgerEvent):
    category: str
    name = "CategoryApproved"


@dataclass(frozen=True)
class ExternalRefUpdatedEvent(LedgerEvent):
    slot_id: int
    content_hash: str
    external_ref: str
    name = "ExternalRefUpdated"


@dataclass(frozen=True)
class RoleGrantedEvent(LedgerEvent):
    role: str
    identity: str
    sender: str
    name = "RoleGranted"


@dataclass(frozen=True)
class RoleRevokedEvent(LedgerEvent):
    role: str
    identity: str
    sender: str
    name = "RoleRevoked"


@dataclass(frozen=True)
class DelegatedCallEvent(LedgerEvent):
    identity: str
    nonce: int
    function: str
    name = "DelegatedCall"


EVENT_TYPES: Dict[str, type] = {
    cls.name: cls
    for cls in (
        IssuedEvent,
        ValidatedEvent,
        RedeemedEvent,
        ExtendedEvent,
        CategoryApprovedEvent,
        ExternalRefUpdatedEvent,
        RoleGrantedEvent,
        RoleRevokedEvent,
        DelegatedCallEvent,
    )
}


@dataclass(frozen=True)
class LoggedEvent:
    """An event as stored: sequence number plus the event itself."""
    seq: int
    event: LedgerEvent

    def to_dict(self) -> Dict[str, Any]:
        return {"seq": self.seq, "name": self.event.name, "fields": self.event.fields()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoggedEvent':
        event_cls = EVENT_TYPES.get(data["name"])
        if event_cls is None:
            raise ValueError(f"Unknown event type: {data['name']}")
        return cls(seq=int(data["seq"]), event=event_cls(**data["fields"]))


class EventLog:
    """In-process append-only event log."""

    def __init__(self, audit: Optional[AuditLogger] = None):
        self._events: List[LoggedEvent] = []
        self._audit = audit or audit_log
        self._lock = threading.Lock()

    def emit(self, event: LedgerEvent) -> LoggedEvent:
        with self._lock:
            logged = LoggedEvent(seq=len(self._events) + 1, event=event)
            self._events.append(logged)
        self._audit.ledger_event(event.name, logged.seq, event.fields())
        return logged

    def events(self, kind: Optional[str] = None, since: int = 0) -> List[LoggedEvent]:
        """Events with seq > since, optionally filtered by event name."""
        with self._lock:
            records = self._events[since:] if since > 0 else self._events[:]
        if kind:
            records = [r for r in records if r.event.name == kind]
        return records

    def __len__(self) -> int:
        return len(self._events)

    def restore(self, logged: List[LoggedEvent]) -> None:
        with self._lock:
            self._events = sorted(logged, key=lambda e: e.seq)
