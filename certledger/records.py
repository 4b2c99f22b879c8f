"""
certledger Record model

A Record is one issued attestation. Its payload, owner, category and
creation time are fixed at issuance; only status, external_ref, deadline
and redemption bookkeeping ever change, and only through the store.

Payload shapes:
    TextPayload     opaque string (e.g. a serialized voucher document)
    VoucherPayload  structured fields with a validity window; its
                    valid_until is the record deadline

Lazy expiry:
    effective_status(record, now) is the logical status at `now` and never
    writes. materialize_expiry(record, now) commits ACTIVE -> EXPIRED once
    the deadline has passed. The stored status may lag the logical one
    until the record is next touched by verify or redeem.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from .canonicalization import canonicalize
from .util import to_epoch


class RecordStatus(str, Enum):
    """
    Record lifecycle.

    ACTIVE -> REDEEMED   (terminal)
    ACTIVE -> EXPIRED    (terminal w.r.t. re-activation)
    EXPIRED -> REDEEMED  (after-expiry redemption policy only)
    """
    ACTIVE = "ACTIVE"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


ALLOWED_TRANSITIONS = {
    RecordStatus.ACTIVE: {RecordStatus.REDEEMED, RecordStatus.EXPIRED},
    RecordStatus.EXPIRED: {RecordStatus.REDEEMED},
    RecordStatus.REDEEMED: set(),
}


class Payload(ABC):
    """Shape of the content a record attests to."""

    kind: str = ""

    @property
    @abstractmethod
    def deadline(self) -> Optional[int]:
        """Epoch seconds after which the record expires, or None."""

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def content_bytes(self) -> bytes:
        """Bytes the content hash is computed over."""


@dataclass(frozen=True)
class TextPayload(Payload):
    text: str
    kind = "text"

    def __post_init__(self):
        if not isinstance(self.text, str):
            raise ValueError("text payload must be a string")

    @property
    def deadline(self) -> Optional[int]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "text": self.text}

    def content_bytes(self) -> bytes:
        return self.text.encode('utf-8')


@dataclass(frozen=True)
class VoucherPayload(Payload):
    """
    Structured attestation: who it is about, an identifying code and a
    validity window. Extra fields ride along in attributes and are covered
    by the content hash.
    """
    subject: str
    code: str
    valid_until: int
    valid_from: Optional[int] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    kind = "voucher"

    def __post_init__(self):
        if not self.subject:
            raise ValueError("voucher subject must not be empty")
        if not self.code:
            raise ValueError("voucher code must not be empty")
        if not isinstance(self.valid_until, int) or isinstance(self.valid_until, bool) or self.valid_until <= 0:
            raise ValueError("voucher valid_until must be a positive epoch timestamp")
        if self.valid_from is not None and self.valid_from > self.valid_until:
            raise ValueError("voucher valid_from must not be after valid_until")

    @property
    def deadline(self) -> Optional[int]:
        return self.valid_until

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "kind": self.kind,
            "subject": self.subject,
            "code": self.code,
            "valid_until": self.valid_until,
            "attributes": self.attributes,
        }
        if self.valid_from is not None:
            d["valid_from"] = self.valid_from
        return d

    def content_bytes(self) -> bytes:
        return canonicalize(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoucherPayload':
        """Build from a dict; dates may be epoch ints or RFC3339 strings."""
        required = ["subject", "code", "valid_until"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ValueError("voucher attributes must be an object")
        return cls(
            subject=str(data["subject"]),
            code=str(data["code"]),
            valid_until=to_epoch(data["valid_until"]),
            valid_from=to_epoch(data.get("valid_from")),
            attributes=dict(attributes),
        )


def payload_from_wire(data: Union[str, Dict[str, Any], Payload]) -> Payload:
    """Turn a transport value (string or dict) into a Payload."""
    if isinstance(data, Payload):
        return data
    if isinstance(data, str):
        return TextPayload(data)
    if isinstance(data, dict):
        kind = data.get("kind", "voucher")
        if kind == "text":
            return TextPayload(data.get("text", ""))
        if kind == "voucher":
            return VoucherPayload.from_dict(data)
        raise ValueError(f"Unknown payload kind: {kind}")
    raise ValueError(f"Unsupported payload type: {type(data)}")


@dataclass
class Record:
    slot_id: int
    content_hash: str
    owner_identity: str
    category: str
    payload: Payload
    created_at: int
    status: RecordStatus = RecordStatus.ACTIVE
    external_ref: str = ""
    deadline: Optional[int] = None
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[int] = None

    def transition(self, new_status: RecordStatus) -> None:
        """Move to new_status; backward or sideways moves are a programming error."""
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise RuntimeError(f"illegal status transition {self.status.value} -> {new_status.value}")
        self.status = new_status

    def copy(self) -> 'Record':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "content_hash": self.content_hash,
            "owner_identity": self.owner_identity,
            "category": self.category,
            "payload": self.payload.to_dict(),
            "created_at": self.created_at,
            "status": self.status.value,
            "external_ref": self.external_ref,
            "deadline": self.deadline,
            "redeemed_by": self.redeemed_by,
            "redeemed_at": self.redeemed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Record':
        return cls(
            slot_id=int(data["slot_id"]),
            content_hash=data["content_hash"],
            owner_identity=data["owner_identity"],
            category=data["category"],
            payload=payload_from_wire(data["payload"]),
            created_at=int(data["created_at"]),
            status=RecordStatus(data["status"]),
            external_ref=data.get("external_ref") or "",
            deadline=data.get("deadline"),
            redeemed_by=data.get("redeemed_by"),
            redeemed_at=data.get("redeemed_at"),
        )


def is_past_deadline(record: Record, now: int) -> bool:
    return record.deadline is not None and now > record.deadline


def effective_status(record: Record, now: int) -> RecordStatus:
    """Logical status at `now`. Pure: never writes."""
    if record.status == RecordStatus.ACTIVE and is_past_deadline(record, now):
        return RecordStatus.EXPIRED
    return record.status


def materialize_expiry(record: Record, now: int) -> bool:
    """
    Commit a pending ACTIVE -> EXPIRED flip.

    Returns:
        True if the status changed on this call
    """
    if record.status == RecordStatus.ACTIVE and is_past_deadline(record, now):
        record.transition(RecordStatus.EXPIRED)
        return True
    return False
