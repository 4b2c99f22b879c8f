"""
certledger Attestation Store

The ledger's core maps:

    ContentHash -> SlotId                 write-once, unique
    SlotId -> { CategoryKey -> Record }   one record per (slot, category)

Every entry point validates completely before it writes, so a raised
error leaves both maps untouched. The single deliberate exception is lazy
expiry: when verify or redeem finds a record past its deadline, the
ACTIVE -> EXPIRED flip is committed before Expired is raised.

Role checks are injected (`require`), as is event emission, so the store
carries no policy of its own beyond the record state machine and the
redemption policy it was constructed with.
"""

from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from .categories import CategoryRegistry
from .errors import (
    AlreadyExists,
    AlreadyRedeemed,
    CategoryNotApproved,
    Expired,
    InvalidDate,
    NotFound,
    StillActive,
    TokenNotExists,
)
from .events import (
    EventLog,
    ExtendedEvent,
    ExternalRefUpdatedEvent,
    IssuedEvent,
    RedeemedEvent,
    ValidatedEvent,
)
from .hashing import is_digest, resolve_category
from .records import (
    Record,
    RecordStatus,
    effective_status,
    materialize_expiry,
    payload_from_wire,
)
from .roles import Role
from .slots import ABSENT_SLOT, SlotAllocator


class RedemptionPolicy(str, Enum):
    """
    When a record may be redeemed. A store applies exactly one.

    BEFORE_EXPIRY  redeem any time while the record is active (default)
    AFTER_EXPIRY   redeem only once the record has expired
    """
    BEFORE_EXPIRY = "before_expiry"
    AFTER_EXPIRY = "after_expiry"


class AttestationStore:

    def __init__(
        self,
        categories: CategoryRegistry,
        allocator: SlotAllocator,
        events: EventLog,
        require: Callable[..., None],
        policy: RedemptionPolicy = RedemptionPolicy.BEFORE_EXPIRY,
    ):
        self._categories = categories
        self._allocator = allocator
        self._events = events
        self._require = require
        self.policy = RedemptionPolicy(policy)
        self._hash_to_slot: Dict[str, int] = {}
        self._records: Dict[int, Dict[str, Record]] = {}

    # ------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------

    def slot_of(self, content_hash: str) -> int:
        """Slot issued for content_hash, or ABSENT_SLOT."""
        if not is_digest(content_hash):
            raise ValueError(f"content hash must be a sha256 digest, got {content_hash!r}")
        return self._hash_to_slot.get(content_hash, ABSENT_SLOT)

    def _lookup(self, content_hash: str, category: Optional[str]) -> Record:
        slot_id = self.slot_of(content_hash)
        if slot_id == ABSENT_SLOT:
            raise NotFound(content_hash)
        # The hash map and the slot table are written together; a miss
        # here means the slot was never allocated or holds another category.
        if not self._allocator.exists(slot_id) or slot_id not in self._records:
            raise TokenNotExists(slot_id)
        by_category = self._records[slot_id]
        if category is None:
            if len(by_category) != 1:
                raise TokenNotExists(slot_id, "<unspecified>")
            return next(iter(by_category.values()))
        key = resolve_category(category)
        record = by_category.get(key)
        if record is None:
            raise TokenNotExists(slot_id, key)
        return record

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------

    def issue(self, caller: str, content_hash: str, category: str, payload, now: int) -> int:
        """
        Issue a new record. Issuer only.

        Raises:
            Unauthorized: caller lacks ISSUER
            CategoryNotApproved: category is not allowlisted (checked first)
            AlreadyExists: content_hash was issued before
        """
        self._require(caller, Role.ISSUER)
        key = resolve_category(category)
        if not self._categories.is_approved(key):
            raise CategoryNotApproved(key)
        existing = self.slot_of(content_hash)
        if existing != ABSENT_SLOT:
            raise AlreadyExists(content_hash, existing)
        payload = payload_from_wire(payload)

        slot_id = self._allocator.allocate(caller)
        record = Record(
            slot_id=slot_id,
            content_hash=content_hash,
            owner_identity=caller,
            category=key,
            payload=payload,
            created_at=now,
            deadline=payload.deadline,
        )
        self._records.setdefault(slot_id, {})[key] = record
        self._hash_to_slot[content_hash] = slot_id

        self._events.emit(IssuedEvent(
            slot_id=slot_id,
            issuer=caller,
            content_hash=content_hash,
            category=key,
            created_at=now,
        ))
        return slot_id

    def _expire_if_due(self, record: Record, now: int) -> None:
        if materialize_expiry(record, now):
            self._events.emit(ValidatedEvent(content_hash=record.content_hash, is_valid=False))

    def verify(self, content_hash: str, category: str, now: int) -> None:
        """
        Confirm a record is currently valid. Open to any caller.

        Raises:
            NotFound, TokenNotExists, AlreadyRedeemed, Expired
        """
        record = self._lookup(content_hash, category)
        if record.status == RecordStatus.REDEEMED:
            raise AlreadyRedeemed(content_hash)
        self._expire_if_due(record, now)
        if record.status == RecordStatus.EXPIRED:
            raise Expired(content_hash, record.deadline)
        self._events.emit(ValidatedEvent(content_hash=content_hash, is_valid=True))

    def redeem(self, caller: str, content_hash: str, category: str, now: int) -> int:
        """
        Redeem a record under the store's redemption policy. Issuer only.

        Returns:
            The redeemed slot id
        """
        self._require(caller, Role.ISSUER)
        record = self._lookup(content_hash, category)
        if record.status == RecordStatus.REDEEMED:
            raise AlreadyRedeemed(content_hash)
        self._expire_if_due(record, now)

        if self.policy == RedemptionPolicy.BEFORE_EXPIRY:
            if record.status == RecordStatus.EXPIRED:
                raise Expired(content_hash, record.deadline)
        elif record.status == RecordStatus.ACTIVE:
            raise StillActive(content_hash, record.deadline)

        record.transition(RecordStatus.REDEEMED)
        record.redeemed_by = caller
        record.redeemed_at = now
        self._events.emit(RedeemedEvent(slot_id=record.slot_id, redeemed_by=caller))
        return record.slot_id

    def set_external_ref(self, caller: str, content_hash: str, category: str, ref: str) -> None:
        """Point a record at off-chain data. Issuer only."""
        self._require(caller, Role.ISSUER)
        if not isinstance(ref, str):
            raise ValueError("external ref must be a string")
        record = self._lookup(content_hash, category)
        record.external_ref = ref
        self._events.emit(ExternalRefUpdatedEvent(
            slot_id=record.slot_id,
            content_hash=content_hash,
            external_ref=ref,
        ))

    def extend_deadline(
        self,
        caller: str,
        content_hash: str,
        new_deadline: int,
        now: int,
        category: Optional[str] = None,
    ) -> None:
        """
        Push a date-bearing record's deadline later. Administrator or Issuer.

        The status is left alone: an expired record stays expired.

        Raises:
            AlreadyRedeemed: record is redeemed
            InvalidDate: zero, not in the future, earlier than the current
                deadline, or the record has no deadline
        """
        self._require(caller, Role.ADMIN, Role.ISSUER)
        record = self._lookup(content_hash, category)
        if record.status == RecordStatus.REDEEMED:
            raise AlreadyRedeemed(content_hash)
        if isinstance(new_deadline, bool) or not isinstance(new_deadline, int):
            raise InvalidDate("deadline must be an integer timestamp", new_deadline, record.deadline)
        if new_deadline == 0:
            raise InvalidDate("deadline must not be zero", new_deadline, record.deadline)
        if new_deadline <= now:
            raise InvalidDate("deadline must be in the future", new_deadline, record.deadline)
        if record.deadline is None:
            raise InvalidDate("record carries no deadline", new_deadline, None)
        if new_deadline < record.deadline:
            raise InvalidDate("deadline must not move earlier", new_deadline, record.deadline)

        record.deadline = new_deadline
        self._events.emit(ExtendedEvent(content_hash=content_hash, new_deadline=new_deadline))

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def get_record(self, content_hash: str, category: Optional[str]) -> Record:
        """Copy of the stored record; stored status may lag (see get_status)."""
        return self._lookup(content_hash, category).copy()

    def get_issued_at(self, content_hash: str, category: Optional[str]) -> int:
        return self._lookup(content_hash, category).created_at

    def get_status(self, content_hash: str, category: Optional[str], now: int) -> RecordStatus:
        """Logical status at `now` without materializing expiry."""
        return effective_status(self._lookup(content_hash, category), now)

    def records_of_slot(self, slot_id: int) -> List[Record]:
        if not self._allocator.exists(slot_id):
            raise TokenNotExists(slot_id)
        return [r.copy() for r in self._records.get(slot_id, {}).values()]

    # ------------------------------------------------------------
    # Snapshot support
    # ------------------------------------------------------------

    def all_records(self) -> List[Record]:
        return [r for by_cat in self._records.values() for r in by_cat.values()]

    def hash_slots(self) -> List[Tuple[str, int]]:
        return sorted(self._hash_to_slot.items(), key=lambda item: item[1])

    def restore(self, hash_slots: Dict[str, int], records: List[Record]) -> None:
        self._hash_to_slot = dict(hash_slots)
        self._records = {}
        for record in records:
            self._records.setdefault(record.slot_id, {})[record.category] = record
