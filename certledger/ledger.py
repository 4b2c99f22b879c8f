"""
certledger Ledger

The Ledger composes the category registry, slot allocator, attestation
store, access control, relay and event log behind one re-entrant lock.
Every public operation is a single serialized state transition.

Callers pass their own identity as `caller`. Delegated calls arrive
through delegated_execute(), which verifies the signature and nonce and
then dispatches to the same methods as the verified identity.

Usage:
    ledger = Ledger(admin="0x...")
    ledger.grant_role(admin, Role.ISSUER, issuer)
    ledger.approve_category(admin, "CERT")
    slot = ledger.issue(issuer, payload_hash("payload-A"), "CERT", "payload-A")
    ledger.verify(payload_hash("payload-A"), "CERT")
"""

import functools
import threading
from typing import Any, Callable, Dict, List, Optional

from .categories import CategoryRegistry
from .errors import LedgerError, Unauthorized, UnknownFunction
from .events import (
    CategoryApprovedEvent,
    EventLog,
    LoggedEvent,
    RoleGrantedEvent,
    RoleRevokedEvent,
)
from .logging_config import AuditLogger, audit_log
from .records import Record, RecordStatus
from .relay import DelegatedRelay, DelegationDomain, NonceRegistry, SignatureScheme
from .roles import AccessControl, Role
from .slots import SlotAllocator
from .store import AttestationStore, RedemptionPolicy
from .util import now_epoch

SNAPSHOT_VERSION = 1

DEFAULT_ADDRESS = "0x" + "0" * 40

# function -> (required args, optional args)
DELEGABLE_FUNCTIONS = {
    "approve_category": (("category",), ()),
    "issue": (("content_hash", "category", "payload"), ()),
    "verify": (("content_hash", "category"), ()),
    "redeem": (("content_hash", "category"), ()),
    "set_external_ref": (("content_hash", "category", "ref"), ()),
    "extend_deadline": (("content_hash", "new_deadline"), ("category",)),
    "grant_role": (("role", "identity"), ()),
    "revoke_role": (("role", "identity"), ()),
    "renounce_role": (("role",), ()),
    "has_role": (("role", "identity"), ()),
}

# Delegable functions that take no acting identity
_CALLERLESS = {"verify"}


def _operation(has_caller: bool = True):
    """Run a Ledger method under the ledger lock and audit its failures."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            with self._lock:
                try:
                    return fn(self, *args, **kwargs)
                except LedgerError as e:
                    caller = None
                    if has_caller:
                        caller = kwargs.get("caller", args[0] if args else None)
                    if isinstance(e, Unauthorized):
                        self._audit.authorization_denied(e.details["identity"], e.details["role"], fn.__name__)
                    self._audit.operation_failed(fn.__name__, caller, e.to_dict())
                    raise
        return wrapper
    return decorator


class Ledger:
    """
    Attestation ledger.

    Args:
        admin: Deploying identity; receives ADMIN. None only when restoring.
        name, symbol: Collection labels
        version, chain_id, address: Bind delegated-call signatures to this ledger
        clock: Returns the current epoch seconds
        policy: Redemption policy applied to every record
    """

    def __init__(
        self,
        admin: Optional[str],
        name: str = "CertLedger",
        symbol: str = "CERT",
        version: str = "1",
        chain_id: int = 1,
        address: str = DEFAULT_ADDRESS,
        clock: Callable[[], int] = now_epoch,
        policy: RedemptionPolicy = RedemptionPolicy.BEFORE_EXPIRY,
        scheme: Optional[SignatureScheme] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.name = name
        self.symbol = symbol
        self.domain = DelegationDomain(name=name, version=version, chain_id=chain_id, address=address)
        self._clock = clock
        self._lock = threading.RLock()
        self._audit = audit or audit_log

        self.events = EventLog(self._audit)
        self.access = AccessControl(on_change=self._on_role_change)
        self.categories = CategoryRegistry(self.access.require)
        self.slots = SlotAllocator()
        self.store = AttestationStore(
            self.categories,
            self.slots,
            self.events,
            self.access.require,
            policy=policy,
        )
        self.relay = DelegatedRelay(
            self.domain,
            self._dispatch,
            self.events,
            scheme=scheme,
            nonces=NonceRegistry(),
            lock=self._lock,
            audit=self._audit,
        )

        if admin:
            self.access.bootstrap(Role.ADMIN, [admin])
            self.events.emit(RoleGrantedEvent(role=Role.ADMIN.value, identity=admin, sender=admin))

    @property
    def policy(self) -> RedemptionPolicy:
        return self.store.policy

    def now(self) -> int:
        return self._clock()

    def _on_role_change(self, action: str, role: Role, identity: str, caller: str) -> None:
        if action == "granted":
            self.events.emit(RoleGrantedEvent(role=role.value, identity=identity, sender=caller))
        else:
            self.events.emit(RoleRevokedEvent(role=role.value, identity=identity, sender=caller))

    # ------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------

    @_operation()
    def approve_category(self, caller: str, category: str) -> str:
        key = self.categories.approve(caller, category)
        self.events.emit(CategoryApprovedEvent(category=key))
        return key

    def is_category_approved(self, category: str) -> bool:
        with self._lock:
            return self.categories.is_approved(category)

    # ------------------------------------------------------------
    # Records
    # ------------------------------------------------------------

    @_operation()
    def issue(self, caller: str, content_hash: str, category: str, payload) -> int:
        return self.store.issue(caller, content_hash, category, payload, self.now())

    @_operation(has_caller=False)
    def verify(self, content_hash: str, category: str) -> None:
        self.store.verify(content_hash, category, self.now())

    @_operation()
    def redeem(self, caller: str, content_hash: str, category: str) -> int:
        return self.store.redeem(caller, content_hash, category, self.now())

    @_operation()
    def set_external_ref(self, caller: str, content_hash: str, category: str, ref: str) -> None:
        self.store.set_external_ref(caller, content_hash, category, ref)

    @_operation()
    def extend_deadline(
        self,
        caller: str,
        content_hash: str,
        new_deadline: int,
        category: Optional[str] = None,
    ) -> None:
        self.store.extend_deadline(caller, content_hash, new_deadline, self.now(), category)

    @_operation(has_caller=False)
    def get_record(self, content_hash: str, category: Optional[str] = None) -> Record:
        return self.store.get_record(content_hash, category)

    @_operation(has_caller=False)
    def get_issued_at(self, content_hash: str, category: Optional[str] = None) -> int:
        return self.store.get_issued_at(content_hash, category)

    @_operation(has_caller=False)
    def get_status(self, content_hash: str, category: Optional[str] = None) -> RecordStatus:
        return self.store.get_status(content_hash, category, self.now())

    def slot_of(self, content_hash: str) -> int:
        with self._lock:
            return self.store.slot_of(content_hash)

    # ------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------

    @_operation()
    def grant_role(self, caller: str, role, identity: str) -> bool:
        return self.access.grant_role(caller, role, identity)

    @_operation()
    def revoke_role(self, caller: str, role, identity: str) -> bool:
        return self.access.revoke_role(caller, role, identity)

    @_operation()
    def renounce_role(self, caller: str, role) -> bool:
        return self.access.renounce_role(caller, role)

    @_operation()
    def has_role(self, caller: str, role, identity: str) -> bool:
        return self.access.has_role(caller, role, identity)

    # ------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------

    def total_supply(self) -> int:
        with self._lock:
            return self.slots.total_allocated()

    def balance_of(self, identity: str) -> int:
        with self._lock:
            return self.slots.balance_of(identity)

    @_operation(has_caller=False)
    def owner_of(self, slot_id: int) -> str:
        return self.slots.owner_of(slot_id)

    @_operation(has_caller=False)
    def token_uri(self, slot_id: int) -> str:
        """External ref of the slot's record ("" when unset)."""
        records = self.store.records_of_slot(slot_id)
        return records[0].external_ref if records else ""

    @_operation()
    def transfer(self, caller: str, slot_id: int, to: str) -> None:
        self._audit.security_event("transfer_attempted", "medium", caller=caller, slot_id=slot_id, to=to)
        self.slots.transfer(caller, slot_id, to)

    # ------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------

    def nonce_of(self, identity: str) -> int:
        with self._lock:
            return self.relay.nonces.nonce_of(identity)

    @_operation()
    def delegated_execute(self, identity: str, nonce: int, encoded_call: str, signature: Any) -> Any:
        """Execute a signed call on behalf of identity; see DelegatedRelay.execute."""
        return self.relay.execute(identity, nonce, encoded_call, signature)

    def _dispatch(self, identity: str, function: str, args: Dict[str, Any]) -> Any:
        arity = DELEGABLE_FUNCTIONS.get(function)
        if arity is None:
            raise UnknownFunction(function)
        required, optional = arity
        missing = [a for a in required if a not in args]
        unexpected = [a for a in args if a not in required and a not in optional]
        if missing or unexpected:
            raise UnknownFunction(function, f"missing args {missing}, unexpected args {unexpected}")

        method = getattr(self, function)
        if function in _CALLERLESS:
            return method(**args)
        return method(identity, **args)

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    def get_events(self, kind: Optional[str] = None, since: int = 0) -> List[LoggedEvent]:
        return self.events.events(kind=kind, since=since)

    # ------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Complete ledger state as JSON-compatible data."""
        with self._lock:
            return {
                "version": SNAPSHOT_VERSION,
                "name": self.name,
                "symbol": self.symbol,
                "domain": self.domain.to_dict(),
                "policy": self.policy.value,
                "categories": self.categories.to_dict(),
                "slots": self.slots.to_dict(),
                "hash_slots": dict(self.store.hash_slots()),
                "records": [r.to_dict() for r in self.store.all_records()],
                "roles": self.access.to_dict(),
                "nonces": self.relay.nonces.to_dict(),
                "events": [e.to_dict() for e in self.events.events()],
            }

    @classmethod
    def restore(
        cls,
        snapshot: Dict[str, Any],
        clock: Callable[[], int] = now_epoch,
        scheme: Optional[SignatureScheme] = None,
        audit: Optional[AuditLogger] = None,
    ) -> 'Ledger':
        """Rebuild a ledger from snapshot(); no events are emitted."""
        if snapshot.get("version") != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {snapshot.get('version')}")
        domain = snapshot["domain"]
        ledger = cls(
            admin=None,
            name=snapshot["name"],
            symbol=snapshot["symbol"],
            version=domain["version"],
            chain_id=domain["chain_id"],
            address=domain["address"],
            clock=clock,
            policy=RedemptionPolicy(snapshot["policy"]),
            scheme=scheme,
            audit=audit,
        )
        categories = snapshot["categories"]
        ledger.categories.restore(categories["approved"], categories.get("names", {}))
        slots = snapshot["slots"]
        ledger.slots.restore(
            int(slots["next_slot"]),
            {int(k): v for k, v in slots["owners"].items()},
        )
        ledger.store.restore(
            {h: int(s) for h, s in snapshot["hash_slots"].items()},
            [Record.from_dict(r) for r in snapshot["records"]],
        )
        for role, members in snapshot["roles"].items():
            ledger.access.bootstrap(Role(role), members)
        ledger.relay.nonces.restore(snapshot.get("nonces", {}))
        ledger.events.restore([LoggedEvent.from_dict(e) for e in snapshot.get("events", [])])
        return ledger
