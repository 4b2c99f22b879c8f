"""
certledger Attestation Ledger

Version: 1.0.0

Issues, verifies, redeems and time-extends immutable attestations.

A record is bound permanently to the identity that issued it, deduplicated
by content hash, filed under an administrator-approved category, and moves
only forward through its lifecycle:

    ACTIVE -> REDEEMED
    ACTIVE -> EXPIRED (lazily, when next touched past its deadline)

Mutations are role-gated (ADMIN, ISSUER) and may be submitted directly or
through the delegated relay as Ed25519-signed, nonce-protected calls.

Usage:
    from certledger import Ledger, Role, generate_key_pair, payload_hash

    admin, issuer = generate_key_pair(), generate_key_pair()
    ledger = Ledger(admin=admin.identity)
    ledger.grant_role(admin.identity, Role.ISSUER, issuer.identity)
    ledger.approve_category(admin.identity, "CERT")

    h = payload_hash("payload-A")
    slot = ledger.issue(issuer.identity, h, "CERT", "payload-A")
    ledger.verify(h, "CERT")
    ledger.redeem(issuer.identity, h, "CERT")
"""

__version__ = "1.0.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str
from .hashing import (
    sha256_hash,
    payload_hash,
    category_key,
    typed_data_hash,
    is_digest,
    verify_hash,
)

# Errors
from .errors import (
    ErrorCode,
    LedgerError,
    NotFound,
    TokenNotExists,
    AlreadyExists,
    AlreadyRedeemed,
    Expired,
    StillActive,
    CategoryNotApproved,
    CategoryAlreadyApproved,
    InvalidDate,
    Unauthorized,
    InvalidNonce,
    TransferAttempted,
    UnknownFunction,
)

# Records and events
from .records import (
    Record,
    RecordStatus,
    TextPayload,
    VoucherPayload,
    effective_status,
)
from .events import EventLog, LoggedEvent

# Ledger
from .roles import Role
from .store import RedemptionPolicy
from .ledger import Ledger

# Delegation
from .relay import (
    DelegationDomain,
    SignatureScheme,
    Ed25519Scheme,
    encode_call,
    sign_call,
)
from .signing import KeyPair, generate_key_pair


__all__ = [
    # Version
    "__version__",

    # Canonicalization
    "canonicalize",
    "canonicalize_str",

    # Hashing
    "sha256_hash",
    "payload_hash",
    "category_key",
    "typed_data_hash",
    "is_digest",
    "verify_hash",

    # Errors
    "ErrorCode",
    "LedgerError",
    "NotFound",
    "TokenNotExists",
    "AlreadyExists",
    "AlreadyRedeemed",
    "Expired",
    "StillActive",
    "CategoryNotApproved",
    "CategoryAlreadyApproved",
    "InvalidDate",
    "Unauthorized",
    "InvalidNonce",
    "TransferAttempted",
    "UnknownFunction",

    # Records and events
    "Record",
    "RecordStatus",
    "TextPayload",
    "VoucherPayload",
    "effective_status",
    "EventLog",
    "LoggedEvent",

    # Ledger
    "Role",
    "RedemptionPolicy",
    "Ledger",

    # Delegation
    "DelegationDomain",
    "SignatureScheme",
    "Ed25519Scheme",
    "encode_call",
    "sign_call",
    "KeyPair",
    "generate_key_pair",
]
