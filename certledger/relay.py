"""
certledger Delegated Invocation Relay

Lets a third party submit a call on behalf of an identity that signed it.

A delegated call is accepted only when:
1. The signature covers (from, nonce, data) under the ledger's domain
   (name, version, chain id, address) and resolves to the claimed identity
2. The nonce equals the identity's next nonce

The call then runs exactly as if the identity had invoked it directly.
The nonce advances by one only when the call succeeds; a failed call
leaves it where it was so the signer can resubmit.
"""

import json
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .canonicalization import canonicalize_str
from .errors import InvalidNonce, Unauthorized, UnknownFunction
from .events import DelegatedCallEvent, EventLog
from .hashing import typed_data_hash
from .logging_config import AuditLogger, audit_log
from .signing import KeyPair, identity_from_verify_key, sign_digest, verify_ed25519
from .util import b64d

FORWARD_REQUEST_TYPE = "ForwardRequest"


@dataclass(frozen=True)
class DelegationDomain:
    """Binds signatures to one ledger deployment."""
    name: str
    version: str
    chain_id: int
    address: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def forward_request(identity: str, nonce: int, data: str) -> Dict[str, Any]:
    return {"from": identity, "nonce": nonce, "data": data}


def forward_request_digest(domain: DelegationDomain, identity: str, nonce: int, data: str) -> bytes:
    """Digest a delegated caller signs."""
    return typed_data_hash(domain.to_dict(), FORWARD_REQUEST_TYPE, forward_request(identity, nonce, data))


def encode_call(function: str, args: Optional[Dict[str, Any]] = None) -> str:
    """Canonical JSON encoding of a ledger call."""
    return canonicalize_str({"function": function, "args": args or {}})


def decode_call(encoded: str) -> Tuple[str, Dict[str, Any]]:
    """
    Parse an encoded call.

    Raises:
        UnknownFunction: the data is not a well-formed call
    """
    try:
        call = json.loads(encoded)
    except (TypeError, ValueError):
        raise UnknownFunction(None, "call data is not valid JSON") from None
    if not isinstance(call, dict) or not isinstance(call.get("function"), str):
        raise UnknownFunction(None, "call data must be an object with a function name")
    args = call.get("args", {})
    if not isinstance(args, dict):
        raise UnknownFunction(call["function"], "call args must be an object")
    return call["function"], args


def sign_call(
    key_pair: KeyPair,
    domain: DelegationDomain,
    nonce: int,
    function: str,
    args: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a complete relay request for key_pair's identity.

    Returns:
        Dict with identity, nonce, encoded_call and signature
    """
    data = encode_call(function, args)
    digest = forward_request_digest(domain, key_pair.identity, nonce, data)
    return {
        "identity": key_pair.identity,
        "nonce": nonce,
        "encoded_call": data,
        "signature": sign_digest(key_pair, digest),
    }


# ============================================================
# Signature schemes
# ============================================================

class SignatureScheme(ABC):
    """Recovers the identity that signed a forward request."""

    @abstractmethod
    def verify(self, domain: DelegationDomain, message: Dict[str, Any], signature: Any) -> Optional[str]:
        """
        Returns:
            The signer's identity, or None if the signature is invalid
        """
        pass


class Ed25519Scheme(SignatureScheme):
    """Signature is {"public_key": b64, "sig": b64}; identity derives from the key."""

    def verify(self, domain: DelegationDomain, message: Dict[str, Any], signature: Any) -> Optional[str]:
        if not isinstance(signature, dict):
            return None
        public_key = signature.get("public_key")
        sig = signature.get("sig")
        if not isinstance(public_key, str) or not isinstance(sig, str):
            return None
        digest = typed_data_hash(domain.to_dict(), FORWARD_REQUEST_TYPE, message)
        if not verify_ed25519(sig, digest, public_key):
            return None
        return identity_from_verify_key(b64d(public_key))


# ============================================================
# Nonces
# ============================================================

class NonceRegistry:
    """Identity -> next expected nonce. Starts at 0; never decreases."""

    def __init__(self):
        self._nonces: Dict[str, int] = {}

    def nonce_of(self, identity: str) -> int:
        return self._nonces.get(identity, 0)

    def check(self, identity: str, nonce: Any) -> None:
        expected = self.nonce_of(identity)
        if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce != expected:
            raise InvalidNonce(identity, expected, nonce)

    def advance(self, identity: str) -> int:
        self._nonces[identity] = self.nonce_of(identity) + 1
        return self._nonces[identity]

    def to_dict(self) -> Dict[str, int]:
        return dict(self._nonces)

    def restore(self, nonces: Dict[str, int]) -> None:
        self._nonces = {k: int(v) for k, v in nonces.items()}


# ============================================================
# Relay
# ============================================================

class DelegatedRelay:
    """
    Verifies and dispatches delegated calls.

    `dispatch(identity, function, args)` performs the call as identity and
    raises UnknownFunction for names it does not handle. The relay shares
    the ledger's re-entrant lock so verification, dispatch and the nonce
    advance are one atomic step.
    """

    def __init__(
        self,
        domain: DelegationDomain,
        dispatch: Callable[[str, str, Dict[str, Any]], Any],
        events: EventLog,
        scheme: Optional[SignatureScheme] = None,
        nonces: Optional[NonceRegistry] = None,
        lock: Optional[threading.RLock] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.domain = domain
        self._dispatch = dispatch
        self._events = events
        self.scheme = scheme or Ed25519Scheme()
        self.nonces = nonces or NonceRegistry()
        self._lock = lock or threading.RLock()
        self._audit = audit or audit_log

    def execute(self, claimed_identity: str, nonce: Any, encoded_call: str, signature: Any) -> Any:
        """
        Execute a signed call on behalf of claimed_identity.

        Raises:
            InvalidNonce: nonce is not an integer, or not the next nonce
            Unauthorized: signature does not resolve to claimed_identity
            UnknownFunction: encoded_call is malformed or names no ledger function
            Any error of the dispatched call itself
        """
        request = {"identity": claimed_identity, "nonce": nonce, "signature": signature}
        with self._lock:
            if isinstance(nonce, bool) or not isinstance(nonce, int):
                self._audit.relay_rejected(claimed_identity, "nonce is not an integer", request)
                raise InvalidNonce(claimed_identity, self.nonces.nonce_of(claimed_identity), nonce)
            if not isinstance(encoded_call, str):
                self._audit.relay_rejected(claimed_identity, "call data is not a string", request)
                raise UnknownFunction(None, "call data must be a string")

            message = forward_request(claimed_identity, nonce, encoded_call)
            signer = self.scheme.verify(self.domain, message, signature)
            if signer is None or signer != claimed_identity:
                self._audit.relay_rejected(claimed_identity, "signature mismatch", request)
                raise Unauthorized(claimed_identity, "signer")

            try:
                self.nonces.check(claimed_identity, nonce)
            except InvalidNonce:
                self._audit.relay_rejected(claimed_identity, "stale or future nonce", request)
                raise

            function, args = decode_call(encoded_call)
            self._audit.relay_request(claimed_identity, nonce, function)
            result = self._dispatch(claimed_identity, function, args)

            self.nonces.advance(claimed_identity)
            self._events.emit(DelegatedCallEvent(identity=claimed_identity, nonce=nonce, function=function))
            return result
