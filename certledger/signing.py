"""
certledger Cryptographic Signing

Ed25519 (RFC 8032) keys for delegated callers.

An identity is derived from the public key: "0x" followed by the last
20 bytes of SHA-256(public_key) in hex. Ed25519 cannot recover a key from
a signature, so signatures travel together with the signer's public key:

    {"public_key": <base64>, "sig": <base64>}
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .util import b64d, b64e

IDENTITY_BYTES = 20


def identity_from_verify_key(verify_key: bytes) -> str:
    """Map a raw 32-byte Ed25519 public key to its ledger identity."""
    if len(verify_key) != 32:
        raise ValueError("Ed25519 public key must be 32 bytes")
    return "0x" + hashlib.sha256(verify_key).digest()[-IDENTITY_BYTES:].hex()


@dataclass
class KeyPair:
    """Ed25519 key pair."""
    signing_key: bytes
    verify_key: bytes
    kid: str = ""

    @property
    def identity(self) -> str:
        return identity_from_verify_key(self.verify_key)

    def sign(self, data: bytes) -> bytes:
        return SigningKey(self.signing_key).sign(data).signature

    def to_key_file(self) -> Dict[str, Any]:
        return {
            "kid": self.kid or self.identity,
            "identity": self.identity,
            "public_key_b64": b64e(self.verify_key),
            "private_key_b64": b64e(self.signing_key),
        }

    @classmethod
    def from_seed(cls, seed: bytes, kid: str = "") -> 'KeyPair':
        sk = SigningKey(seed)
        return cls(signing_key=bytes(sk), verify_key=bytes(sk.verify_key), kid=kid)


def generate_key_pair(kid: str = "") -> KeyPair:
    """Generate a fresh Ed25519 key pair."""
    sk = SigningKey.generate()
    return KeyPair(signing_key=bytes(sk), verify_key=bytes(sk.verify_key), kid=kid)


def load_key_pair(path: str) -> KeyPair:
    """Load a key pair from a JSON key file written by save_key_pair."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return KeyPair.from_seed(b64d(raw["private_key_b64"]), kid=raw.get("kid", ""))


def save_key_pair(key_pair: KeyPair, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(key_pair.to_key_file(), f, indent=2, sort_keys=True)


def sign_digest(key_pair: KeyPair, digest: bytes) -> Dict[str, str]:
    """Sign a typed-data digest, producing the wire signature object."""
    return {
        "public_key": b64e(key_pair.verify_key),
        "sig": b64e(key_pair.sign(digest)),
    }


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    """
    Verify an Ed25519 signature.

    Returns:
        True if signature is valid, False otherwise (including malformed
        base64 or a key of the wrong length)
    """
    try:
        vk = VerifyKey(b64d(public_key_b64))
        vk.verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False
