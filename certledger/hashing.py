"""
certledger Hash Digest Utility

Pure functions computing the digests the ledger is keyed by.
All digests use SHA-256 with lowercase hexadecimal output and a
"sha256:" algorithm prefix.
"""

import hashlib
import re
from typing import Any, Dict, Union

from .canonicalization import canonicalize
from .records import payload_from_wire

DIGEST_PREFIX = "sha256:"
DIGEST_PATTERN = re.compile(r'^sha256:[0-9a-f]{64}$')


def sha256_hash(data: Union[bytes, str]) -> str:
    """
    Compute SHA-256 hash in ledger digest format.

    Returns:
        Hash string in format "sha256:abcdef..."
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    digest = hashlib.sha256(data).hexdigest().lower()
    return f"{DIGEST_PREFIX}{digest}"


def is_digest(value: Any) -> bool:
    """True if value is a well-formed ledger digest."""
    return isinstance(value, str) and DIGEST_PATTERN.match(value) is not None


def payload_hash(payload: Any) -> str:
    """
    Compute the content hash of a record payload.

    Strings and dicts are parsed into their Payload form first, so a voucher
    hashes the same whether it arrives as a raw dict, with RFC3339 dates or
    already parsed. Two payloads with the same content always share a hash,
    which is what issuance deduplicates on.
    """
    if isinstance(payload, bytes):
        return sha256_hash(payload)
    if isinstance(payload, (str, dict)):
        payload = payload_from_wire(payload)
    if hasattr(payload, "content_bytes"):
        return sha256_hash(payload.content_bytes())
    raise ValueError(f"Cannot hash payload of type: {type(payload)}")


def category_key(name: str) -> str:
    """
    Compute the interned key of a category name.

    Per the original deployment, categories are referenced by the digest of
    their name everywhere except at approval time.
    """
    if not isinstance(name, str) or not name:
        raise ValueError("category name must be a non-empty string")
    return sha256_hash(canonicalize(["category", name]))


def resolve_category(value: str) -> str:
    """Accept either a category name or its digest and return the digest."""
    if is_digest(value):
        return value
    return category_key(value)


def typed_data_hash(domain: Dict[str, Any], primary_type: str, message: Dict[str, Any]) -> bytes:
    """
    Structured-data digest signed by delegated callers.

    The domain binds name, version, chain id and ledger address so a
    signature produced for one ledger never verifies on another.
    """
    envelope = {
        "domain": domain,
        "primary_type": primary_type,
        "message": message,
    }
    return hashlib.sha256(canonicalize(envelope)).digest()


def verify_hash(declared_hash: str, data: Union[bytes, str]) -> bool:
    """Verify that data matches a declared digest."""
    if not is_digest(declared_hash):
        return False
    return sha256_hash(data) == declared_hash
