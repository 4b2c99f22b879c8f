"""
certledger error taxonomy.

Every ledger failure is synchronous and aborts the operation it was raised
from. Each class carries a stable ErrorCode and a details dict so the HTTP
layer and the audit log can report it without parsing messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""
    NOT_FOUND = "NotFound"
    TOKEN_NOT_EXISTS = "TokenNotExists"
    ALREADY_EXISTS = "AlreadyExists"
    ALREADY_REDEEMED = "AlreadyRedeemed"
    EXPIRED = "Expired"
    STILL_ACTIVE = "StillActive"
    CATEGORY_NOT_APPROVED = "CategoryNotApproved"
    CATEGORY_ALREADY_APPROVED = "CategoryAlreadyApproved"
    INVALID_DATE = "InvalidDate"
    UNAUTHORIZED = "Unauthorized"
    INVALID_NONCE = "InvalidNonce"
    TRANSFER_ATTEMPTED = "TransferAttempted"
    UNKNOWN_FUNCTION = "UnknownFunction"


class LedgerError(Exception):
    """Base class for all ledger failures."""

    code: ErrorCode

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(f"{self.code.value}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code.value, "detail": self.message, **self.details}


class NotFound(LedgerError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, content_hash: str):
        super().__init__(f"no record for content hash {content_hash}", content_hash=content_hash)


class TokenNotExists(LedgerError):
    """Slot 0, an unallocated slot, or a slot without a record for the category."""
    code = ErrorCode.TOKEN_NOT_EXISTS

    def __init__(self, slot_id: int, category: Optional[str] = None):
        if category is None:
            message = f"slot {slot_id} does not exist"
        else:
            message = f"slot {slot_id} has no record in category {category}"
        super().__init__(message, slot_id=slot_id, category=category)


class AlreadyExists(LedgerError):
    code = ErrorCode.ALREADY_EXISTS

    def __init__(self, content_hash: str, slot_id: int):
        super().__init__(
            f"content hash {content_hash} already issued as slot {slot_id}",
            content_hash=content_hash,
            slot_id=slot_id,
        )


class AlreadyRedeemed(LedgerError):
    code = ErrorCode.ALREADY_REDEEMED

    def __init__(self, content_hash: str):
        super().__init__(f"record {content_hash} already redeemed", content_hash=content_hash)


class Expired(LedgerError):
    code = ErrorCode.EXPIRED

    def __init__(self, content_hash: str, deadline: Optional[int] = None):
        super().__init__(f"record {content_hash} has expired", content_hash=content_hash, deadline=deadline)


class StillActive(LedgerError):
    code = ErrorCode.STILL_ACTIVE

    def __init__(self, content_hash: str, deadline: Optional[int] = None):
        super().__init__(
            f"record {content_hash} is still active and cannot be redeemed yet",
            content_hash=content_hash,
            deadline=deadline,
        )


class CategoryNotApproved(LedgerError):
    code = ErrorCode.CATEGORY_NOT_APPROVED

    def __init__(self, category: str):
        super().__init__(f"category {category} is not approved", category=category)


class CategoryAlreadyApproved(LedgerError):
    code = ErrorCode.CATEGORY_ALREADY_APPROVED

    def __init__(self, category: str):
        super().__init__(f"category {category} is already approved", category=category)


class InvalidDate(LedgerError):
    code = ErrorCode.INVALID_DATE

    def __init__(self, reason: str, new_deadline: Any = None, current_deadline: Optional[int] = None):
        super().__init__(reason, new_deadline=new_deadline, current_deadline=current_deadline)


class Unauthorized(LedgerError):
    code = ErrorCode.UNAUTHORIZED

    def __init__(self, identity: str, role: str):
        super().__init__(f"{identity} lacks required role {role}", identity=identity, role=role)


class InvalidNonce(LedgerError):
    code = ErrorCode.INVALID_NONCE

    def __init__(self, identity: str, expected: int, received: Any):
        super().__init__(
            f"nonce {received} is not the next nonce for {identity}",
            identity=identity,
            expected=expected,
            received=received,
        )


class TransferAttempted(LedgerError):
    code = ErrorCode.TRANSFER_ATTEMPTED

    def __init__(self, slot_id: int):
        super().__init__(f"slot {slot_id} is bound to its issuance identity", slot_id=slot_id)


class UnknownFunction(LedgerError):
    code = ErrorCode.UNKNOWN_FUNCTION

    def __init__(self, function: Any, reason: str = "not a delegable ledger function"):
        super().__init__(f"{function}: {reason}", function=function)
