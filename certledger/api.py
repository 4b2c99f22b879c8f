"""
certledger HTTP service.

Read endpoints expose records, categories, nonces and events. The only
ways to change ledger state over HTTP are /verify (which may materialize
an expiry) and /relay, which executes signed delegated calls. The ledger
is snapshotted to SQLite after each of those requests.
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import config, db
from .errors import ErrorCode, LedgerError
from .hashing import resolve_category
from .ledger import Ledger
from .logging_config import audit_log, configure_logging, set_request_id
from .models import EventList, RecordView, RelayRequest, RelayResponse, VerifyRequest
from .rate_limit import RateLimiter
from .relay import decode_call
from .roles import Role
from .security import (
    ValidationError,
    validate_base64,
    validate_category,
    validate_digest,
    validate_identity,
    validate_non_negative_int,
    validate_string_length,
)
from .util import utc_rfc3339

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup()
    yield
    db.close_connection()


app = FastAPI(title="certledger", lifespan=lifespan)

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.TOKEN_NOT_EXISTS: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.ALREADY_REDEEMED: 409,
    ErrorCode.EXPIRED: 409,
    ErrorCode.STILL_ACTIVE: 409,
    ErrorCode.CATEGORY_ALREADY_APPROVED: 409,
    ErrorCode.INVALID_NONCE: 409,
    ErrorCode.CATEGORY_NOT_APPROVED: 422,
    ErrorCode.INVALID_DATE: 422,
    ErrorCode.UNKNOWN_FUNCTION: 422,
    ErrorCode.TRANSFER_ATTEMPTED: 422,
    ErrorCode.UNAUTHORIZED: 403,
}

LEDGER: Optional[Ledger] = None
_persist_lock = threading.Lock()
relay_limiter = RateLimiter(config.RELAY_RPM)
verify_limiter = RateLimiter(config.VERIFY_RPM)


def build_ledger() -> Ledger:
    """Restore the last snapshot, or create a fresh ledger from configuration."""
    snapshot = db.load_snapshot()
    if snapshot is not None:
        ledger = Ledger.restore(snapshot)
        logger.info("Restored ledger with %d records", ledger.total_supply())
        return ledger

    domain = config.ledger_domain()
    admin = validate_identity(config.ADMIN_IDENTITY, "CERTLEDGER_ADMIN") if config.ADMIN_IDENTITY else None
    ledger = Ledger(
        admin=admin,
        name=domain.name,
        symbol=config.LEDGER_SYMBOL,
        version=domain.version,
        chain_id=domain.chain_id,
        address=domain.address,
        policy=config.redemption_policy(),
    )
    issuers = config.initial_issuers()
    categories = config.initial_categories()
    if admin is None:
        if issuers or categories:
            raise RuntimeError("CERTLEDGER_ADMIN is required to bootstrap issuers or categories")
        logger.warning("No administrator configured; the ledger cannot be governed")
    else:
        for issuer in issuers:
            ledger.grant_role(admin, Role.ISSUER, issuer)
        for category in categories:
            ledger.approve_category(admin, category)
    db.save_snapshot(ledger.snapshot())
    return ledger


def _startup():
    global LEDGER
    configure_logging("DEBUG" if config.is_debug() else config.LOG_LEVEL, json_format=config.LOG_JSON)
    failed = sorted(name for name, ok in config.validate_config().items() if not ok)
    if failed:
        if config.is_production():
            raise RuntimeError(f"Invalid configuration: {', '.join(failed)}")
        logger.warning("Configuration problems: %s", ", ".join(failed))
    db.configure(config.DB_PATH)
    db.init_db()
    LEDGER = build_ledger()


def _persist() -> None:
    # Snapshot and save as one step so an older snapshot never lands after a newer one
    with _persist_lock:
        db.save_snapshot(LEDGER.snapshot())


def _client_key(request: Request, scope: str) -> str:
    host = request.client.host if request.client else "unknown"
    return f"{scope}:{host}"


def _rate_limit(limiter: RateLimiter, request: Request, scope: str) -> None:
    key = _client_key(request, scope)
    result = limiter.check(key)
    if not result.allowed:
        audit_log.rate_limit_exceeded(key, request.url.path)
        raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": str(int(result.retry_after or 0) + 1)})


# ============================================================
# Middleware and error mapping
# ============================================================

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=STATUS_BY_CODE.get(exc.code, 400), content=exc.to_dict())


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "field": exc.field, "detail": exc.message},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"error": "InvalidArgument", "detail": str(exc)})


# ============================================================
# Reads
# ============================================================

@app.get("/health")
def health():
    return {
        "status": "ok",
        "env": config.ENV,
        "total_supply": LEDGER.total_supply(),
        "db": db.get_db_stats(),
    }


@app.get("/domain")
def domain():
    return {
        "domain": LEDGER.domain.to_dict(),
        "symbol": LEDGER.symbol,
        "redemption_policy": LEDGER.policy.value,
    }


@app.get("/categories/{category}")
def category_status(category: str):
    category = validate_category(category)
    return {
        "category": resolve_category(category),
        "approved": LEDGER.is_category_approved(category),
    }


def _optional_category(category: Optional[str]) -> Optional[str]:
    return validate_category(category) if category is not None else None


@app.get("/records/{content_hash}", response_model=RecordView)
def get_record(content_hash: str, category: Optional[str] = None):
    content_hash = validate_digest(content_hash, "content_hash")
    return LEDGER.get_record(content_hash, _optional_category(category)).to_dict()


@app.get("/records/{content_hash}/issued_at")
def get_issued_at(content_hash: str, category: Optional[str] = None):
    content_hash = validate_digest(content_hash, "content_hash")
    issued_at = LEDGER.get_issued_at(content_hash, _optional_category(category))
    return {
        "content_hash": content_hash,
        "issued_at": issued_at,
        "issued_at_rfc3339": utc_rfc3339(issued_at),
    }


@app.get("/records/{content_hash}/status")
def get_status(content_hash: str, category: Optional[str] = None):
    content_hash = validate_digest(content_hash, "content_hash")
    status = LEDGER.get_status(content_hash, _optional_category(category))
    return {"content_hash": content_hash, "status": status.value}


@app.get("/nonces/{identity}")
def get_nonce(identity: str):
    identity = validate_identity(identity, "identity")
    return {"identity": identity, "nonce": LEDGER.nonce_of(identity)}


@app.get("/events", response_model=EventList)
def list_events(kind: Optional[str] = None, since: int = 0):
    since = validate_non_negative_int(since, "since")
    return {"events": [e.to_dict() for e in LEDGER.get_events(kind=kind, since=since)]}


# ============================================================
# Mutations
# ============================================================

@app.post("/verify")
def verify(req: VerifyRequest, request: Request):
    _rate_limit(verify_limiter, request, "verify")
    content_hash = validate_digest(req.content_hash, "content_hash")
    category = validate_category(req.category)
    try:
        LEDGER.verify(content_hash, category)
    finally:
        # A failed verify may still have committed an expiry
        _persist()
    return {"content_hash": content_hash, "valid": True}


@app.post("/relay", response_model=RelayResponse)
def relay(req: RelayRequest, request: Request):
    _rate_limit(relay_limiter, request, "relay")
    identity = validate_identity(req.identity, "identity")
    validate_string_length(req.encoded_call, "encoded_call", max_length=64 * 1024)
    signature = {
        "public_key": validate_base64(req.signature.public_key, "signature.public_key"),
        "sig": validate_base64(req.signature.sig, "signature.sig"),
    }
    try:
        result = LEDGER.delegated_execute(identity, req.nonce, req.encoded_call, signature)
    finally:
        _persist()
    function, _ = decode_call(req.encoded_call)
    return {"identity": identity, "function": function, "nonce": req.nonce, "result": result}
