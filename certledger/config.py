"""
Configuration module for certledger.

Centralizes service configuration with environment variable support
and validation.
"""

import os
from typing import Dict, List

from .relay import DelegationDomain
from .security import ValidationError, validate_category, validate_identity
from .store import RedemptionPolicy

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("CERTLEDGER_ENV", "dev")  # dev|stage|prod

# Ledger identity (also the delegated-call signing domain)
LEDGER_NAME = os.getenv("CERTLEDGER_NAME", "CertLedger")
LEDGER_SYMBOL = os.getenv("CERTLEDGER_SYMBOL", "CERT")
LEDGER_VERSION = os.getenv("CERTLEDGER_VERSION", "1")
CHAIN_ID = int(os.getenv("CERTLEDGER_CHAIN_ID", "1"))
LEDGER_ADDRESS = os.getenv("CERTLEDGER_ADDRESS", "0x" + "0" * 40)

# Paths
DB_PATH = os.getenv("CERTLEDGER_DB_PATH", "data/certledger.db")

# Bootstrap membership
ADMIN_IDENTITY = os.getenv("CERTLEDGER_ADMIN", "")
ISSUERS = os.getenv("CERTLEDGER_ISSUERS", "")
INITIAL_CATEGORIES = os.getenv("CERTLEDGER_INITIAL_CATEGORIES", "")

REDEMPTION_POLICY = os.getenv("CERTLEDGER_REDEMPTION_POLICY", RedemptionPolicy.BEFORE_EXPIRY.value)

# Rate limits (requests per minute)
RELAY_RPM = int(os.getenv("RELAY_RPM", "120"))
VERIFY_RPM = int(os.getenv("VERIFY_RPM", "600"))

# Logging
LOG_LEVEL = os.getenv("CERTLEDGER_LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("CERTLEDGER_LOG_JSON", "true").lower() in ("1", "true", "yes")


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def ledger_domain() -> DelegationDomain:
    """Signing domain of the configured ledger."""
    return DelegationDomain(
        name=LEDGER_NAME,
        version=LEDGER_VERSION,
        chain_id=CHAIN_ID,
        address=LEDGER_ADDRESS.lower(),
    )


def redemption_policy() -> RedemptionPolicy:
    return RedemptionPolicy(REDEMPTION_POLICY.lower())


def initial_issuers() -> List[str]:
    """Identities granted ISSUER when a fresh ledger is created."""
    return [validate_identity(i, "CERTLEDGER_ISSUERS") for i in _split(ISSUERS)]


def initial_categories() -> List[str]:
    """Categories approved when a fresh ledger is created."""
    return [validate_category(c, "CERTLEDGER_INITIAL_CATEGORIES") for c in _split(INITIAL_CATEGORIES)]


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Check the configuration. Returns dict of setting -> valid.
    """
    results = {"admin": bool(ADMIN_IDENTITY)}
    try:
        if ADMIN_IDENTITY:
            validate_identity(ADMIN_IDENTITY, "CERTLEDGER_ADMIN")
    except ValidationError:
        results["admin"] = False
    try:
        redemption_policy()
        results["redemption_policy"] = True
    except ValueError:
        results["redemption_policy"] = False
    try:
        initial_issuers()
        initial_categories()
        results["bootstrap"] = True
    except ValidationError:
        results["bootstrap"] = False
    return results


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("CERTLEDGER_DEBUG", "").lower() in ("1", "true", "yes")
