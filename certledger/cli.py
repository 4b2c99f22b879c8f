#!/usr/bin/env python3
"""
certledger Command Line Interface

Usage:
    certledger hash (--file <payload.json> | --text <string>)
    certledger category-key <name>
    certledger keygen --output <key.json>
    certledger sign-call --key <key.json> --nonce <n> --function <name> [--args <json>]
    certledger demo
"""

import argparse
import json
import sys

from . import config
from .errors import LedgerError


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, sort_keys=True)


def cmd_hash(args):
    """Compute the content hash of a payload."""
    from .hashing import payload_hash

    payload = args.text if args.text is not None else load_json(args.file)
    print(f"content_hash: {payload_hash(payload)}")
    return 0


def cmd_category_key(args):
    """Compute a category key."""
    from .hashing import category_key

    print(f"category_key: {category_key(args.name)}")
    return 0


def cmd_keygen(args):
    """Generate an Ed25519 identity key."""
    from .signing import generate_key_pair, save_key_pair

    key_pair = generate_key_pair(kid=args.key_id or "")
    save_key_pair(key_pair, args.output)
    print(f"Key saved to: {args.output}", file=sys.stderr)
    print(key_pair.identity)
    return 0


def cmd_sign_call(args):
    """Sign a delegated call for POST /relay."""
    from .relay import DelegationDomain, sign_call
    from .signing import load_key_pair

    key_pair = load_key_pair(args.key)
    call_args = json.loads(args.args) if args.args else {}
    if not isinstance(call_args, dict):
        print("--args must be a JSON object", file=sys.stderr)
        return 2

    default = config.ledger_domain()
    domain = DelegationDomain(
        name=args.name or default.name,
        version=args.version or default.version,
        chain_id=args.chain_id if args.chain_id is not None else default.chain_id,
        address=(args.address or default.address).lower(),
    )
    request = sign_call(key_pair, domain, args.nonce, args.function, call_args)

    if args.output:
        save_json(request, args.output)
        print(f"Relay request saved to: {args.output}", file=sys.stderr)
    else:
        print(json.dumps(request, indent=2, sort_keys=True))
    return 0


def cmd_demo(args):
    """Run a demonstration of the attestation lifecycle."""
    from .hashing import payload_hash
    from .ledger import Ledger
    from .relay import sign_call
    from .roles import Role
    from .signing import generate_key_pair

    clock = {"now": 1_700_000_000}
    admin = generate_key_pair()
    issuer = generate_key_pair()
    ledger = Ledger(admin=admin.identity, clock=lambda: clock["now"])

    print("=" * 60)
    print("certledger Demonstration")
    print("=" * 60)

    ledger.grant_role(admin.identity, Role.ISSUER, issuer.identity)
    category = ledger.approve_category(admin.identity, "CERT")
    print(f"\nAdministrator: {admin.identity}")
    print(f"Issuer:        {issuer.identity}")
    print(f"Approved CERT: {category}")

    def attempt(label, fn, *fn_args):
        try:
            result = fn(*fn_args)
            print(f"  {label}: ok{'' if result is None else f' -> {result}'}")
        except LedgerError as e:
            print(f"  {label}: {e.code.value}")

    print("\n" + "-" * 60)
    print("Scenario 1: issue, duplicate, verify, redeem")
    print("-" * 60)
    h1 = payload_hash("payload-A")
    attempt("issue payload-A", ledger.issue, issuer.identity, h1, "CERT", "payload-A")
    attempt("issue same hash again", ledger.issue, issuer.identity, h1, "CERT", "payload-B")
    attempt("verify", ledger.verify, h1, "CERT")
    attempt("redeem", ledger.redeem, issuer.identity, h1, "CERT")
    attempt("verify after redeem", ledger.verify, h1, "CERT")

    print("\n" + "-" * 60)
    print("Scenario 2: voucher expiry and extension")
    print("-" * 60)
    voucher = {"subject": "alice", "code": "LEVY-001", "valid_until": clock["now"] + 60}
    h2 = payload_hash(voucher)
    attempt("issue voucher", ledger.issue, issuer.identity, h2, "CERT", voucher)
    attempt("extend to now+3600", ledger.extend_deadline, issuer.identity, h2, clock["now"] + 3600)
    clock["now"] += 7200
    attempt("verify after deadline", ledger.verify, h2, "CERT")
    print(f"  status: {ledger.get_status(h2, 'CERT').value}")

    print("\n" + "-" * 60)
    print("Scenario 3: delegated issuance")
    print("-" * 60)
    h3 = payload_hash("payload-C")
    request = sign_call(issuer, ledger.domain, ledger.nonce_of(issuer.identity), "issue",
                        {"content_hash": h3, "category": "CERT", "payload": "payload-C"})
    attempt("relay issue", ledger.delegated_execute, request["identity"], request["nonce"],
            request["encoded_call"], request["signature"])
    attempt("replay same request", ledger.delegated_execute, request["identity"], request["nonce"],
            request["encoded_call"], request["signature"])
    print(f"  nonce now: {ledger.nonce_of(issuer.identity)}")

    print("\n" + "=" * 60)
    print(f"Demonstration complete. {ledger.total_supply()} records, {len(ledger.events)} events.")
    print("=" * 60)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="certledger",
        description="certledger attestation ledger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  certledger demo                          Run demonstration
  certledger hash -t "payload-A"
  certledger hash -f voucher.json
  certledger category-key CERT
  certledger keygen -o issuer_key.json
  certledger sign-call -k issuer_key.json -n 0 -F redeem -a '{"content_hash": "sha256:...", "category": "CERT"}'
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Compute payload content hash")
    source = hash_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-f", "--file", help="Structured payload JSON file")
    source.add_argument("-t", "--text", help="Text payload")

    # category-key
    category_parser = subparsers.add_parser("category-key", help="Compute category key")
    category_parser.add_argument("name", help="Category name")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate identity key pair")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output file for the key")
    keygen_parser.add_argument("-k", "--key-id", help="Key identifier")

    # sign-call
    sign_parser = subparsers.add_parser("sign-call", help="Sign a delegated call")
    sign_parser.add_argument("-k", "--key", required=True, help="Key file from keygen")
    sign_parser.add_argument("-n", "--nonce", required=True, type=int, help="Signer's current nonce")
    sign_parser.add_argument("-F", "--function", required=True, help="Ledger function")
    sign_parser.add_argument("-a", "--args", help="Function arguments as a JSON object")
    sign_parser.add_argument("-o", "--output", help="Output file for the relay request")
    sign_parser.add_argument("--name", help="Ledger name (default: CERTLEDGER_NAME)")
    sign_parser.add_argument("--version", help="Ledger version (default: CERTLEDGER_VERSION)")
    sign_parser.add_argument("--chain-id", type=int, help="Chain id (default: CERTLEDGER_CHAIN_ID)")
    sign_parser.add_argument("--address", help="Ledger address (default: CERTLEDGER_ADDRESS)")

    # demo
    subparsers.add_parser("demo", help="Run demonstration")

    args = parser.parse_args(argv)

    commands = {
        "hash": cmd_hash,
        "category-key": cmd_category_key,
        "keygen": cmd_keygen,
        "sign-call": cmd_sign_call,
        "demo": cmd_demo,
    }
    if args.command not in commands:
        parser.print_help()
        return 1
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
