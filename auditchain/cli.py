#!/usr/bin/env python3
"""
auditchain Command Line Interface

Usage:
    auditchain keygen --output <file>
    auditchain create-admin --publickey <key> [--comment <text>]
    auditchain verify-chain --export <file>
"""

import argparse
import json
import sys

from . import config


def load_json(path: str):
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def cmd_keygen(args) -> int:
    """Generate the server signing key."""
    from .keys import write_key_file

    public_key = write_key_file(args.output, kid=args.key_id)
    print(f"Wrote signing key {args.key_id} to {args.output}")
    print(f"Public key: {public_key}")
    return 0


def cmd_create_admin(args) -> int:
    """Register an administrator client directly in the store."""
    from .db import SqliteClientStore, init_db
    from .issuer import ClientIdentityIssuer
    from .keys import load_verify_key

    try:
        load_verify_key(args.publickey)
    except ValueError as e:
        print(f"Invalid public key: {e}", file=sys.stderr)
        return 1

    init_db(args.db)
    issuer = ClientIdentityIssuer(SqliteClientStore(args.db), max_attempts=config.MAX_ID_ATTEMPTS)
    client_id = issuer.issue(args.publickey, args.comment, is_admin=True)
    print(client_id)
    return 0


def cmd_verify_chain(args) -> int:
    """Verify links and signatures of an exported chain."""
    from .ledger import verify_chain

    data = load_json(args.export)
    # Accept the signed /chronicle/export envelope or a bare list
    entries = data.get("results", []) if isinstance(data, dict) else data
    ok, seq, reason = verify_chain(entries)
    if not ok:
        print(f"FAIL: {reason} at seq {seq}")
        return 1
    print(f"PASS: {len(entries)} chain entries valid")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="auditchain ledger administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  auditchain keygen -o secrets/server_signing_key.json
  auditchain create-admin -p <base64url public key> -c "ops team"
  auditchain verify-chain -e export.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate the server signing key")
    keygen_parser.add_argument("-o", "--output", default=config.SIGNING_KEY_PATH, help="Output key file")
    keygen_parser.add_argument("-k", "--key-id", default="server-01", help="Key identifier")

    admin_parser = subparsers.add_parser("create-admin", help="Register an administrator client")
    admin_parser.add_argument("-p", "--publickey", required=True, help="Base64url Ed25519 public key")
    admin_parser.add_argument("-c", "--comment", default="", help="Free-text comment")
    admin_parser.add_argument("--db", default=config.DB_PATH, help="SQLite database path")

    verify_parser = subparsers.add_parser("verify-chain", help="Verify an exported chain")
    verify_parser.add_argument("-e", "--export", required=True, help="Chain export JSON file")

    args = parser.parse_args(argv)

    if args.command == "keygen":
        return cmd_keygen(args)
    elif args.command == "create-admin":
        return cmd_create_admin(args)
    elif args.command == "verify-chain":
        return cmd_verify_chain(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
