#!/usr/bin/env python3
"""
Commitment Tool
Generate and check commitments for the escrow ledger off-line
"""

import argparse
import json
import sys
from typing import List, Optional

from guess_escrow.ledger.commitment import compute_commitment, generate_salt, matches, normalize_salt
from guess_escrow.ledger.errors import ValidationError


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate or verify keccak256(uint8 secret || bytes32 salt) commitments",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Create a fresh salt and commitment for a secret")
    generate.add_argument("secret", type=int, help="Secret guess, 0-255")
    generate.add_argument("--salt", help="Use this 32-byte hex salt instead of a random one")
    generate.add_argument("--json", action="store_true", help="Print machine-readable output")

    verify = subparsers.add_parser("verify", help="Check a secret and salt against a commitment")
    verify.add_argument("commitment", help="32-byte hex commitment")
    verify.add_argument("secret", type=int, help="Secret guess, 0-255")
    verify.add_argument("salt", help="32-byte hex salt")
    return parser


def cmd_generate(args: argparse.Namespace) -> int:
    salt = normalize_salt(args.salt) if args.salt else generate_salt()
    commitment = compute_commitment(args.secret, salt)
    result = {"secret": args.secret, "salt": "0x" + salt.hex(), "commitment": "0x" + commitment.hex()}
    if args.json:
        print(json.dumps(result, indent=2))
    else:
        print(f"🎲 Secret:     {result['secret']}")
        print(f"🧂 Salt:       {result['salt']}")
        print(f"🔒 Commitment: {result['commitment']}")
        print("💡 Keep the salt private until reveal")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    if matches(args.commitment, args.secret, args.salt):
        print("✅ Secret and salt match the commitment")
        return 0
    print("❌ Secret and salt do NOT match the commitment")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = create_argument_parser().parse_args(argv)
    try:
        if args.command == "generate":
            return cmd_generate(args)
        return cmd_verify(args)
    except ValidationError as exc:
        print(f"❌ {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
