"""
Treasury key tooling.

    python -m slot_hub.commands.keypair generate
    python -m slot_hub.commands.keypair convert <base58-secret>

Both print the public key and the JSON-array secret accepted by
TREASURY_PRIVATE_KEY.
"""
import argparse
import json
import sys

from solders.keypair import Keypair

from slot_hub.transfers import parse_treasury_keypair


def keypair_to_json_array(keypair: Keypair) -> str:
    return json.dumps(list(bytes(keypair)))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate or convert a treasury keypair")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("generate", help="create a new keypair")
    convert = sub.add_parser("convert", help="convert a base58 or JSON-array secret key")
    convert.add_argument("secret")
    args = parser.parse_args(argv)

    if args.command == "generate":
        keypair = Keypair()
    else:
        try:
            keypair = parse_treasury_keypair(args.secret)
        except ValueError as exc:
            print(f"Invalid secret key: {exc}", file=sys.stderr)
            return 1
    print(f"Public Key (TREASURY_WALLET): {keypair.pubkey()}")
    print(f"TREASURY_PRIVATE_KEY: {keypair_to_json_array(keypair)}")
    return 0

if __name__ == "__main__":
    raise SystemExit(main())
