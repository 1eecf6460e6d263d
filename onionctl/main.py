#!/usr/bin/env python3
"""
onionctl - sats-onion CLI

Offline tooling for building and checking onions.

Usage:
    onionctl keygen     - Generate an identity
    onionctl build      - Build an onion from a cashu token and hop list
    onionctl peel       - Decrypt one onion layer with a hop's secret
    onionctl inspect    - Show the contents of a cashu token
"""

import sys
import argparse
import json
import random
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from satsonion.config import Config, ConfigError
from satsonion.crypto.keys import IdentityKey, KeyError as InvalidKeyError, generate_identity
from satsonion.crypto.event import Event, EventError, EventKind, finalize_event
from satsonion.crypto.nip19 import (
    Nip19Error,
    npub_encode,
    nsec_encode,
    normalize_pubkey,
    normalize_secret,
)
from satsonion.crypto.primitives import unix_now
from satsonion.main import setup_logging
from satsonion.relay.mailbox import StaticMailboxResolver
from satsonion.wallet.pool import TokenPool
from satsonion.wallet.token import TokenError, decode_token
from satsonion.onion.route import RouteError, compose_route
from satsonion.onion.layers import EncodingFailure, OnionEncoder, PeelError, peel_layer


def parse_hop(value: str, config: Config) -> Tuple[str, int]:
    """
    Parse a HOP:FEE argument.

    HOP may be a contact name, an npub or a hex pubkey.

    Raises:
        ValueError: If the value is malformed
    """
    hop, sep, fee = value.rpartition(":")
    if not sep or not hop:
        raise ValueError(f"Expected HOP:FEE, got {value!r}")

    try:
        amount = int(fee)
    except ValueError:
        raise ValueError(f"Fee must be an integer, got {fee!r}")

    for contact in config.contacts:
        if contact.name == hop:
            return contact.pubkey, amount

    try:
        return normalize_pubkey(hop), amount
    except Nip19Error as e:
        raise ValueError(f"Unknown hop {hop!r}: {e}")


def build_resolver(config: Config) -> StaticMailboxResolver:
    """Mailbox table from the configured contacts."""
    resolver = StaticMailboxResolver()
    for contact in config.contacts:
        resolver.add(contact.pubkey, contact.inboxes, contact.outboxes)
    return resolver


class OnionCtl:
    """onionctl CLI application."""

    def __init__(self, config: Config):
        """Initialize CLI with loaded configuration."""
        self.config = config

    def keygen(self) -> int:
        """Generate and print a new identity."""
        identity = generate_identity()

        print(f"Secret:  {identity.secret_hex}")
        print(f"nsec:    {nsec_encode(identity.secret)}")
        print(f"Pubkey:  {identity.pubkey}")
        print(f"npub:    {npub_encode(identity.pubkey)}")
        return 0

    def _load_identity(self, secret: str) -> Optional[IdentityKey]:
        try:
            return IdentityKey(normalize_secret(secret))
        except (Nip19Error, InvalidKeyError) as e:
            print(f"Error: Invalid secret key: {e}", file=sys.stderr)
            return None

    def build(
        self,
        secret: str,
        token: str,
        hops: Sequence[str],
        message: str,
        seed: Optional[int] = None,
    ) -> int:
        """Build an onion and print it as JSON."""
        identity = self._load_identity(secret)
        if identity is None:
            return 1

        try:
            selections = [parse_hop(h, self.config) for h in hops]
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        try:
            pool = TokenPool.from_token(token)
        except TokenError as e:
            print(f"Error: Invalid token: {e}", file=sys.stderr)
            return 1

        rng = random.Random(seed)
        now = unix_now()

        try:
            route = compose_route(
                pool,
                selections,
                build_resolver(self.config),
                config=self.config.route,
                rng=rng,
                clock=lambda: now,
            )
        except (RouteError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        if len(route) < len(selections):
            print(
                f"Warning: pool exhausted after {len(route)} of {len(selections)} hops",
                file=sys.stderr,
            )

        note = finalize_event(
            kind=int(EventKind.SHORT_TEXT_NOTE),
            created_at=now,
            content=message,
            tags=[],
            identity=identity,
        )

        encoder = OnionEncoder(
            created_at_jitter=self.config.route.created_at_jitter,
            rng=rng,
            clock=lambda: now,
        )
        try:
            onion = encoder.encode(note, route)
        except EncodingFailure as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        output = {
            "onion": onion.outer.to_dict(),
            "payload_id": onion.payload_id,
            "layer_ids": {str(i): layer_id for i, layer_id in sorted(onion.layer_ids.items())},
            "route": [
                {
                    "pubkey": hop.pubkey,
                    "amount": hop.amount,
                    "relay": hop.relay,
                    "expiration": hop.expiration,
                }
                for hop in route
            ],
            "change_token": None if route.change.is_empty else route.change.to_token(),
        }
        print(json.dumps(output, indent=2, ensure_ascii=False))
        return 0

    def peel(self, secret: str, source: str) -> int:
        """Decrypt one layer and print what the hop sees."""
        identity = self._load_identity(secret)
        if identity is None:
            return 1

        try:
            if source == "-":
                raw = sys.stdin.read()
            else:
                raw = Path(source).read_text()
        except OSError as e:
            print(f"Error: Cannot read {source}: {e}", file=sys.stderr)
            return 1

        try:
            data = json.loads(raw)
            # Accept either a bare event or the output of `build`
            if isinstance(data, dict) and "onion" in data:
                data = data["onion"]
            if not isinstance(data, dict):
                raise EventError("Event JSON must be an object")
            layer = Event.from_dict(data)
        except (ValueError, EventError) as e:
            print(f"Error: Not an event: {e}", file=sys.stderr)
            return 1

        try:
            peeled = peel_layer(layer, identity)
        except PeelError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        try:
            amount = decode_token(peeled.token).amount
        except TokenError:
            amount = None

        output = {
            "recipient": peeled.recipient,
            "expiration": peeled.expiration,
            "amount": amount,
            "token": peeled.token,
            "inner": peeled.inner.to_dict(),
        }
        print(json.dumps(output, indent=2, ensure_ascii=False))
        return 0

    def inspect(self, token: str) -> int:
        """Show token details."""
        try:
            decoded = decode_token(token)
        except TokenError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        print("Cashu Token")
        print("=" * 40)
        print(f"Amount:  {decoded.amount}")
        if decoded.unit:
            print(f"Unit:    {decoded.unit}")
        if decoded.memo:
            print(f"Memo:    {decoded.memo}")

        for entry in decoded.entries:
            print()
            print(f"Mint:    {entry.mint}")
            print(f"{'Keyset':<18} {'Amount':>8}")
            print("-" * 27)
            for proof in entry.proofs:
                print(f"{proof.id:<18} {proof.amount:>8}")

        return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="sats-onion CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  keygen      Generate an identity
  build       Build an onion from a cashu token and hop list
  peel        Decrypt one onion layer with a hop's secret
  inspect     Show the contents of a cashu token

Examples:
  onionctl keygen
  onionctl build --secret nsec1... --token cashuA... --hop bob:5 --hop alice:7 -m "hi"
  onionctl build ... > onion.json && onionctl peel --secret <bob> onion.json
  onionctl inspect cashuA...
""",
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # keygen command
    subparsers.add_parser("keygen", help="Generate an identity")

    # build command
    build_parser = subparsers.add_parser("build", help="Build an onion")
    build_parser.add_argument("--secret", required=True, help="Sender secret (nsec or hex)")
    build_parser.add_argument("--token", required=True, help="cashuA token funding the route")
    build_parser.add_argument(
        "--hop",
        action="append",
        required=True,
        metavar="HOP:FEE",
        help="Hop (contact name, npub or hex) and fee; repeat in route order",
    )
    build_parser.add_argument("-m", "--message", required=True, help="Note content")
    build_parser.add_argument("--seed", type=int, default=None, help="Seed for relay choice and jitter")

    # peel command
    peel_parser = subparsers.add_parser("peel", help="Decrypt one onion layer")
    peel_parser.add_argument("--secret", required=True, help="Hop secret (nsec or hex)")
    peel_parser.add_argument(
        "event",
        nargs="?",
        default="-",
        help="File with the layer event JSON (default: stdin)",
    )

    # inspect command
    inspect_parser = subparsers.add_parser("inspect", help="Show token details")
    inspect_parser.add_argument("token", help="cashuA token")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = Config.load(args.config)
        config.validate()
    except (ConfigError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging("DEBUG" if args.verbose else config.log_level, config.log_file)

    # Create CLI instance
    cli = OnionCtl(config)

    # Dispatch command
    if args.command == "keygen":
        return cli.keygen()
    elif args.command == "build":
        return cli.build(args.secret, args.token, args.hop, args.message, seed=args.seed)
    elif args.command == "peel":
        return cli.peel(args.secret, args.event)
    elif args.command == "inspect":
        return cli.inspect(args.token)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
