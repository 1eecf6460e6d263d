"""
sats-onion NIP-19 Encoding

Bech32 entities for display and sharing:
- npub: x-only public key
- nsec: secret key
- nevent: event id with relay hints (TLV)
"""

from typing import Iterable, List, Optional, Tuple

from bech32 import bech32_encode, bech32_decode, convertbits

from .keys import is_hex_key


class Nip19Error(Exception):
    """Exception raised for bech32 encode/decode errors."""
    pass


# TLV types for nevent
TLV_SPECIAL = 0
TLV_RELAY = 1
TLV_AUTHOR = 2
TLV_KIND = 3


def _encode(hrp: str, data: bytes) -> str:
    words = convertbits(data, 8, 5, True)
    if words is None:
        raise Nip19Error(f"Cannot convert {hrp} data to 5-bit words")
    return bech32_encode(hrp, words)


def _decode(expected_hrp: str, value: str) -> bytes:
    hrp, words = bech32_decode(value)
    if hrp is None or words is None:
        raise Nip19Error(f"Invalid bech32 string: {value[:12]}...")
    if hrp != expected_hrp:
        raise Nip19Error(f"Expected {expected_hrp}, got {hrp}")

    data = convertbits(words, 5, 8, False)
    if data is None:
        raise Nip19Error(f"Invalid {hrp} padding")
    return bytes(data)


def npub_encode(pubkey: str) -> str:
    """Encode a hex public key as npub."""
    if not is_hex_key(pubkey):
        raise Nip19Error(f"Invalid public key: {pubkey!r}")
    return _encode("npub", bytes.fromhex(pubkey))


def npub_decode(value: str) -> str:
    """Decode an npub to a hex public key."""
    return _decode("npub", value).hex()


def nsec_encode(secret: bytes) -> str:
    return _encode("nsec", secret)


def nsec_decode(value: str) -> bytes:
    return _decode("nsec", value)


def normalize_pubkey(value: str) -> str:
    """Accept a hex pubkey or npub and return hex."""
    if value.startswith("npub"):
        return npub_decode(value)
    if not is_hex_key(value):
        raise Nip19Error(f"Not a public key: {value!r}")
    return value.lower()


def normalize_secret(value: str) -> bytes:
    """Accept a hex secret or nsec and return raw bytes."""
    if value.startswith("nsec"):
        return nsec_decode(value)
    if not is_hex_key(value):
        raise Nip19Error("Secret key must be nsec or 64 hex characters")
    return bytes.fromhex(value)


def nevent_encode(
    event_id: str,
    relays: Iterable[str] = (),
    author: Optional[str] = None,
    kind: Optional[int] = None,
) -> str:
    """
    Encode an event reference as nevent.

    Args:
        event_id: Hex event id
        relays: Relay URLs where the event can be found
        author: Optional hex pubkey of the author
        kind: Optional event kind

    Returns:
        str: nevent bech32 string
    """
    if not is_hex_key(event_id):
        raise Nip19Error(f"Invalid event id: {event_id!r}")

    tlv: List[Tuple[int, bytes]] = [(TLV_SPECIAL, bytes.fromhex(event_id))]
    for relay in relays:
        tlv.append((TLV_RELAY, relay.encode("utf-8")))
    if author:
        tlv.append((TLV_AUTHOR, bytes.fromhex(author)))
    if kind is not None:
        tlv.append((TLV_KIND, kind.to_bytes(4, "big")))

    data = b""
    for tlv_type, value in tlv:
        if len(value) > 255:
            raise Nip19Error("TLV value too long")
        data += bytes([tlv_type, len(value)]) + value

    return _encode("nevent", data)
