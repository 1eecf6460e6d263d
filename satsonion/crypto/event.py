"""
sats-onion Nostr Events

NIP-01 event model, canonical hashing and signing.

    id  = sha256(json([0, pubkey, created_at, kind, tags, content]))
    sig = BIP-340 Schnorr signature over id

Serialization uses compact separators and leaves non-ASCII characters
unescaped so ids match other Nostr implementations byte for byte.
"""

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

from .primitives import sha256, constant_time_compare
from .keys import IdentityKey, is_hex_key
from .schnorr import schnorr_sign, schnorr_verify


class EventError(Exception):
    """Exception raised for malformed events."""
    pass


class EventKind(IntEnum):
    """Event kinds used by the onion protocol."""
    SHORT_TEXT_NOTE = 1
    EXPIRING_ONION = 2747     # Retained by relays until its expiration tag
    RELAY_LIST = 10002        # NIP-65 mailbox list
    EPHEMERAL_ONION = 20747   # Ephemeral range, not retained by relays


Tags = List[List[str]]


@dataclass(frozen=True)
class Event:
    """
    Signed Nostr event.

    Instances are never mutated after signing; build a new one with
    finalize_event() instead.
    """
    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tags = field(default_factory=list)
    content: str = ""
    sig: str = ""

    def tag_value(self, name: str) -> Optional[str]:
        """First value of the first tag with the given name."""
        for tag in self.tags:
            if len(tag) >= 2 and tag[0] == name:
                return tag[1]
        return None

    def get_tag(self, name: str) -> Optional[List[str]]:
        """First tag with the given name."""
        for tag in self.tags:
            if tag and tag[0] == name:
                return tag
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Event':
        """
        Build an event from its JSON object form.

        Raises:
            EventError: If required fields are missing or mistyped
        """
        try:
            tags = [[str(v) for v in tag] for tag in data.get("tags", [])]
            return cls(
                id=str(data["id"]),
                pubkey=str(data["pubkey"]),
                created_at=int(data["created_at"]),
                kind=int(data["kind"]),
                tags=tags,
                content=str(data.get("content", "")),
                sig=str(data.get("sig", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise EventError(f"Malformed event: {e}")

    @classmethod
    def from_json(cls, text: str) -> 'Event':
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise EventError(f"Event is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise EventError("Event JSON must be an object")
        return cls.from_dict(data)


def serialize_event(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: Tags,
    content: str,
) -> bytes:
    """Canonical NIP-01 serialization used for the event id."""
    payload = [0, pubkey, created_at, kind, tags, content]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: Tags,
    content: str,
) -> str:
    """Content-addressed event id (hex)."""
    return sha256(serialize_event(pubkey, created_at, kind, tags, content)).hex()


def finalize_event(
    kind: int,
    created_at: int,
    content: str,
    tags: Tags,
    identity: IdentityKey,
) -> Event:
    """
    Hash and sign an event template.

    Args:
        kind: Event kind
        created_at: Unix timestamp
        content: Event content
        tags: Tag list (copied)
        identity: Signing key

    Returns:
        Event: Signed event
    """
    tags = [list(tag) for tag in tags]
    pubkey = identity.pubkey
    event_id = compute_event_id(pubkey, created_at, kind, tags, content)
    sig = schnorr_sign(bytes.fromhex(event_id), identity.secret)

    return Event(
        id=event_id,
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tags,
        content=content,
        sig=sig.hex(),
    )


def verify_event(event: Event) -> bool:
    """
    Check that an event's id matches its fields and its signature is valid.

    Returns:
        bool: True if both the id and signature check out
    """
    if not is_hex_key(event.pubkey) or not is_hex_key(event.id):
        return False

    try:
        expected = compute_event_id(
            event.pubkey, event.created_at, event.kind, event.tags, event.content
        )
        signature = bytes.fromhex(event.sig)
    except (TypeError, ValueError):
        return False

    if not constant_time_compare(expected.encode(), event.id.encode()):
        return False

    return schnorr_verify(
        bytes.fromhex(event.id),
        bytes.fromhex(event.pubkey),
        signature,
    )
