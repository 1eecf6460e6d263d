"""
sats-onion Cryptographic Module

Provides the cryptographic operations the onion needs:
- Key generation and ECDH over secp256k1 (x-only Nostr keys)
- NIP-44 v2 payload encryption (ChaCha20 + HMAC-SHA256)
- NIP-01 event hashing and BIP-340 Schnorr signatures
- NIP-19 bech32 entities

Key agreement, ciphers and KDFs use python3-cryptography; Schnorr
curve arithmetic uses python-ecdsa.
"""

from .primitives import (
    random_bytes,
    sha256,
    tagged_hash,
    constant_time_compare,
    unix_now,
)

from .keys import (
    IdentityKey,
    OneTimeKey,
    generate_identity,
    is_hex_key,
)

from .envelope import (
    get_conversation_key,
    encrypt,
    decrypt,
    EnvelopeError,
)

from .event import (
    Event,
    EventKind,
    EventError,
    compute_event_id,
    finalize_event,
    verify_event,
)

from .nip19 import (
    npub_encode,
    nevent_encode,
    normalize_pubkey,
    normalize_secret,
    Nip19Error,
)

__all__ = [
    # Primitives
    'random_bytes',
    'sha256',
    'tagged_hash',
    'constant_time_compare',
    'unix_now',
    # Keys
    'IdentityKey',
    'OneTimeKey',
    'generate_identity',
    'is_hex_key',
    # Envelope
    'get_conversation_key',
    'encrypt',
    'decrypt',
    'EnvelopeError',
    # Events
    'Event',
    'EventKind',
    'EventError',
    'compute_event_id',
    'finalize_event',
    'verify_event',
    # NIP-19
    'npub_encode',
    'nevent_encode',
    'normalize_pubkey',
    'normalize_secret',
    'Nip19Error',
]
