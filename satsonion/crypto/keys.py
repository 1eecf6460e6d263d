"""
sats-onion Key Management

Handles:
- Nostr identity keys (secp256k1, x-only public keys)
- One-time keys for onion layers
- ECDH key agreement against x-only public keys

Key Types:
- Identity Key: long-term secp256k1 secret, used to sign the payload note
- One-time Key: fresh secp256k1 secret per onion layer, discarded after
  signing that layer

SECURITY NOTES:
- Private keys are never logged
- x-only public keys are lifted to the even-y point (BIP-340)
"""

from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .primitives import (
    random_bytes,
    SECRET_KEY_SIZE,
    XONLY_PUBKEY_SIZE,
)


# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class KeyError(Exception):
    """Exception raised for key-related errors."""
    pass


class IdentityKey:
    """
    secp256k1 key pair in Nostr form.

    The public key is the 32-byte x coordinate (hex encoded on the
    wire). ECDH against a peer returns the unhashed shared x coordinate,
    which is what NIP-44 expects as input key material.
    """

    def __init__(self, secret: bytes):
        """
        Initialize identity from a 32-byte secret.

        Args:
            secret: secp256k1 private scalar, big-endian
        """
        if len(secret) != SECRET_KEY_SIZE:
            raise KeyError(f"Invalid secret length: {len(secret)} (expected {SECRET_KEY_SIZE})")

        scalar = int.from_bytes(secret, "big")
        if not 0 < scalar < CURVE_ORDER:
            raise KeyError("Secret key out of range")

        self._secret = secret
        self._private = ec.derive_private_key(scalar, ec.SECP256K1())
        numbers = self._private.public_key().public_numbers()
        self._pubkey = numbers.x.to_bytes(XONLY_PUBKEY_SIZE, "big")

    @property
    def secret(self) -> bytes:
        """
        Raw 32-byte secret.

        Security:
            Output contains secret key material. Handle with care.
        """
        return self._secret

    @property
    def secret_hex(self) -> str:
        return self._secret.hex()

    @property
    def public_key_bytes(self) -> bytes:
        """x-only public key (32 bytes)."""
        return self._pubkey

    @property
    def pubkey(self) -> str:
        """x-only public key, lowercase hex."""
        return self._pubkey.hex()

    def exchange(self, peer_pubkey: str) -> bytes:
        """
        Perform ECDH with a peer's x-only public key.

        Args:
            peer_pubkey: 64-char hex x-only public key

        Returns:
            bytes: 32-byte shared x coordinate
        """
        peer = public_key_from_hex(peer_pubkey)
        return self._private.exchange(ec.ECDH(), peer)

    @classmethod
    def from_hex(cls, secret_hex: str) -> 'IdentityKey':
        """Load identity from a 64-char hex secret."""
        if not is_hex_key(secret_hex):
            raise KeyError("Secret key must be 64 hex characters")
        return cls(bytes.fromhex(secret_hex))

    def __repr__(self) -> str:
        return f"IdentityKey(pubkey={self.pubkey})"


class OneTimeKey(IdentityKey):
    """
    Throwaway key pair for a single onion layer.

    Each layer gets its own signer so that no two layers can be
    attributed to the same key.
    """

    def __init__(self, secret: Optional[bytes] = None):
        super().__init__(secret if secret is not None else generate_secret())


def generate_secret() -> bytes:
    """
    Generate a valid secp256k1 secret.

    Rejection-samples os.urandom() output until it falls in [1, n-1].
    """
    while True:
        candidate = random_bytes(SECRET_KEY_SIZE)
        if 0 < int.from_bytes(candidate, "big") < CURVE_ORDER:
            return candidate


def generate_identity() -> IdentityKey:
    """Generate a new identity key."""
    return IdentityKey(generate_secret())


def is_hex_key(key: Optional[str]) -> bool:
    """True if key is 64 hex characters."""
    if not key or len(key) != 64:
        return False
    try:
        bytes.fromhex(key)
    except ValueError:
        return False
    return True


def public_key_from_hex(pubkey: str) -> ec.EllipticCurvePublicKey:
    """
    Lift an x-only public key to a curve point.

    Args:
        pubkey: 64-char hex x coordinate

    Returns:
        EllipticCurvePublicKey with even y

    Raises:
        KeyError: If the value is not a valid x coordinate
    """
    if not is_hex_key(pubkey):
        raise KeyError(f"Invalid public key: {pubkey!r}")

    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(
            ec.SECP256K1(),
            b"\x02" + bytes.fromhex(pubkey),
        )
    except ValueError as e:
        raise KeyError(f"Public key is not on secp256k1: {e}")
