"""
sats-onion BIP-340 Schnorr Signatures

Nostr events are signed with BIP-340 Schnorr signatures over secp256k1.
The cryptography library has no Schnorr support, so the curve arithmetic
comes from python-ecdsa.
"""

from typing import Optional

from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, Point, PointJacobi

from .primitives import (
    random_bytes,
    tagged_hash,
    SCHNORR_SIGNATURE_SIZE,
    XONLY_PUBKEY_SIZE,
)


_G = SECP256k1.generator
_N = SECP256k1.order
_P = SECP256k1.curve.p()


def _int(data: bytes) -> int:
    return int.from_bytes(data, "big")


def _bytes32(value: int) -> bytes:
    return value.to_bytes(32, "big")


def _lift_x(x: int) -> Optional[PointJacobi]:
    """Point with the given x coordinate and even y, or None."""
    if x >= _P:
        return None
    y_sq = (pow(x, 3, _P) + 7) % _P
    y = pow(y_sq, (_P + 1) // 4, _P)
    if pow(y, 2, _P) != y_sq:
        return None
    if y % 2:
        y = _P - y
    return PointJacobi.from_affine(Point(SECP256k1.curve, x, y))


def schnorr_sign(message: bytes, secret: bytes, aux_rand: Optional[bytes] = None) -> bytes:
    """
    Sign a 32-byte message.

    Args:
        message: 32-byte digest (the event id)
        secret: 32-byte secret key
        aux_rand: 32 bytes of auxiliary randomness (fresh if omitted)

    Returns:
        bytes: 64-byte signature R.x || s

    Raises:
        ValueError: If inputs are malformed
    """
    if len(message) != 32:
        raise ValueError("Message must be 32 bytes")

    d0 = _int(secret)
    if not 0 < d0 < _N:
        raise ValueError("Secret key out of range")

    if aux_rand is None:
        aux_rand = random_bytes(32)

    pub = _G * d0
    d = d0 if pub.y() % 2 == 0 else _N - d0
    pub_x = _bytes32(pub.x())

    t = bytes(a ^ b for a, b in zip(_bytes32(d), tagged_hash("BIP0340/aux", aux_rand)))
    k0 = _int(tagged_hash("BIP0340/nonce", t + pub_x + message)) % _N
    if k0 == 0:
        raise ValueError("Derived nonce is zero")

    r_point = _G * k0
    k = k0 if r_point.y() % 2 == 0 else _N - k0
    r_x = _bytes32(r_point.x())

    e = _int(tagged_hash("BIP0340/challenge", r_x + pub_x + message)) % _N
    return r_x + _bytes32((k + e * d) % _N)


def schnorr_verify(message: bytes, pubkey: bytes, signature: bytes) -> bool:
    """
    Verify a BIP-340 signature.

    Args:
        message: 32-byte digest
        pubkey: 32-byte x-only public key
        signature: 64-byte signature

    Returns:
        bool: True if the signature is valid
    """
    if len(pubkey) != XONLY_PUBKEY_SIZE or len(signature) != SCHNORR_SIGNATURE_SIZE:
        return False

    point = _lift_x(_int(pubkey))
    if point is None:
        return False

    r = _int(signature[:32])
    s = _int(signature[32:])
    if r >= _P or s >= _N:
        return False

    e = _int(tagged_hash("BIP0340/challenge", signature[:32] + pubkey + message)) % _N
    r_point = _G * s + point * (_N - e)

    if r_point == INFINITY:
        return False
    return r_point.y() % 2 == 0 and r_point.x() == r
