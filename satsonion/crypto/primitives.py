"""
sats-onion Cryptographic Primitives

Low-level functions wrapping the cryptography library.

SECURITY NOTES:
- All randomness from os.urandom (kernel CSPRNG)
- All MAC comparisons use constant-time operations

Dependencies:
- cryptography
"""

import os
import hmac
import time
import hashlib
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand


def random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of random bytes to generate

    Returns:
        bytes: Cryptographically secure random bytes

    Raises:
        ValueError: If length is negative
    """
    if length < 0:
        raise ValueError("Length must be non-negative")
    return os.urandom(length)


def sha256(data: bytes) -> bytes:
    """Compute SHA-256 digest of data."""
    return hashlib.sha256(data).digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """
    BIP-340 tagged hash.

    tagged_hash(tag, x) = SHA256(SHA256(tag) || SHA256(tag) || x)
    """
    tag_digest = sha256(tag.encode())
    return sha256(tag_digest + tag_digest + data)


def hmac_sha256(key: bytes, data: bytes) -> bytes:
    """Compute HMAC-SHA256 of data under key."""
    mac = crypto_hmac.HMAC(key, hashes.SHA256())
    mac.update(data)
    return mac.finalize()


def hkdf_extract(input_key_material: bytes, salt: bytes) -> bytes:
    """
    HKDF-Extract step (RFC 5869) with SHA-256.

    PRK = HMAC-SHA256(salt, IKM)
    """
    return hmac_sha256(salt, input_key_material)


def hkdf_expand(
    pseudo_random_key: bytes,
    length: int,
    info: Optional[bytes] = None,
) -> bytes:
    """
    HKDF-Expand step (RFC 5869) with SHA-256.

    Args:
        pseudo_random_key: PRK from hkdf_extract()
        length: Desired output length in bytes
        info: Context/application-specific info

    Returns:
        bytes: Derived key material

    Raises:
        ValueError: If length is out of range
    """
    if length < 1:
        raise ValueError("Length must be at least 1")

    if length > 255 * 32:
        raise ValueError("Length too large for HKDF")

    expand = HKDFExpand(
        algorithm=hashes.SHA256(),
        length=length,
        info=info,
    )
    return expand.derive(pseudo_random_key)


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Compare two byte strings in constant time.

    Uses hmac.compare_digest() so timing does not reveal where
    the strings differ.
    """
    return hmac.compare_digest(a, b)


def unix_now() -> int:
    """Current Unix time rounded to whole seconds."""
    return int(round(time.time()))


# Key and digest sizes
SECRET_KEY_SIZE = 32  # bytes
XONLY_PUBKEY_SIZE = 32  # bytes
SCHNORR_SIGNATURE_SIZE = 64  # bytes
SHA256_SIZE = 32  # bytes
