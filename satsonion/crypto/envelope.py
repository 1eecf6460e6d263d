"""
sats-onion Envelope Encryption (NIP-44 version 2)

Payload format (base64 encoded):
    version (1 byte, 0x02) || nonce (32) || ciphertext || mac (32)

Key schedule:
    conversation_key = HKDF-Extract(salt="nip44-v2", IKM=ecdh_x)
    chacha_key || chacha_nonce || hmac_key = HKDF-Expand(conversation_key, nonce, 76)

Plaintext is prefixed with its u16 big-endian length and zero padded
to a power-of-two derived bucket before encryption.

SECURITY NOTES:
- ChaCha20 stream cipher with HMAC-SHA256 over nonce || ciphertext
- Fresh random 32-byte nonce per message
- MAC verified in constant time before decryption
"""

import base64
import binascii
import math
from typing import Optional, Tuple

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from .primitives import (
    random_bytes,
    hkdf_extract,
    hkdf_expand,
    hmac_sha256,
    constant_time_compare,
)
from .keys import IdentityKey, KeyError as InvalidKeyError


class EnvelopeError(Exception):
    """Exception raised for envelope encryption/decryption errors."""
    pass


NIP44_VERSION = 2
NIP44_SALT = b"nip44-v2"

NONCE_SIZE = 32
MAC_SIZE = 32
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535

# Smallest possible payload: version + nonce + 32 padded + 2 length + mac
MIN_PAYLOAD_SIZE = 1 + NONCE_SIZE + 34 + MAC_SIZE


def get_conversation_key(identity: IdentityKey, peer_pubkey: str) -> bytes:
    """
    Derive the symmetric conversation key between a secret and a peer.

    The key is symmetric: A(secret) with B(pubkey) equals B(secret)
    with A(pubkey).

    Raises:
        EnvelopeError: If the peer key is invalid
    """
    try:
        shared_x = identity.exchange(peer_pubkey)
    except InvalidKeyError as e:
        raise EnvelopeError(f"Key agreement failed: {e}")
    return hkdf_extract(shared_x, NIP44_SALT)


def _message_keys(conversation_key: bytes, nonce: bytes) -> Tuple[bytes, bytes, bytes]:
    if len(conversation_key) != 32:
        raise EnvelopeError("Invalid conversation key length")
    if len(nonce) != NONCE_SIZE:
        raise EnvelopeError("Invalid nonce length")

    keys = hkdf_expand(conversation_key, 76, info=nonce)
    return keys[0:32], keys[32:44], keys[44:76]


def calc_padded_len(unpadded_len: int) -> int:
    """
    Padded plaintext length for a given message length.

    Messages up to 32 bytes pad to 32. Above that, lengths round up to a
    multiple of a chunk that is 32 bytes below 256 and one eighth of
    the next power of two beyond that.
    """
    if unpadded_len <= 0:
        raise EnvelopeError("Expected a positive length")
    if unpadded_len <= 32:
        return 32

    next_power = 1 << (math.floor(math.log2(unpadded_len - 1)) + 1)
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * (math.floor((unpadded_len - 1) / chunk) + 1)


def pad(plaintext: str) -> bytes:
    """Length-prefix and zero-pad a UTF-8 plaintext."""
    data = plaintext.encode("utf-8")
    length = len(data)

    if not MIN_PLAINTEXT_SIZE <= length <= MAX_PLAINTEXT_SIZE:
        raise EnvelopeError(f"Invalid plaintext length: {length}")

    prefix = length.to_bytes(2, "big")
    suffix = bytes(calc_padded_len(length) - length)
    return prefix + data + suffix


def unpad(padded: bytes) -> str:
    """Reverse pad(), validating the length prefix and padding size."""
    length = int.from_bytes(padded[:2], "big")
    data = padded[2:2 + length]

    if (
        length == 0
        or len(data) != length
        or len(padded) != 2 + calc_padded_len(length)
    ):
        raise EnvelopeError("Invalid padding")

    return data.decode("utf-8")


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 32-bit LE counter || 96-bit nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00" * 4 + nonce), mode=None)
    return cipher.encryptor().update(data)


def encrypt(
    plaintext: str,
    conversation_key: bytes,
    nonce: Optional[bytes] = None,
) -> str:
    """
    Encrypt a string under a conversation key.

    Args:
        plaintext: UTF-8 string, 1..65535 bytes once encoded
        conversation_key: 32-byte key from get_conversation_key()
        nonce: 32-byte nonce (random if omitted; only pass one in tests)

    Returns:
        str: base64 payload

    Raises:
        EnvelopeError: If the plaintext is out of range
    """
    if nonce is None:
        nonce = random_bytes(NONCE_SIZE)

    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, pad(plaintext))
    mac = hmac_sha256(hmac_key, nonce + ciphertext)

    payload = bytes([NIP44_VERSION]) + nonce + ciphertext + mac
    return base64.b64encode(payload).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """
    Decrypt a base64 payload produced by encrypt().

    Raises:
        EnvelopeError: If the payload is malformed or fails authentication
    """
    if not payload or payload[0] == "#":
        raise EnvelopeError("Unknown encryption version")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EnvelopeError(f"Invalid base64: {e}")

    if len(data) < MIN_PAYLOAD_SIZE:
        raise EnvelopeError(f"Payload too short: {len(data)} bytes")

    if data[0] != NIP44_VERSION:
        raise EnvelopeError(f"Unknown encryption version: {data[0]}")

    nonce = data[1:1 + NONCE_SIZE]
    ciphertext = data[1 + NONCE_SIZE:-MAC_SIZE]
    mac = data[-MAC_SIZE:]

    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)

    expected = hmac_sha256(hmac_key, nonce + ciphertext)
    if not constant_time_compare(expected, mac):
        raise EnvelopeError("Decryption failed: invalid MAC (tampering or wrong key)")

    try:
        return unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
    except UnicodeDecodeError as e:
        raise EnvelopeError(f"Decrypted payload is not UTF-8: {e}")
