"""
sats-onion Cashu Tokens

Proofs and the cashuA (v3) token string.

Token format:
    "cashuA" + base64url(json({"token": [{"proofs": [...], "mint": url}]}))

JSON is compact and base64url padding is stripped, matching what
cashu wallets emit, so hops can redeem the token with any wallet.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence


class TokenError(Exception):
    """Exception raised for malformed proofs or token strings."""
    pass


TOKEN_PREFIX = "cashu"
TOKEN_VERSION = "A"


@dataclass(frozen=True)
class Proof:
    """
    A single bearer proof issued by a mint.

    Whoever holds the secret and unblinded signature can spend it.
    """
    id: str        # Keyset id
    amount: int    # Denomination in the mint's unit
    secret: str
    C: str         # Unblinded mint signature (hex point)

    def __post_init__(self):
        if not isinstance(self.amount, int) or self.amount <= 0:
            raise TokenError(f"Proof amount must be a positive integer, got {self.amount!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "secret": self.secret,
            "C": self.C,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Proof':
        try:
            return cls(
                id=str(data["id"]),
                amount=int(data["amount"]),
                secret=str(data["secret"]),
                C=str(data["C"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenError(f"Malformed proof: {e}")


def sum_proofs(proofs: Iterable[Proof]) -> int:
    return sum(proof.amount for proof in proofs)


@dataclass(frozen=True)
class TokenEntry:
    """Proofs issued by one mint."""
    mint: str
    proofs: Sequence[Proof] = field(default_factory=tuple)


@dataclass(frozen=True)
class Token:
    """Decoded cashuA token."""
    entries: Sequence[TokenEntry]
    unit: Optional[str] = None
    memo: Optional[str] = None

    @property
    def amount(self) -> int:
        return sum(sum_proofs(entry.proofs) for entry in self.entries)

    @property
    def mints(self) -> List[str]:
        return [entry.mint for entry in self.entries]


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64_decode(text: str) -> bytes:
    # Accept both url-safe and standard alphabets, padded or not
    text = text.replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    return base64.b64decode(text, validate=True)


def encode_token(
    proofs: Sequence[Proof],
    mint_url: str,
    unit: Optional[str] = None,
    memo: Optional[str] = None,
) -> str:
    """
    Serialize proofs into a cashuA token string.

    Args:
        proofs: Proofs to include
        mint_url: URL of the issuing mint
        unit: Optional currency unit (e.g. "sat")
        memo: Optional memo

    Returns:
        str: Token string
    """
    if not proofs:
        raise TokenError("Cannot encode a token without proofs")

    body: Dict[str, Any] = {
        "token": [{"proofs": [p.to_dict() for p in proofs], "mint": mint_url}],
    }
    if unit:
        body["unit"] = unit
    if memo:
        body["memo"] = memo

    raw = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return TOKEN_PREFIX + TOKEN_VERSION + _b64url_encode(raw)


def decode_token(token: str) -> Token:
    """
    Parse a cashuA token string.

    Accepts an optional "cashu:" URI scheme prefix.

    Raises:
        TokenError: If the string is not a valid v3 token
    """
    token = token.strip()
    if token.startswith("cashu:"):
        token = token[len("cashu:"):]

    prefix = TOKEN_PREFIX + TOKEN_VERSION
    if not token.startswith(prefix):
        raise TokenError("Unsupported token version (expected cashuA)")

    try:
        body = json.loads(_b64_decode(token[len(prefix):]).decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise TokenError(f"Invalid token encoding: {e}")

    if not isinstance(body, dict) or not isinstance(body.get("token"), list):
        raise TokenError("Token body missing 'token' list")

    entries = []
    for entry in body["token"]:
        if not isinstance(entry, dict) or "mint" not in entry:
            raise TokenError("Token entry missing mint")
        proofs = tuple(Proof.from_dict(p) for p in entry.get("proofs", []))
        entries.append(TokenEntry(mint=str(entry["mint"]), proofs=proofs))

    if not entries:
        raise TokenError("Token contains no entries")

    return Token(entries=tuple(entries), unit=body.get("unit"), memo=body.get("memo"))
