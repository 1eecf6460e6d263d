"""Shared fixtures: an in-memory mint, test identities and a loopback relay network."""

import hashlib
import itertools
from typing import Dict, List, Sequence, Tuple

import pytest

from satsonion.config import Config
from satsonion.crypto.keys import IdentityKey
from satsonion.crypto.primitives import unix_now
from satsonion.relay.loopback import LoopbackRelayNetwork
from satsonion.relay.mailbox import StaticMailboxResolver
from satsonion.wallet.mint import BaseMint, MintError, MintQuote, QuoteState
from satsonion.wallet.token import Proof, sum_proofs
from satsonion.wallet.pool import TokenPool


KEYSET_ID = "009a1f293253e41e"
MINT_URL = "https://mint.test"

NOW = unix_now()


class FakeMint(BaseMint):
    """Mint that issues power-of-two proofs and tracks spent secrets."""

    def __init__(self, url: str = MINT_URL):
        super().__init__(url)
        self._counter = itertools.count(1)
        self._quotes: Dict[str, MintQuote] = {}
        self.spent: set = set()
        self.split_calls: List[Tuple[int, int]] = []

    def _proof(self, amount: int) -> Proof:
        secret = f"secret-{next(self._counter)}"
        point = "02" + hashlib.sha256(secret.encode()).hexdigest()
        return Proof(id=KEYSET_ID, amount=amount, secret=secret, C=point)

    def issue(self, amount: int) -> List[Proof]:
        """Proofs for amount in descending power-of-two denominations."""
        proofs = []
        bit = 1
        while bit <= amount:
            if amount & bit:
                proofs.append(self._proof(bit))
            bit <<= 1
        return sorted(proofs, key=lambda p: p.amount, reverse=True)

    def pay(self, quote_id: str) -> None:
        self._quotes[quote_id].state = QuoteState.PAID

    def create_quote(self, amount: int) -> MintQuote:
        quote_id = f"quote-{next(self._counter)}"
        quote = MintQuote(quote=quote_id, request=f"lnbc{amount}n1fake", amount=amount)
        self._quotes[quote_id] = quote
        return quote

    def check_quote(self, quote_id: str) -> MintQuote:
        return self._quotes[quote_id]

    def mint_tokens(self, amount: int, quote_id: str) -> List[Proof]:
        quote = self._quotes[quote_id]
        if quote.state is not QuoteState.PAID:
            raise MintError(f"Quote {quote_id} is not paid")
        quote.state = QuoteState.ISSUED
        return self.issue(amount)

    def split(self, amount: int, proofs: Sequence[Proof]) -> Tuple[List[Proof], List[Proof]]:
        for proof in proofs:
            if proof.secret in self.spent:
                raise MintError("Proof already spent")
        total = sum_proofs(proofs)
        if amount > total:
            raise MintError("Split amount exceeds inputs")

        self.spent.update(p.secret for p in proofs)
        self.split_calls.append((amount, total))
        return self.issue(amount), self.issue(total - amount)


def make_identity(n: int) -> IdentityKey:
    return IdentityKey(bytes([n]) * 32)


@pytest.fixture
def mint():
    return FakeMint()


@pytest.fixture
def sender():
    return make_identity(1)


@pytest.fixture
def hops():
    """Three hop identities: bob, alice, joe."""
    return {
        "bob": make_identity(2),
        "alice": make_identity(3),
        "joe": make_identity(4),
    }


@pytest.fixture
def identities(hops):
    """Hop keys indexed by pubkey, as peel_all expects."""
    return {key.pubkey: key for key in hops.values()}


@pytest.fixture
def network():
    return LoopbackRelayNetwork()


@pytest.fixture
def resolver(sender, hops):
    resolver = StaticMailboxResolver()
    resolver.add(sender.pubkey, outboxes=["wss://sender.example"])
    for name, key in hops.items():
        resolver.add(key.pubkey, inboxes=[f"wss://{name}.example"])
    return resolver


@pytest.fixture
def config():
    config = Config()
    config.nostr.fallback_relays = ["wss://fallback.example"]
    return config


@pytest.fixture
def make_pool(mint):
    """Build a pool from explicit denominations."""
    def factory(amounts: Sequence[int], with_mint: bool = True) -> TokenPool:
        proofs = [mint._proof(a) for a in amounts]
        return TokenPool(proofs, mint_url=mint.url, mint=mint if with_mint else None)
    return factory


@pytest.fixture
def clock():
    return lambda: NOW
