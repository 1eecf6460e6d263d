"""
sats-onion Token Pool

An in-memory collection of bearer proofs that pays for each hop.

A pool is split, never edited: split() consumes the pool and returns
two new pools (spend, change) that partition its value. Reusing a
consumed pool raises PoolConsumed, so a proof can only ever end up in
one hop's payment.

Split strategy:
1. A subset of proofs summing exactly to the amount is used as-is
2. Otherwise the smallest subset worth more than the amount is taken
3. If a mint is attached, that subset is reissued into an exact spend
   plus change; without a mint the subset itself is the spend
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .token import Proof, encode_token, decode_token, sum_proofs, TokenError
from .mint import BaseMint


logger = logging.getLogger("satsonion.wallet")


class TokenPoolError(Exception):
    """Exception raised for token pool errors."""
    pass


class InsufficientFunds(TokenPoolError):
    """Split requested more than the pool holds."""
    pass


class PoolConsumed(TokenPoolError):
    """Pool was already split and must not be reused."""
    pass


class TokenPool:
    """
    Owned collection of proofs from a single mint.

    Usage:
        pool = TokenPool(proofs, mint_url="https://mint.example", mint=mint)
        spend, change = pool.split(5)
        token = spend.to_token()
        pool = change  # the old pool is now consumed
    """

    def __init__(
        self,
        proofs: Iterable[Proof],
        mint_url: str = "",
        mint: Optional[BaseMint] = None,
    ):
        """
        Initialize pool.

        Args:
            proofs: Proofs owned by this pool
            mint_url: URL of the issuing mint (embedded in tokens)
            mint: Optional mint client used to reissue proofs on split
        """
        self._proofs: Tuple[Proof, ...] = tuple(proofs)
        self._mint = mint
        self._mint_url = mint_url or (mint.url if mint else "")
        self._consumed = False

    @property
    def proofs(self) -> Tuple[Proof, ...]:
        return self._proofs

    @property
    def total(self) -> int:
        """Total value of the pool."""
        return sum_proofs(self._proofs)

    @property
    def mint_url(self) -> str:
        return self._mint_url

    @property
    def mint(self) -> Optional[BaseMint]:
        return self._mint

    @property
    def consumed(self) -> bool:
        return self._consumed

    @property
    def is_empty(self) -> bool:
        return not self._proofs

    def __len__(self) -> int:
        return len(self._proofs)

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else f"{len(self._proofs)} proofs"
        return f"TokenPool(total={self.total}, {state})"

    def _derive(self, proofs: Iterable[Proof]) -> 'TokenPool':
        return TokenPool(proofs, mint_url=self._mint_url, mint=self._mint)

    def _check_usable(self) -> None:
        if self._consumed:
            raise PoolConsumed("Token pool was already split")

    def split(self, amount: int) -> Tuple['TokenPool', 'TokenPool']:
        """
        Split off amount, consuming this pool.

        Args:
            amount: Requested spend amount

        Returns:
            (spend, change). spend.total is authoritative: it may exceed
            amount when no exact combination exists and no mint is
            attached.

        Raises:
            ValueError: If amount is not positive
            InsufficientFunds: If amount exceeds the pool total
            PoolConsumed: If this pool was already split
        """
        self._check_usable()

        if amount <= 0:
            raise ValueError(f"Split amount must be positive, got {amount}")

        total = self.total
        if amount > total:
            raise InsufficientFunds(f"Requested {amount} but pool holds {total}")

        selected_sum, selected = select_proofs(self._proofs, amount)
        chosen = set(selected)
        keep = [p for i, p in enumerate(self._proofs) if i not in chosen]
        picked = [self._proofs[i] for i in selected]

        if selected_sum == amount or self._mint is None:
            spend, change = picked, keep
            if selected_sum != amount:
                logger.info(f"No exact split for {amount}, spending {selected_sum}")
        else:
            # Reissue the selected proofs into exact denominations. Proofs
            # handed to the mint count as spent even if the swap fails.
            logger.debug(f"Swapping {selected_sum} at mint for a {amount} spend")
            self._consumed = True
            self._proofs = ()
            new_spend, new_change = self._mint.split(amount, picked)
            if sum_proofs(new_spend) != amount:
                raise TokenPoolError(
                    f"Mint returned {sum_proofs(new_spend)} for a {amount} spend"
                )
            spend, change = list(new_spend), list(new_change) + keep

        if sum_proofs(spend) + sum_proofs(change) != total:
            raise TokenPoolError("Split did not conserve pool value")

        self._consumed = True
        self._proofs = ()
        return self._derive(spend), self._derive(change)

    def to_token(self, memo: Optional[str] = None, unit: Optional[str] = None) -> str:
        """
        Serialize the pool as a cashuA token string.

        Raises:
            PoolConsumed: If this pool was already split
            TokenError: If the pool is empty
        """
        self._check_usable()
        return encode_token(self._proofs, self._mint_url, unit=unit, memo=memo)

    @classmethod
    def from_token(cls, token: str, mint: Optional[BaseMint] = None) -> 'TokenPool':
        """
        Build a pool from a cashuA token string.

        Raises:
            TokenError: If the token is malformed or spans several mints
        """
        decoded = decode_token(token)
        if len(decoded.entries) != 1:
            raise TokenError("Token pools hold proofs from a single mint")

        entry = decoded.entries[0]
        if mint is not None and mint.url != entry.mint.rstrip("/"):
            raise TokenError(f"Token is from {entry.mint}, not {mint.url}")

        return cls(entry.proofs, mint_url=entry.mint, mint=mint)


def split_pool(amount: int, pool: TokenPool) -> Tuple[TokenPool, TokenPool]:
    """Functional form of TokenPool.split()."""
    return pool.split(amount)


def select_proofs(proofs: Sequence[Proof], amount: int) -> Tuple[int, List[int]]:
    """
    Choose proof indexes for a spend.

    Prefers an exact match; otherwise returns the smallest reachable
    total above amount. Reachable totals are tracked in a table keyed
    by sum; the first combination found for a total is kept.

    Args:
        proofs: Available proofs
        amount: Target amount (<= total of proofs)

    Returns:
        (selected_total, indexes)
    """
    reachable: Dict[int, List[int]] = {0: []}

    for index, proof in enumerate(proofs):
        for subtotal, indexes in list(reachable.items()):
            candidate = subtotal + proof.amount
            if candidate not in reachable:
                reachable[candidate] = indexes + [index]
        if amount in reachable:
            return amount, reachable[amount]

    best = min(s for s in reachable if s >= amount)
    return best, reachable[best]
