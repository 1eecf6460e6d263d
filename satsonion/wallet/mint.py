"""
sats-onion Mint Interface

Defines the abstract interface to a Cashu mint. Quote creation,
lightning payment and blind-signature issuance are owned by the mint
client; the onion only needs:

- a funding flow (quote -> paid -> proofs)
- a way to reissue proofs when a split cannot be served exactly
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .token import Proof, sum_proofs


logger = logging.getLogger("satsonion.wallet")


class MintError(Exception):
    """Exception raised for mint-related errors."""
    pass


class PaymentNotConfirmed(MintError):
    """Funding invoice was not paid (or the operator declined to pay it)."""
    pass


class QuoteState(Enum):
    """Mint quote state (NUT-04)."""
    UNPAID = "UNPAID"
    PAID = "PAID"
    ISSUED = "ISSUED"


@dataclass
class MintQuote:
    """
    Funding quote returned by a mint.

    `request` is the lightning invoice the operator has to pay.
    """
    quote: str
    request: str
    amount: int
    state: QuoteState = QuoteState.UNPAID
    expiry: Optional[int] = None


class BaseMint(ABC):
    """
    Abstract base class for mint clients.

    Usage:
        mint = ConcreteMint("https://mint.example")
        quote = mint.create_quote(21)
        # ... operator pays quote.request ...
        if mint.check_quote(quote.quote).state is QuoteState.PAID:
            proofs = mint.mint_tokens(21, quote.quote)
    """

    def __init__(self, url: str):
        self._url = url.rstrip("/")

    @property
    def url(self) -> str:
        """Mint URL as embedded in token strings."""
        return self._url

    @abstractmethod
    def create_quote(self, amount: int) -> MintQuote:
        """Request a funding quote for amount."""
        pass

    @abstractmethod
    def check_quote(self, quote_id: str) -> MintQuote:
        """Fetch the current state of a quote."""
        pass

    @abstractmethod
    def mint_tokens(self, amount: int, quote_id: str) -> List[Proof]:
        """Issue proofs for a paid quote."""
        pass

    @abstractmethod
    def split(self, amount: int, proofs: Sequence[Proof]) -> Tuple[List[Proof], List[Proof]]:
        """
        Swap proofs for new ones worth exactly amount plus change.

        The input proofs are spent by this call.

        Returns:
            (spend, change) with sum(spend) == amount and
            sum(spend) + sum(change) == sum(proofs)
        """
        pass


def fund_pool(
    mint: BaseMint,
    amount: int,
    confirm_paid: Callable[[MintQuote], bool],
) -> "TokenPool":
    """
    Run the funding flow and return a fresh token pool.

    Args:
        mint: Mint to fund from
        amount: Amount to mint
        confirm_paid: Called with the quote once created; returns True
            when the operator says the invoice has been paid

    Returns:
        TokenPool: Pool holding the minted proofs

    Raises:
        PaymentNotConfirmed: If the operator declines or the mint still
            reports the quote as unpaid
    """
    from .pool import TokenPool

    if amount <= 0:
        raise ValueError(f"Funding amount must be positive, got {amount}")

    logger.info(f"Requesting quote for {amount} from {mint.url}")
    quote = mint.create_quote(amount)

    if not confirm_paid(quote):
        raise PaymentNotConfirmed("Operator did not confirm payment")

    status = mint.check_quote(quote.quote)
    if status.state is not QuoteState.PAID:
        raise PaymentNotConfirmed(f"Quote {quote.quote} is {status.state.value}")

    logger.info("Minting tokens...")
    proofs = mint.mint_tokens(amount, quote.quote)
    if sum_proofs(proofs) != amount:
        raise MintError(f"Mint issued {sum_proofs(proofs)} instead of {amount}")

    return TokenPool(proofs, mint_url=mint.url, mint=mint)
