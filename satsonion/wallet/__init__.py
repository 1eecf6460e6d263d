"""
sats-onion Wallet Module

Cashu proofs, token strings, pool splitting and the mint interface.

Components:
- token.py: Proof model and cashuA token encoding
- pool.py: TokenPool and split()
- mint.py: Abstract mint client and funding flow
"""

from .token import (
    Proof,
    Token,
    TokenError,
    encode_token,
    decode_token,
    sum_proofs,
)

from .pool import (
    TokenPool,
    TokenPoolError,
    InsufficientFunds,
    PoolConsumed,
    split_pool,
)

from .mint import (
    BaseMint,
    MintError,
    MintQuote,
    QuoteState,
    PaymentNotConfirmed,
    fund_pool,
)

__all__ = [
    # Tokens
    'Proof',
    'Token',
    'TokenError',
    'encode_token',
    'decode_token',
    'sum_proofs',
    # Pool
    'TokenPool',
    'TokenPoolError',
    'InsufficientFunds',
    'PoolConsumed',
    'split_pool',
    # Mint
    'BaseMint',
    'MintError',
    'MintQuote',
    'QuoteState',
    'PaymentNotConfirmed',
    'fund_pool',
]
