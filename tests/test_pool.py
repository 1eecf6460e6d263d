"""Tests for TokenPool splitting."""

import pytest

from satsonion.wallet.mint import PaymentNotConfirmed, fund_pool
from satsonion.wallet.pool import (
    InsufficientFunds,
    PoolConsumed,
    TokenPool,
    TokenPoolError,
    select_proofs,
    split_pool,
)
from satsonion.wallet.token import decode_token


class TestSelectProofs:
    def test_exact_match(self, make_pool):
        pool = make_pool([16, 4, 1])
        total, indexes = select_proofs(pool.proofs, 5)
        assert total == 5
        assert sorted(indexes) == [1, 2]

    def test_smallest_overshoot(self, make_pool):
        pool = make_pool([16, 4, 1])
        total, indexes = select_proofs(pool.proofs, 7)
        assert total == 16
        assert indexes == [0]


class TestSplit:
    @pytest.mark.parametrize("amount", [1, 5, 7, 20, 21])
    def test_conserves_value(self, make_pool, amount):
        pool = make_pool([16, 4, 1])
        spend, change = pool.split(amount)
        assert spend.total + change.total == 21
        assert spend.total == amount

    def test_exact_split_does_not_touch_mint(self, make_pool, mint):
        spend, change = make_pool([16, 4, 1]).split(5)
        assert spend.total == 5
        assert change.total == 16
        assert mint.split_calls == []

    def test_mint_reissues_exact_spend(self, make_pool, mint):
        spend, change = make_pool([16, 4, 1]).split(7)
        assert spend.total == 7
        assert change.total == 14
        assert mint.split_calls == [(7, 16)]

    def test_short_mint_swap_still_consumes_pool(self, make_pool, mint, monkeypatch):
        monkeypatch.setattr(mint, "split", lambda amount, proofs: (mint.issue(amount - 1), mint.issue(1)))
        pool = make_pool([16, 4, 1])
        with pytest.raises(TokenPoolError):
            pool.split(7)
        assert pool.consumed
        with pytest.raises(PoolConsumed):
            pool.split(1)

    def test_without_mint_spend_may_exceed_amount(self, make_pool):
        spend, change = make_pool([16, 4, 1], with_mint=False).split(7)
        assert spend.total == 16
        assert change.total == 5

    def test_insufficient_funds(self, make_pool):
        pool = make_pool([32, 16, 2])
        with pytest.raises(InsufficientFunds):
            pool.split(100)
        assert not pool.consumed
        assert pool.total == 50

    def test_rejects_non_positive_amount(self, make_pool):
        with pytest.raises(ValueError):
            make_pool([4]).split(0)

    def test_split_consumes_pool(self, make_pool):
        pool = make_pool([4, 1])
        pool.split(1)
        assert pool.consumed
        with pytest.raises(PoolConsumed):
            pool.split(1)
        with pytest.raises(PoolConsumed):
            pool.to_token()

    def test_no_proof_in_both_halves(self, make_pool):
        pool = make_pool([8, 4, 2, 1])
        originals = {p.secret for p in pool.proofs}
        spend, change = pool.split(6)
        spend_secrets = {p.secret for p in spend.proofs}
        change_secrets = {p.secret for p in change.proofs}
        assert not spend_secrets & change_secrets
        assert spend_secrets | change_secrets == originals

    def test_split_pool_function(self, make_pool):
        spend, change = split_pool(4, make_pool([4, 1]))
        assert (spend.total, change.total) == (4, 1)

    def test_full_split_leaves_empty_change(self, make_pool):
        spend, change = make_pool([4, 1]).split(5)
        assert change.is_empty
        assert change.total == 0


class TestTokenExport:
    def test_to_token_carries_proofs(self, make_pool, mint):
        pool = make_pool([4, 1])
        token = decode_token(pool.to_token())
        assert token.amount == 5
        assert token.mints == [mint.url]

    def test_from_token(self, make_pool, mint):
        token = make_pool([8, 2]).to_token()
        pool = TokenPool.from_token(token, mint=mint)
        assert pool.total == 10
        assert pool.mint is mint


class TestFunding:
    def test_fund_pool(self, mint):
        def confirm(quote):
            mint.pay(quote.quote)
            return True

        pool = fund_pool(mint, 21, confirm)
        assert pool.total == 21
        assert sorted(p.amount for p in pool.proofs) == [1, 4, 16]

    def test_operator_declines(self, mint):
        with pytest.raises(PaymentNotConfirmed):
            fund_pool(mint, 21, lambda quote: False)

    def test_unpaid_quote(self, mint):
        with pytest.raises(PaymentNotConfirmed):
            fund_pool(mint, 21, lambda quote: True)
