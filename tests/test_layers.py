"""Tests for onion encoding and peeling."""

import random

import pytest

from satsonion.config import RouteConfig
from satsonion.crypto.event import EventKind, finalize_event, verify_event
from satsonion.onion.layers import (
    EncodingFailure,
    OnionEncoder,
    PeelError,
    encode_onion,
    peel_all,
    peel_layer,
)
from satsonion.onion.route import Hop, Route, compose_route
from satsonion.wallet.pool import TokenPool
from satsonion.wallet.token import decode_token


@pytest.fixture
def note(sender, clock):
    return finalize_event(
        kind=int(EventKind.SHORT_TEXT_NOTE),
        created_at=clock(),
        content="hello through the onion",
        tags=[],
        identity=sender,
    )


@pytest.fixture
def route(make_pool, resolver, hops, clock):
    selections = [(key.pubkey, fee) for key, fee in zip(hops.values(), (4, 2, 1))]
    return compose_route(
        make_pool([4, 2, 1]), selections, resolver, rng=random.Random(1), clock=clock
    )


@pytest.fixture
def encoder(clock):
    return OnionEncoder(rng=random.Random(1), clock=clock)


class TestEncode:
    def test_layer_ids_for_every_hop(self, encoder, note, route):
        onion = encoder.encode(note, route)
        assert sorted(onion.layer_ids) == [0, 1, 2]
        assert onion.layer_ids[0] == onion.outer.id
        assert onion.payload_id == note.id
        assert len(set(onion.ids)) == 3

    def test_outer_layer_addressed_to_first_hop(self, encoder, note, route):
        onion = encoder.encode(note, route)
        p_tag = onion.outer.get_tag("p")
        assert p_tag == ["p", route[0].pubkey, route[0].relay]

    def test_expiring_layer_shape(self, encoder, note, route):
        outer = encoder.encode(note, route).outer
        assert outer.kind == EventKind.EXPIRING_ONION
        assert [tag[0] for tag in outer.tags] == ["p", "cashu", "expiration"]
        assert outer.tag_value("expiration") == str(route[0].expiration)

    def test_ephemeral_layer_shape(self, make_pool, resolver, hops, clock, encoder, note):
        route = compose_route(
            make_pool([2]),
            [(hops["bob"].pubkey, 2)],
            resolver,
            config=RouteConfig(expiring_layers=False),
            clock=clock,
        )
        outer = encoder.encode(note, route).outer
        assert outer.kind == EventKind.EPHEMERAL_ONION
        assert outer.get_tag("expiration") is None

    def test_layers_signed_by_distinct_keys(self, encoder, note, route, identities):
        onion = encoder.encode(note, route)
        layers, _ = peel_all(onion.outer, identities)
        signers = {onion.outer.pubkey} | {layer.inner.pubkey for layer in layers[:-1]}
        assert len(signers) == 3
        assert note.pubkey not in signers
        assert verify_event(onion.outer)

    def test_created_at_not_before_now(self, encoder, note, route, identities, clock):
        onion = encoder.encode(note, route)
        layers, _ = peel_all(onion.outer, identities)
        for event in [onion.outer] + [layer.inner for layer in layers[:-1]]:
            assert clock() <= event.created_at <= clock() + 2 * len(route)

    def test_bad_hop_key_fails_whole_encoding(self, encoder, note, make_pool):
        hop = Hop(pubkey="ff" * 32, fee=1, amount=1, token="cashuAe30")
        route = Route(hops=(hop,), change=TokenPool([]))
        with pytest.raises(EncodingFailure):
            encoder.encode(note, route)


class TestPeel:
    def test_round_trip(self, encoder, note, route, identities):
        onion = encoder.encode(note, route)
        layers, payload = peel_all(onion.outer, identities)

        assert payload == note
        assert len(layers) == 3
        assert [layer.inner.id for layer in layers[:-1]] == [
            onion.layer_ids[1],
            onion.layer_ids[2],
        ]

    def test_each_hop_receives_its_token(self, encoder, note, route, identities):
        layers, _ = peel_all(encoder.encode(note, route).outer, identities)
        amounts = [decode_token(layer.token).amount for layer in layers]
        assert amounts == [hop.amount for hop in route]
        assert [layer.expiration for layer in layers] == [hop.expiration for hop in route]

    def test_wrong_hop_cannot_peel(self, encoder, note, route, hops):
        onion = encoder.encode(note, route)
        with pytest.raises(PeelError):
            peel_layer(onion.outer, hops["alice"])

    def test_payload_is_not_a_layer(self, note, sender):
        with pytest.raises(PeelError):
            peel_layer(note, sender)

    def test_encode_onion_helper(self, note, route, identities):
        onion = encode_onion(note, route, rng=random.Random(2))
        _, payload = peel_all(onion.outer, identities)
        assert payload.id == onion.payload_id
