"""End-to-end send tests over the loopback relay network."""

import random

import pytest

from satsonion.config import Contact
from satsonion.crypto.event import EventKind, finalize_event
from satsonion.main import OnionSender
from satsonion.onion.delivery import TraceState
from satsonion.onion.layers import peel_layer
from satsonion.relay.base import PublishFailure
from satsonion.relay.loopback import LoopbackRelayNetwork
from satsonion.wallet.token import decode_token


ONION_KINDS = [int(EventKind.EXPIRING_ONION), int(EventKind.EPHEMERAL_ONION)]


class HopSimulator:
    """Cooperating hop: peels its layer, keeps the token and forwards the rest."""

    def __init__(self, network, identity, inbox):
        self.network = network
        self.identity = identity
        self.inbox = inbox
        self.tokens = []
        network.subscribe_many(
            [inbox],
            [{"kinds": ONION_KINDS, "#p": [identity.pubkey]}],
            self.on_event,
        )

    def on_event(self, event):
        peeled = peel_layer(event, self.identity)
        self.tokens.append(peeled.token)

        inner = peeled.inner
        p_tag = inner.get_tag("p")
        if inner.kind in ONION_KINDS and p_tag and len(p_tag) > 2:
            target = p_tag[2]
        else:
            target = self.inbox
        self.network.publish([target], inner)


def confirm_with(mint):
    def confirm(quote):
        mint.pay(quote.quote)
        return True
    return confirm


@pytest.fixture
def onion_sender(config, sender, network, resolver, mint, clock):
    return OnionSender(
        config, sender, network, resolver, mint=mint, rng=random.Random(5), clock=clock
    )


@pytest.fixture
def selections(hops):
    return [(hops["bob"].pubkey, 5), (hops["alice"].pubkey, 7), (hops["joe"].pubkey, 9)]


def test_note_is_published_through_every_hop(onion_sender, mint, network, hops, selections):
    simulators = [
        HopSimulator(network, key, f"wss://{name}.example") for name, key in hops.items()
    ]

    pool = onion_sender.fund(21, confirm_with(mint))
    result = onion_sender.send("hello world", pool, selections)

    trace = result.tracer.wait(timeout=5)
    assert trace is not None
    assert trace.payload_id == result.note.id
    assert trace.url.startswith(onion_sender.config.nostr.viewer_url + "nevent1")
    assert result.tracer.state is TraceState.CLOSED

    claimed = [decode_token(sim.tokens[0]).amount for sim in simulators]
    assert claimed == [5, 7, 9]
    assert result.change_token is None
    assert result.published_to == ["wss://bob.example"]
    assert any(e.id == result.note.id for e in network.published)


def test_change_token_returned(onion_sender, mint, hops):
    pool = onion_sender.fund(21, confirm_with(mint))
    result = onion_sender.send("hi", pool, [(hops["bob"].pubkey, 5), (hops["alice"].pubkey, 7)])

    assert decode_token(result.change_token).amount == 9
    result.tracer.cancel()


def test_note_signed_by_sender(onion_sender, sender):
    note = onion_sender.build_note("content")
    assert note.pubkey == sender.pubkey
    assert note.kind == EventKind.SHORT_TEXT_NOTE


def test_falls_back_when_inbox_unreachable(config, sender, resolver, mint, hops, selections, clock):
    network = LoopbackRelayNetwork(offline=["wss://bob.example"])
    onion_sender = OnionSender(config, sender, network, resolver, mint=mint, clock=clock)

    pool = onion_sender.fund(21, confirm_with(mint))
    result = onion_sender.send("hi", pool, selections)

    assert result.published_to == ["wss://fallback.example"]
    result.tracer.cancel()


def test_publish_failure_cancels_tracing(config, sender, resolver, mint, selections, clock):
    network = LoopbackRelayNetwork(offline=["wss://bob.example", "wss://fallback.example"])
    onion_sender = OnionSender(config, sender, network, resolver, mint=mint, clock=clock)

    pool = onion_sender.fund(21, confirm_with(mint))
    with pytest.raises(PublishFailure):
        onion_sender.send("hi", pool, selections)
    assert network.subscription_count == 0


def test_outboxes_fall_back_to_config(config, network, resolver, mint, hops, clock):
    onion_sender = OnionSender(config, hops["bob"], network, resolver, mint=mint, clock=clock)
    assert onion_sender.outbox_relays() == ["wss://fallback.example"]


def test_funding_limits(onion_sender, mint):
    with pytest.raises(ValueError):
        onion_sender.fund(1, confirm_with(mint))
    with pytest.raises(ValueError):
        onion_sender.fund(101, confirm_with(mint))


def test_funding_requires_mint(config, sender, network, resolver):
    onion_sender = OnionSender(config, sender, network, resolver)
    with pytest.raises(ValueError):
        onion_sender.fund(21, lambda quote: True)


class BrokenNetwork(LoopbackRelayNetwork):
    """Network whose publish path fails with an unexpected error."""

    def publish_or_raise(self, relays, event):
        raise RuntimeError("socket closed")


def test_unexpected_publish_error_cancels_tracing(config, sender, resolver, mint, selections, clock):
    network = BrokenNetwork()
    onion_sender = OnionSender(config, sender, network, resolver, mint=mint, clock=clock)

    pool = onion_sender.fund(21, confirm_with(mint))
    with pytest.raises(RuntimeError):
        onion_sender.send("hi", pool, selections)
    assert network.subscription_count == 0


def test_from_config_uses_relay_lists_then_contacts(config, sender, network, mint, hops, make_pool, clock):
    config.nostr.lookup_relays = ["wss://lookup.example"]
    config.wallet.mints = [mint.url]
    config.contacts = [
        Contact(name="alice", pubkey=hops["alice"].pubkey, inboxes=["wss://alice-contact.example"]),
        Contact(name="me", pubkey=sender.pubkey, outboxes=["wss://sender-contact.example"]),
    ]
    relay_list = finalize_event(
        kind=int(EventKind.RELAY_LIST),
        created_at=clock(),
        content="",
        tags=[["r", "wss://bob-inbox.example", "read"], ["r", "wss://bob-outbox.example", "write"]],
        identity=hops["bob"],
    )
    network.publish(["wss://lookup.example"], relay_list)

    onion_sender = OnionSender.from_config(config, sender, network, mint=mint, clock=clock)
    route = onion_sender.compose(
        make_pool([8, 4]), [(hops["bob"].pubkey, 8), (hops["alice"].pubkey, 4)]
    )

    assert [hop.relay for hop in route] == ["wss://bob-inbox.example", "wss://alice-contact.example"]
    assert onion_sender.outbox_relays() == ["wss://sender-contact.example"]


def test_from_config_accepts_listed_mint(config, sender, network, mint):
    config.wallet.mints = [mint.url + "/"]
    onion_sender = OnionSender.from_config(config, sender, network, mint=mint)
    assert onion_sender.fund(8, confirm_with(mint)).total == 8


def test_from_config_rejects_unlisted_mint(config, sender, network, mint):
    with pytest.raises(ValueError):
        OnionSender.from_config(config, sender, network, mint=mint)
