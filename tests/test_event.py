"""Tests for event hashing, Schnorr signatures and NIP-19 entities."""

from dataclasses import replace

import pytest

from satsonion.crypto.event import (
    Event,
    EventError,
    compute_event_id,
    finalize_event,
    serialize_event,
    verify_event,
)
from satsonion.crypto.keys import IdentityKey
from satsonion.crypto.nip19 import (
    Nip19Error,
    nevent_encode,
    normalize_pubkey,
    normalize_secret,
    npub_decode,
    npub_encode,
    nsec_encode,
)
from satsonion.crypto.schnorr import schnorr_sign, schnorr_verify


class TestSchnorr:
    def test_bip340_vector(self):
        secret = (3).to_bytes(32, "big")
        signature = schnorr_sign(bytes(32), secret, aux_rand=bytes(32))
        assert signature.hex().upper() == (
            "E907831F80848D1069A5371B402410364BDF1C5F8307B0084C55F1CE2DCA8215"
            "25F66A4A85EA8B71E482A74F382D2CE5EBEEE8FDB2172F477DF4900D310536C0"
        )

    def test_pubkey_matches_bip340(self):
        key = IdentityKey((3).to_bytes(32, "big"))
        assert key.pubkey.upper() == "F9308A019258C31049344F85F89D5229B531C845836F99B08601F113BCE036F9"

    def test_verify(self):
        key = IdentityKey((7).to_bytes(32, "big"))
        message = bytes(range(32))
        signature = schnorr_sign(message, key.secret)
        assert schnorr_verify(message, key.public_key_bytes, signature)
        assert not schnorr_verify(bytes(32), key.public_key_bytes, signature)


class TestEvent:
    @pytest.fixture
    def event(self, sender):
        return finalize_event(
            kind=1,
            created_at=1700000000,
            content="héllo",
            tags=[["t", "onion"]],
            identity=sender,
        )

    def test_serialization_is_compact_utf8(self):
        data = serialize_event("ab" * 32, 1, 1, [["p", "x"]], "é")
        assert data == ('[0,"' + "ab" * 32 + '",1,1,[["p","x"]],"é"]').encode("utf-8")

    def test_id_and_signature(self, event, sender):
        assert event.pubkey == sender.pubkey
        assert event.id == compute_event_id(event.pubkey, 1700000000, 1, [["t", "onion"]], "héllo")
        assert verify_event(event)

    def test_tampering_detected(self, event):
        assert not verify_event(replace(event, content="hello"))
        assert not verify_event(replace(event, sig="00" * 64))
        assert not verify_event(replace(event, id="00" * 32))

    def test_json_round_trip(self, event):
        assert Event.from_json(event.to_json()) == event

    def test_tags(self, event):
        assert event.tag_value("t") == "onion"
        assert event.tag_value("p") is None

    def test_malformed_json(self):
        with pytest.raises(EventError):
            Event.from_json("[1, 2]")
        with pytest.raises(EventError):
            Event.from_json('{"id": "x"}')


class TestNip19:
    def test_npub_round_trip(self, sender):
        npub = npub_encode(sender.pubkey)
        assert npub.startswith("npub1")
        assert npub_decode(npub) == sender.pubkey
        assert normalize_pubkey(npub) == sender.pubkey

    def test_nsec(self, sender):
        assert normalize_secret(nsec_encode(sender.secret)) == sender.secret
        assert normalize_secret(sender.secret_hex) == sender.secret

    def test_rejects_garbage(self):
        with pytest.raises(Nip19Error):
            normalize_pubkey("not-a-key")

    def test_nevent(self):
        assert nevent_encode("ab" * 32, ["wss://relay.example"]).startswith("nevent1")
