"""
sats-onion Onion Layer Construction

Wraps a signed payload event in one encrypted event per hop.

Construction order (inside-out):
    hops[n-1] wraps the payload first, hops[0] wraps last, so the
    outermost event is addressed to the first hop and is the only
    one the sender publishes.

Each layer:
    kind:       20747 (ephemeral) or 2747 (expiring, has expiration tag)
    pubkey:     fresh one-time key, discarded after signing
    tags:       ["p", hop(, relay)], ["cashu", nip44(token)], ["expiration", ts]?
    content:    nip44(json(inner event))

Both the token and the inner event are encrypted under the conversation
key between the one-time key and the hop, so only that hop can claim
the payment and see the next layer.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..crypto.primitives import unix_now
from ..crypto.keys import IdentityKey, OneTimeKey, KeyError as InvalidKeyError
from ..crypto.envelope import get_conversation_key, encrypt, decrypt, EnvelopeError
from ..crypto.event import (
    Event,
    EventError,
    EventKind,
    Tags,
    finalize_event,
    verify_event,
)
from .route import Hop, Route


logger = logging.getLogger("satsonion.onion")


class EncodingFailure(Exception):
    """Exception raised when any layer cannot be built. No partial onion is returned."""
    pass


class PeelError(Exception):
    """Exception raised when a layer cannot be decrypted."""
    pass


@dataclass(frozen=True)
class EncodedOnion:
    """
    Result of encoding.

    `layer_ids[i]` is the id of the layer addressed to hop i. The
    outermost event is layer 0.
    """
    outer: Event
    layer_ids: Dict[int, str]
    payload_id: str

    @property
    def ids(self) -> List[str]:
        """Layer ids in route order."""
        return [self.layer_ids[i] for i in sorted(self.layer_ids)]


@dataclass(frozen=True)
class PeeledLayer:
    """What a hop learns by decrypting its layer."""
    inner: Event
    token: str
    recipient: str
    expiration: Optional[int] = None


def layer_tags(hop: Hop, encrypted_token: str) -> Tags:
    """Tag list for a hop's layer: destination first, then payment, then expiration."""
    if hop.relay:
        tags = [["p", hop.pubkey, hop.relay]]
    else:
        tags = [["p", hop.pubkey]]

    tags.append(["cashu", encrypted_token])

    if hop.expiration:
        tags.append(["expiration", str(hop.expiration)])

    return tags


def layer_kind(hop: Hop) -> int:
    """Expiring kind when the hop declares an expiration, ephemeral otherwise."""
    if hop.expiration:
        return int(EventKind.EXPIRING_ONION)
    return int(EventKind.EPHEMERAL_ONION)


class OnionEncoder:
    """
    Builds onions from a finished route.

    Usage:
        encoder = OnionEncoder(created_at_jitter=2.0)
        onion = encoder.encode(note, route)

        network.publish(first_hop_inboxes, onion.outer)
        tracer = DeliveryTracer(route, onion, ...)
    """

    def __init__(
        self,
        created_at_jitter: float = 2.0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = unix_now,
        key_factory: Callable[[], IdentityKey] = OneTimeKey,
    ):
        """
        Initialize encoder.

        Args:
            created_at_jitter: Max seconds of created_at skew per hop position
            rng: Random source for created_at jitter
            clock: Returns the current Unix time
            key_factory: Produces the one-time key for each layer
        """
        self._jitter = created_at_jitter
        self._rng = rng or random.Random()
        self._clock = clock
        self._key_factory = key_factory

    def _created_at(self, now: int, position: int) -> int:
        return int(round(now + position * self._rng.random() * self._jitter))

    def _wrap(self, onion: Event, hop: Hop, position: int, now: int) -> Event:
        key = self._key_factory()
        conversation_key = get_conversation_key(key, hop.pubkey)

        tags = layer_tags(hop, encrypt(hop.token, conversation_key))
        content = encrypt(onion.to_json(), conversation_key)

        return finalize_event(
            kind=layer_kind(hop),
            created_at=self._created_at(now, position),
            content=content,
            tags=tags,
            identity=key,
        )

    def encode(self, payload: Event, route: Route) -> EncodedOnion:
        """
        Wrap payload for every hop of route.

        Args:
            payload: Signed innermost event (published by the last hop)
            route: Finished route

        Returns:
            EncodedOnion with the outer event and per-hop layer ids

        Raises:
            EncodingFailure: If key agreement, encryption or signing fails
                for any layer
        """
        now = self._clock()
        onion = payload
        layer_ids: Dict[int, str] = {}

        for position in range(len(route.hops) - 1, -1, -1):
            hop = route.hops[position]
            logger.debug(f"Wrapping layer {position} for {hop.pubkey[:8]}")

            try:
                onion = self._wrap(onion, hop, position, now)
            except (EnvelopeError, InvalidKeyError, ValueError) as e:
                raise EncodingFailure(f"Layer {position} for {hop.pubkey[:8]}: {e}")

            layer_ids[position] = onion.id

        logger.info(f"Built {len(layer_ids)}-layer onion {onion.id[:8]}")
        return EncodedOnion(outer=onion, layer_ids=layer_ids, payload_id=payload.id)


def encode_onion(
    payload: Event,
    route: Route,
    created_at_jitter: float = 2.0,
    rng: Optional[random.Random] = None,
) -> EncodedOnion:
    """Encode with a default-configured encoder."""
    return OnionEncoder(created_at_jitter=created_at_jitter, rng=rng).encode(payload, route)


def peel_layer(layer: Event, hop_identity: IdentityKey, verify: bool = True) -> PeeledLayer:
    """
    Decrypt one onion layer with the addressed hop's key.

    The conversation key is derived from the hop's secret and the
    layer's one-time public key.

    Args:
        layer: Onion layer event
        hop_identity: Key of the hop named in the layer's p tag
        verify: Check the id and signature of the inner event

    Returns:
        PeeledLayer with the inner event and the hop's token

    Raises:
        PeelError: If the layer is not addressed to this hop or does not
            decrypt to a valid event
    """
    if layer.kind not in (EventKind.EPHEMERAL_ONION, EventKind.EXPIRING_ONION):
        raise PeelError(f"Event kind {layer.kind} is not an onion layer")

    recipient = layer.tag_value("p")
    if recipient != hop_identity.pubkey:
        raise PeelError("Layer is not addressed to this key")

    encrypted_token = layer.tag_value("cashu")
    if encrypted_token is None:
        raise PeelError("Layer carries no payment")

    try:
        conversation_key = get_conversation_key(hop_identity, layer.pubkey)
        token = decrypt(encrypted_token, conversation_key)
        inner = Event.from_json(decrypt(layer.content, conversation_key))
    except (EnvelopeError, EventError) as e:
        raise PeelError(f"Failed to decrypt layer {layer.id[:8]}: {e}")

    if verify and not verify_event(inner):
        raise PeelError(f"Inner event {inner.id[:8]} failed verification")

    expiration = layer.tag_value("expiration")
    return PeeledLayer(
        inner=inner,
        token=token,
        recipient=recipient,
        expiration=int(expiration) if expiration else None,
    )


def peel_all(outer: Event, identities: Dict[str, IdentityKey]) -> Tuple[List[PeeledLayer], Event]:
    """
    Peel every layer given the keys of all hops.

    Intended for verification: walks the onion the way cooperating hops
    would, without publishing anything.

    Returns:
        (peeled layers in route order, innermost payload)
    """
    peeled = []
    current = outer

    while current.kind in (EventKind.EPHEMERAL_ONION, EventKind.EXPIRING_ONION):
        recipient = current.tag_value("p")
        if recipient not in identities:
            raise PeelError(f"No key for hop {str(recipient)[:8]}")
        layer = peel_layer(current, identities[recipient])
        peeled.append(layer)
        current = layer.inner

    return peeled, current
