"""
sats-onion Send Pipeline

The OnionSender coordinates one send:
- Funding the token pool from a mint
- Composing the route
- Signing the note and encoding the onion
- Starting the tracer and publishing the outer layer

Phases run sequentially. Construction errors abort the send before
anything is published.
"""

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .config import Config
from .crypto.keys import IdentityKey
from .crypto.event import Event, EventKind, finalize_event
from .crypto.primitives import unix_now
from .relay.base import BaseRelayNetwork, PublishFailure
from .relay.mailbox import BaseMailboxResolver, RelayListResolver, StaticMailboxResolver
from .wallet.mint import BaseMint, MintQuote, fund_pool
from .wallet.pool import TokenPool
from .onion.route import Route, compose_route
from .onion.layers import EncodedOnion, OnionEncoder
from .onion.delivery import DeliveryTracer


logger = logging.getLogger("satsonion")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure root logging for command-line use."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


@dataclass
class SendResult:
    """Everything the operator needs after publishing."""
    route: Route
    onion: EncodedOnion
    note: Event
    tracer: DeliveryTracer
    published_to: List[str]
    change_token: Optional[str]


class OnionSender:
    """
    Runs the send pipeline for one identity.

    Usage:
        sender = OnionSender.from_config(config, identity, network, mint=mint)

        pool = sender.fund(21, confirm_paid=ask_operator)
        result = sender.send("hello", pool, [(bob, 5), (alice, 7), (joe, 9)])
        trace = result.tracer.wait(timeout=600)
    """

    def __init__(
        self,
        config: Config,
        identity: IdentityKey,
        network: BaseRelayNetwork,
        resolver: BaseMailboxResolver,
        mint: Optional[BaseMint] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = unix_now,
    ):
        """
        Initialize sender.

        Args:
            config: Loaded configuration
            identity: Key that signs the note
            network: Relay network for publish and tracing
            resolver: Mailbox resolver
            mint: Mint client used for funding and exact splits
            rng: Random source for relay choice and timing jitter
            clock: Returns the current Unix time
        """
        self.config = config
        self._identity = identity
        self._network = network
        self._resolver = resolver
        self._mint = mint
        self._rng = rng or random.Random()
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: Config,
        identity: IdentityKey,
        network: BaseRelayNetwork,
        mint: Optional[BaseMint] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = unix_now,
    ) -> "OnionSender":
        """
        Build a sender wired the way the config describes.

        Mailboxes come from NIP-65 relay lists on the lookup relays,
        with configured contacts used for anyone who has not published
        one.

        Raises:
            ValueError: If the mint is not one of the configured mints
        """
        if mint is not None:
            allowed = [url.rstrip("/") for url in config.wallet.mints]
            if mint.url not in allowed:
                raise ValueError(f"Mint {mint.url} is not in the configured mint list")

        contacts = StaticMailboxResolver()
        for contact in config.contacts:
            contacts.add(contact.pubkey, contact.inboxes, contact.outboxes)

        resolver = RelayListResolver(network, config.nostr.lookup_relays, fallback=contacts)
        return cls(config, identity, network, resolver, mint=mint, rng=rng, clock=clock)

    def _name(self, pubkey: str) -> str:
        return self.config.contact_name(pubkey) or pubkey[:8]

    def fund(self, amount: int, confirm_paid: Callable[[MintQuote], bool]) -> TokenPool:
        """
        Mint a fresh pool.

        Raises:
            ValueError: If amount is outside the configured funding range
            PaymentNotConfirmed: If the invoice is not paid
        """
        if self._mint is None:
            raise ValueError("No mint configured")

        wallet = self.config.wallet
        if not wallet.min_funding <= amount <= wallet.max_funding:
            raise ValueError(
                f"Funding must be between {wallet.min_funding} and {wallet.max_funding}"
            )

        return fund_pool(self._mint, amount, confirm_paid)

    def compose(self, pool: TokenPool, selections: Iterable[Tuple[str, int]]) -> Route:
        """Build a route; the pool is consumed."""
        return compose_route(
            pool,
            selections,
            self._resolver,
            config=self.config.route,
            rng=self._rng,
            clock=self._clock,
        )

    def build_note(self, content: str) -> Event:
        """Sign the short text note the last hop will publish."""
        return finalize_event(
            kind=int(EventKind.SHORT_TEXT_NOTE),
            created_at=self._clock(),
            content=content,
            tags=[],
            identity=self._identity,
        )

    def encode(self, note: Event, route: Route) -> EncodedOnion:
        encoder = OnionEncoder(
            created_at_jitter=self.config.route.created_at_jitter,
            rng=self._rng,
            clock=self._clock,
        )
        return encoder.encode(note, route)

    def outbox_relays(self) -> List[str]:
        """Sender's outboxes, or the fallback relays if none are known."""
        outboxes = list(self._resolver.resolve(self._identity.pubkey).outboxes)
        return outboxes or list(self.config.nostr.fallback_relays)

    def trace(self, route: Route, onion: EncodedOnion, outboxes: Sequence[str]) -> DeliveryTracer:
        """Create and start a tracer for an onion."""
        tracer = DeliveryTracer(
            route,
            onion,
            self._network,
            outbox_relays=outboxes,
            viewer_url=self.config.nostr.viewer_url,
        )
        tracer.register_progress_callback(
            lambda index, hop: logger.info(f"Onion reached {self._name(hop.pubkey)}")
        )
        tracer.start()
        return tracer

    def publish(self, onion: EncodedOnion, route: Route) -> List[str]:
        """
        Publish the outer layer to the first hop's inboxes.

        Falls back to the configured fallback relays when the hop has no
        inboxes or none of them accept the event.

        Raises:
            PublishFailure: If no relay accepted the event
        """
        first = route.hops[0]
        logger.info(f"Fetching relays for first hop {self._name(first.pubkey)}...")
        inboxes = list(self._resolver.resolve(first.pubkey).inboxes)
        fallback = list(self.config.nostr.fallback_relays)

        attempts = [relays for relays in (inboxes, fallback) if relays]
        if inboxes == fallback:
            attempts = attempts[:1]

        last_error: Optional[PublishFailure] = None
        for relays in attempts:
            logger.info(f"Publishing to {len(relays)} relays")
            try:
                accepted = self._network.publish_or_raise(relays, onion.outer)
            except PublishFailure as e:
                logger.warning(f"Publish failed: {e}")
                last_error = e
                continue

            logger.info(f"Published onion {onion.outer.id}")
            return sorted(accepted)

        raise last_error or PublishFailure("No relays available for the first hop")

    def send(
        self,
        content: str,
        pool: TokenPool,
        selections: Iterable[Tuple[str, int]],
    ) -> SendResult:
        """
        Run the whole pipeline after funding.

        The tracer is started before publishing so no layer is missed.
        If publishing raises, the tracer is cancelled before re-raising.
        """
        route = self.compose(pool, selections)

        logger.info("Route:")
        for index, hop in enumerate(route):
            logger.info(f"{index}: {self._name(hop.pubkey)} {hop.relay} ({hop.amount} sats)")
        logger.info(f"{len(route)}: Publish")

        note = self.build_note(content)
        onion = self.encode(note, route)

        outboxes = self.outbox_relays()
        tracer = self.trace(route, onion, outboxes)

        try:
            published_to = self.publish(onion, route)
        except Exception:
            tracer.cancel()
            raise

        change_token = None
        if not route.change.is_empty:
            change_token = route.change.to_token()
            logger.info(f"{route.change.total} sats left over in change token")

        logger.info("Waiting for note to be published...")
        return SendResult(
            route=route,
            onion=onion,
            note=note,
            tracer=tracer,
            published_to=published_to,
            change_token=change_token,
        )
