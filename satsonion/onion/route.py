"""
sats-onion Route Composition

Builds the ordered hop list for an onion.

For every hop the sender:
1. Checks the fee against what is left in the pool
2. Picks a relay hint at random from the hop's inboxes
3. Assigns an expiration later than the previous hop's
4. Splits the fee off the pool as a cashu token
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Tuple

from ..crypto.primitives import unix_now
from ..config import RouteConfig
from ..relay.mailbox import BaseMailboxResolver
from ..wallet.pool import TokenPool


logger = logging.getLogger("satsonion.onion")


class RouteError(Exception):
    """Exception raised when a route cannot be built."""
    pass


class InvalidFee(RouteError):
    """Fee is below 1 or above the remaining pool total."""
    pass


class EmptyRoute(RouteError):
    """No hops were added."""
    pass


@dataclass(frozen=True)
class Hop:
    """
    One paid hop.

    `fee` is what the operator asked for; `amount` is what the token
    actually carries.
    """
    pubkey: str
    fee: int
    amount: int
    token: str
    relay: Optional[str] = None
    expiration: Optional[int] = None


@dataclass(frozen=True)
class Route:
    """Ordered, non-empty hop sequence plus leftover funds."""
    hops: Tuple[Hop, ...]
    change: TokenPool = field(compare=False)

    def __post_init__(self):
        if not self.hops:
            raise EmptyRoute("Route has no hops")

    def __len__(self) -> int:
        return len(self.hops)

    def __iter__(self):
        return iter(self.hops)

    def __getitem__(self, index: int) -> Hop:
        return self.hops[index]

    @property
    def total_fees(self) -> int:
        return sum(hop.amount for hop in self.hops)

    @property
    def relays(self) -> Tuple[str, ...]:
        """Relay hints of all hops (hops without a hint are skipped)."""
        return tuple(hop.relay for hop in self.hops if hop.relay)


class RouteComposer:
    """
    Incrementally builds a route from a token pool.

    Usage:
        composer = RouteComposer(pool, resolver, config.route)

        composer.add_hop(bob_pubkey, 5)
        composer.add_hop(alice_pubkey, 7)

        route = composer.finish()
        route.change  # leftover pool
    """

    def __init__(
        self,
        pool: TokenPool,
        resolver: BaseMailboxResolver,
        config: Optional[RouteConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = unix_now,
    ):
        """
        Initialize composer.

        Args:
            pool: Funds for the route (consumed by the first split)
            resolver: Mailbox resolver for relay hints
            config: Timing configuration
            rng: Random source for relay choice and jitter
            clock: Returns the current Unix time
        """
        self._pool = pool
        self._resolver = resolver
        self._config = config or RouteConfig()
        self._rng = rng or random.Random()
        self._hops = []
        self._finished = False

        # Expiration chain starts at the current time
        self._timeout = clock()

    @property
    def remaining(self) -> int:
        """Value left for further hops."""
        return self._pool.total

    @property
    def is_exhausted(self) -> bool:
        return self._pool.total <= 0

    @property
    def hop_count(self) -> int:
        return len(self._hops)

    def _pick_relay(self, pubkey: str) -> Optional[str]:
        inboxes = sorted(self._resolver.resolve(pubkey).inboxes)
        if not inboxes:
            logger.info(f"No inboxes found for {pubkey[:8]}")
            return None

        logger.info(f"Found {len(inboxes)} inboxes for {pubkey[:8]}")
        return self._rng.choice(inboxes)

    def _next_expiration(self) -> Optional[int]:
        if not self._config.expiring_layers:
            return None

        interval = round(
            self._config.expiration_base
            + self._config.expiration_jitter * self._rng.random()
        )
        self._timeout += max(1, interval)
        return self._timeout

    def add_hop(self, pubkey: str, fee: int) -> Hop:
        """
        Append a hop paying fee.

        Args:
            pubkey: Hop's hex public key
            fee: Requested payment

        Returns:
            The new hop

        Raises:
            InvalidFee: If fee is outside [1, remaining]
            RouteError: If the route was already finished
        """
        if self._finished:
            raise RouteError("Route is already finished")

        remaining = self._pool.total
        if not 1 <= fee <= remaining:
            raise InvalidFee(f"Fee {fee} outside 1..{remaining}")

        relay = self._pick_relay(pubkey)
        expiration = self._next_expiration()

        spend, change = self._pool.split(fee)
        self._pool = change

        hop = Hop(
            pubkey=pubkey,
            fee=fee,
            amount=spend.total,
            token=spend.to_token(),
            relay=relay,
            expiration=expiration,
        )
        self._hops.append(hop)

        logger.info(
            f"Hop {len(self._hops) - 1}: {pubkey[:8]} via {relay or 'no relay'} "
            f"({hop.amount} sats, {self._pool.total} left)"
        )
        return hop

    def finish(self) -> Route:
        """
        Freeze the route.

        Raises:
            EmptyRoute: If no hops were added
        """
        if not self._hops:
            raise EmptyRoute("No hops were added to the route")

        self._finished = True
        return Route(hops=tuple(self._hops), change=self._pool)


def compose_route(
    pool: TokenPool,
    selections: Iterable[Tuple[str, int]],
    resolver: BaseMailboxResolver,
    config: Optional[RouteConfig] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], int] = unix_now,
) -> Route:
    """
    Build a route from a stream of (pubkey, fee) selections.

    Stops when the pool is empty or the selections run out. Selections
    can be a lazy iterator (e.g. operator prompts); it is not advanced
    once the pool is exhausted.

    Raises:
        InvalidFee: On the first out-of-range fee
        EmptyRoute: If no hops were selected
    """
    composer = RouteComposer(pool, resolver, config=config, rng=rng, clock=clock)

    for pubkey, fee in selections:
        composer.add_hop(pubkey, fee)
        if composer.is_exhausted:
            break

    return composer.finish()
