"""
sats-onion Loopback Relay Network

A virtual relay pool held entirely in process.

Useful for:
- Unit testing
- Simulating hops republishing layers
- Offline dry runs without touching real relays

Behavior follows relay conventions:
- Ephemeral kinds (20000-29999) reach live subscriptions but are not stored
- Events with an expiration tag in the past are neither stored nor served
- Relays can be marked offline to simulate publish failures
"""

import logging
import threading
import time
from typing import Dict, List, Optional, Sequence, Set

from ..crypto.event import Event
from .base import (
    BaseRelayNetwork,
    EventCallback,
    Filter,
    Subscription,
    event_matches,
)


logger = logging.getLogger("satsonion.relay")


EPHEMERAL_KIND_MIN = 20000
EPHEMERAL_KIND_MAX = 29999


def is_ephemeral(kind: int) -> bool:
    return EPHEMERAL_KIND_MIN <= kind <= EPHEMERAL_KIND_MAX


def is_expired(event: Event, now: Optional[float] = None) -> bool:
    """True if the event carries an expiration tag in the past."""
    value = event.tag_value("expiration")
    if value is None:
        return False
    try:
        expiration = int(value)
    except ValueError:
        return False
    return expiration <= (now if now is not None else time.time())


class LoopbackRelayNetwork(BaseRelayNetwork):
    """
    In-process relay pool.

    Usage:
        network = LoopbackRelayNetwork()

        received = []
        sub = network.subscribe_many(["wss://a"], [{"kinds": [1]}], received.append)

        network.publish(["wss://a"], note)
        assert received == [note]
    """

    def __init__(self, offline: Optional[Sequence[str]] = None):
        """
        Initialize loopback network.

        Args:
            offline: Relay URLs that refuse every publish
        """
        self._store: Dict[str, Dict[str, Event]] = {}
        self._subscriptions: List[Subscription] = []
        self._offline: Set[str] = set(offline or ())
        self._lock = threading.RLock()

        # Statistics
        self.published: List[Event] = []

    def set_offline(self, relay: str, offline: bool = True) -> None:
        with self._lock:
            if offline:
                self._offline.add(relay)
            else:
                self._offline.discard(relay)

    def publish(self, relays: Sequence[str], event: Event) -> Set[str]:
        """Store the event on every online relay and fan out to subscriptions."""
        accepted: Set[str] = set()

        with self._lock:
            for relay in relays:
                if relay in self._offline:
                    logger.debug(f"{relay} is offline, dropping {event.id[:8]}")
                    continue
                if is_expired(event):
                    continue
                accepted.add(relay)
                if not is_ephemeral(event.kind):
                    self._store.setdefault(relay, {})[event.id] = event

            if accepted:
                self.published.append(event)
            targets = [
                sub for sub in self._subscriptions
                if not sub.closed and accepted.intersection(sub.relays)
            ]

        # Deliver outside the lock so callbacks can publish again
        for sub in targets:
            sub.deliver(event)

        return accepted

    def subscribe_many(
        self,
        relays: Sequence[str],
        filters: Sequence[Filter],
        on_event: EventCallback,
    ) -> Subscription:
        """Subscribe and replay matching stored events."""
        sub = Subscription(relays, filters, on_event, on_close=self._remove)

        with self._lock:
            self._subscriptions.append(sub)
            backlog = [
                event
                for relay in relays
                for event in self._store.get(relay, {}).values()
                if not is_expired(event)
            ]

        for event in sorted(backlog, key=lambda e: e.created_at):
            sub.deliver(event)

        return sub

    def fetch(self, relays: Sequence[str], filt: Filter) -> List[Event]:
        with self._lock:
            found: Dict[str, Event] = {}
            for relay in relays:
                if relay in self._offline:
                    continue
                for event in self._store.get(relay, {}).values():
                    if not is_expired(event) and event_matches(event, filt):
                        found[event.id] = event

        events = sorted(found.values(), key=lambda e: e.created_at, reverse=True)
        limit = filt.get("limit")
        return events[:limit] if limit else events

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
