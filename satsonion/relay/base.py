"""
sats-onion Relay Network Base Class

Defines the abstract interface to a pool of Nostr relays.

Design Principles:
- Publish returns the set of relays that accepted the event
- Subscriptions deliver events through a callback and are closed
  explicitly by their owner
- Events seen on several relays are delivered once per subscription
"""

import itertools
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from ..crypto.event import Event


class RelayError(Exception):
    """Exception raised for relay-related errors."""
    pass


class PublishFailure(RelayError):
    """No reachable relay accepted the event."""

    def __init__(self, message: str, relays: Sequence[str] = ()):
        super().__init__(message)
        self.relays = list(relays)


# NIP-01 filter: {"ids": [...], "authors": [...], "kinds": [...], "#p": [...], ...}
Filter = Dict[str, Any]
EventCallback = Callable[[Event], None]


def event_matches(event: Event, filt: Filter) -> bool:
    """
    Check an event against a single NIP-01 filter.

    Supported keys: ids, authors, kinds, since, until and single-letter
    tag filters ("#p", "#e", ...). "limit" is ignored here.
    """
    if "ids" in filt and event.id not in filt["ids"]:
        return False
    if "authors" in filt and event.pubkey not in filt["authors"]:
        return False
    if "kinds" in filt and event.kind not in filt["kinds"]:
        return False
    if "since" in filt and event.created_at < filt["since"]:
        return False
    if "until" in filt and event.created_at > filt["until"]:
        return False

    for key, values in filt.items():
        if key.startswith("#") and len(key) == 2:
            tag_values = {tag[1] for tag in event.tags if len(tag) >= 2 and tag[0] == key[1]}
            if not tag_values.intersection(values):
                return False

    return True


def matches_any(event: Event, filters: Iterable[Filter]) -> bool:
    return any(event_matches(event, f) for f in filters)


def unique_relays(*groups: Iterable[Optional[str]]) -> List[str]:
    """Merge relay lists, dropping blanks and duplicates but keeping order."""
    seen: Set[str] = set()
    merged = []
    for relay in itertools.chain(*groups):
        if relay and relay not in seen:
            seen.add(relay)
            merged.append(relay)
    return merged


class Subscription:
    """
    Handle for a live subscription.

    Deduplicates events by id so a callback sees each event once, even
    when several relays carry it.
    """

    _ids = itertools.count(1)

    def __init__(
        self,
        relays: Sequence[str],
        filters: Sequence[Filter],
        on_event: EventCallback,
        on_close: Optional[Callable[['Subscription'], None]] = None,
    ):
        self.sub_id = f"sub-{next(self._ids)}"
        self.relays = list(relays)
        self.filters = list(filters)
        self._on_event = on_event
        self._on_close = on_close
        self._seen: Set[str] = set()
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: Event) -> bool:
        """
        Pass an event to the callback if it matches and is new.

        Returns:
            True if the callback was invoked
        """
        with self._lock:
            if self._closed or event.id in self._seen:
                return False
            if not matches_any(event, self.filters):
                return False
            self._seen.add(event.id)

        self._on_event(event)
        return True

    def close(self) -> None:
        """Stop delivery. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self._on_close:
            self._on_close(self)


class BaseRelayNetwork(ABC):
    """
    Abstract base class for relay pools.

    All relay network implementations must inherit from this class
    and implement the abstract methods.

    Usage:
        network = ConcreteRelayNetwork()
        sub = network.subscribe_many(relays, [{"ids": ids}], on_event)
        accepted = network.publish(relays, event)
        ...
        sub.close()
    """

    @abstractmethod
    def publish(self, relays: Sequence[str], event: Event) -> Set[str]:
        """
        Send an event to relays.

        Returns:
            Set of relay URLs that accepted the event (may be empty)
        """
        pass

    @abstractmethod
    def subscribe_many(
        self,
        relays: Sequence[str],
        filters: Sequence[Filter],
        on_event: EventCallback,
    ) -> Subscription:
        """Open one subscription across several relays."""
        pass

    @abstractmethod
    def fetch(self, relays: Sequence[str], filt: Filter) -> List[Event]:
        """Query stored events matching a filter."""
        pass

    def get(self, relays: Sequence[str], filt: Filter) -> Optional[Event]:
        """Newest stored event matching a filter, or None."""
        events = self.fetch(relays, filt)
        if not events:
            return None
        return max(events, key=lambda e: e.created_at)

    def publish_or_raise(self, relays: Sequence[str], event: Event) -> Set[str]:
        """
        Publish and require at least one relay to accept.

        Raises:
            PublishFailure: If no relay accepted the event
        """
        if not relays:
            raise PublishFailure("No relays to publish to")

        accepted = self.publish(relays, event)
        if not accepted:
            raise PublishFailure(f"No relay accepted event {event.id}", relays)
        return accepted
