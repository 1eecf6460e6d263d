"""
sats-onion Mailbox Resolution

Maps an identity to its inbox (read) and outbox (write) relays.

Sources:
- StaticMailboxResolver: relays listed in the local config
- RelayListResolver: NIP-65 relay list (kind 10002) fetched from
  lookup relays

NIP-65 "r" tags:
    ["r", url]           -> inbox and outbox
    ["r", url, "read"]   -> inbox only
    ["r", url, "write"]  -> outbox only
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence, Tuple

from ..crypto.event import Event, EventKind
from .base import BaseRelayNetwork, unique_relays


logger = logging.getLogger("satsonion.relay")


@dataclass(frozen=True)
class Mailboxes:
    """Inbox and outbox relays for one identity (either may be empty)."""
    inboxes: Tuple[str, ...] = field(default_factory=tuple)
    outboxes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.inboxes and not self.outboxes


def normalize_relay_url(url: str) -> str:
    """Lowercase scheme/host and drop a trailing slash."""
    url = url.strip()
    if "://" in url:
        scheme, rest = url.split("://", 1)
        host, sep, path = rest.partition("/")
        url = f"{scheme.lower()}://{host.lower()}{sep}{path}"
    return url.rstrip("/")


def parse_relay_list(event: Event) -> Mailboxes:
    """Extract mailboxes from a NIP-65 relay list event."""
    inboxes = []
    outboxes = []

    for tag in event.tags:
        if len(tag) < 2 or tag[0] != "r":
            continue
        url = normalize_relay_url(tag[1])
        if not url.startswith(("ws://", "wss://")):
            continue

        marker = tag[2] if len(tag) > 2 else None
        if marker in (None, "read"):
            inboxes.append(url)
        if marker in (None, "write"):
            outboxes.append(url)

    return Mailboxes(
        inboxes=tuple(unique_relays(inboxes)),
        outboxes=tuple(unique_relays(outboxes)),
    )


class BaseMailboxResolver(ABC):
    """Abstract mailbox resolver."""

    @abstractmethod
    def resolve(self, pubkey: str) -> Mailboxes:
        """Return mailboxes for pubkey (empty when unknown)."""
        pass


class StaticMailboxResolver(BaseMailboxResolver):
    """
    Resolver backed by a fixed table.

    Usage:
        resolver = StaticMailboxResolver({
            alice_pubkey: Mailboxes(inboxes=("wss://relay.example",)),
        })
    """

    def __init__(self, table: Optional[Dict[str, Mailboxes]] = None):
        self._table: Dict[str, Mailboxes] = dict(table or {})

    def add(self, pubkey: str, inboxes: Iterable[str] = (), outboxes: Iterable[str] = ()) -> None:
        self._table[pubkey] = Mailboxes(
            inboxes=tuple(unique_relays(normalize_relay_url(u) for u in inboxes)),
            outboxes=tuple(unique_relays(normalize_relay_url(u) for u in outboxes)),
        )

    def resolve(self, pubkey: str) -> Mailboxes:
        return self._table.get(pubkey, Mailboxes())


class RelayListResolver(BaseMailboxResolver):
    """
    Resolver that looks up NIP-65 relay lists on lookup relays.

    Results are cached per pubkey for the lifetime of the resolver.
    """

    def __init__(
        self,
        network: BaseRelayNetwork,
        lookup_relays: Sequence[str],
        fallback: Optional[BaseMailboxResolver] = None,
    ):
        """
        Initialize resolver.

        Args:
            network: Relay network used for queries
            lookup_relays: Relays that index relay lists (e.g. purplepag.es)
            fallback: Resolver consulted when no relay list is found
        """
        self._network = network
        self._lookup_relays = list(lookup_relays)
        self._fallback = fallback
        self._cache: Dict[str, Mailboxes] = {}

    def resolve(self, pubkey: str) -> Mailboxes:
        if pubkey in self._cache:
            return self._cache[pubkey]

        event = self._network.get(
            self._lookup_relays,
            {"kinds": [int(EventKind.RELAY_LIST)], "authors": [pubkey]},
        )

        if event is not None:
            mailboxes = parse_relay_list(event)
        elif self._fallback is not None:
            mailboxes = self._fallback.resolve(pubkey)
        else:
            mailboxes = Mailboxes()

        logger.debug(
            f"Mailboxes for {pubkey[:8]}: {len(mailboxes.inboxes)} inboxes, "
            f"{len(mailboxes.outboxes)} outboxes"
        )
        self._cache[pubkey] = mailboxes
        return mailboxes
