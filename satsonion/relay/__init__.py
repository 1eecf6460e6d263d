"""
sats-onion Relay Module

Provides the relay network abstraction:
- base.py: Abstract relay pool, filters and subscriptions
- loopback.py: In-process relay pool for testing and dry runs
- mailbox.py: Inbox/outbox resolution
"""

from .base import (
    BaseRelayNetwork,
    Subscription,
    Filter,
    RelayError,
    PublishFailure,
    event_matches,
    unique_relays,
)

from .loopback import LoopbackRelayNetwork

from .mailbox import (
    Mailboxes,
    BaseMailboxResolver,
    StaticMailboxResolver,
    RelayListResolver,
    parse_relay_list,
)

__all__ = [
    'BaseRelayNetwork',
    'Subscription',
    'Filter',
    'RelayError',
    'PublishFailure',
    'event_matches',
    'unique_relays',
    'LoopbackRelayNetwork',
    'Mailboxes',
    'BaseMailboxResolver',
    'StaticMailboxResolver',
    'RelayListResolver',
    'parse_relay_list',
]
