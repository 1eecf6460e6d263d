"""
sats-onion Delivery Tracing

Watches the network for an onion's layers and its final note.

States:
    WAITING   -> CONFIRMED -> CLOSED
    WAITING   -> CLOSED (cancelled)

Every layer id is known up front, so a single subscription over the
hop relays and the sender's outboxes is enough. A layer showing up
means the previous hop forwarded it; only the payload note completes
the trace. Events may arrive in any order, more than once, or never.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Union

from ..crypto.event import Event, EventKind, verify_event
from ..crypto.nip19 import nevent_encode
from ..relay.base import BaseRelayNetwork, Subscription, unique_relays
from .layers import EncodedOnion
from .route import Hop, Route


logger = logging.getLogger("satsonion.onion")


class TracingAbandoned(Exception):
    """Tracing was cancelled before the note was confirmed. Paid fees are not recovered."""
    pass


class TraceState(Enum):
    """Tracer state."""
    WAITING = "waiting"
    CONFIRMED = "confirmed"
    CLOSED = "closed"


@dataclass(frozen=True)
class EphemeralLayer:
    """Onion layer without expiration (kind 20747)."""
    event: Event
    recipient: Optional[str]


@dataclass(frozen=True)
class ExpiringLayer:
    """Onion layer with an expiration tag (kind 2747)."""
    event: Event
    recipient: Optional[str]
    expiration: Optional[int]


@dataclass(frozen=True)
class PlaintextNote:
    """Anything that is not an onion layer: the published payload."""
    event: Event


TracedEvent = Union[EphemeralLayer, ExpiringLayer, PlaintextNote]


def classify_event(event: Event) -> TracedEvent:
    """Sort an event into the layer/note variants by kind."""
    if event.kind == EventKind.EPHEMERAL_ONION:
        return EphemeralLayer(event=event, recipient=event.tag_value("p"))

    if event.kind == EventKind.EXPIRING_ONION:
        value = event.tag_value("expiration")
        return ExpiringLayer(
            event=event,
            recipient=event.tag_value("p"),
            expiration=int(value) if value and value.isdigit() else None,
        )

    return PlaintextNote(event=event)


@dataclass(frozen=True)
class TraceResult:
    """Outcome of a confirmed trace."""
    payload_id: str
    reference: str           # nevent for the published note
    url: Optional[str]       # viewer link, if configured
    reached: List[int]       # hop indexes seen, in arrival order


# Callback types
ProgressCallback = Callable[[int, Hop], None]
ConfirmedCallback = Callable[[TraceResult], None]


class DeliveryTracer:
    """
    Tracks one onion from publication to the final note.

    Usage:
        tracer = DeliveryTracer(route, onion, network, outboxes)
        tracer.register_progress_callback(lambda i, hop: print(f"reached hop {i}"))
        tracer.start()

        network.publish(first_hop_inboxes, onion.outer)

        result = tracer.wait(timeout=600)
        if result is None:
            ...  # inconclusive, relays may not have propagated yet
    """

    def __init__(
        self,
        route: Route,
        onion: EncodedOnion,
        network: BaseRelayNetwork,
        outbox_relays: Sequence[str] = (),
        viewer_url: Optional[str] = None,
        verify: bool = True,
    ):
        """
        Initialize tracer.

        Args:
            route: Route the onion was built for
            onion: Encoded onion (layer ids and payload id)
            network: Relay network to subscribe on
            outbox_relays: Sender's outbox relays (where the note lands)
            viewer_url: Prefix for a web link to the note
            verify: Drop events whose id or signature do not verify
        """
        self._route = route
        self._onion = onion
        self._network = network
        self._outboxes = list(outbox_relays)
        self._viewer_url = viewer_url
        self._verify = verify

        self._hop_by_layer: Dict[str, int] = {
            layer_id: index for index, layer_id in onion.layer_ids.items()
        }
        self._reached: List[int] = []
        self._reached_set: Set[int] = set()

        self._state = TraceState.WAITING
        self._result: Optional[TraceResult] = None
        self._cancelled = False
        self._subscription: Optional[Subscription] = None

        self._lock = threading.RLock()
        self._done = threading.Event()

        # Callbacks
        self._progress_callbacks: List[ProgressCallback] = []
        self._confirmed_callbacks: List[ConfirmedCallback] = []

    @property
    def state(self) -> TraceState:
        return self._state

    @property
    def result(self) -> Optional[TraceResult]:
        return self._result

    @property
    def reached(self) -> List[int]:
        """Hop indexes seen so far, in arrival order."""
        with self._lock:
            return list(self._reached)

    @property
    def relays(self) -> List[str]:
        """Relays watched: hop relay hints plus sender outboxes."""
        return unique_relays(self._route.relays, self._outboxes)

    @property
    def watched_ids(self) -> List[str]:
        return self._onion.ids + [self._onion.payload_id]

    def register_progress_callback(self, callback: ProgressCallback) -> None:
        """Called with (hop_index, hop) the first time a hop's layer is seen."""
        self._progress_callbacks.append(callback)

    def register_confirmed_callback(self, callback: ConfirmedCallback) -> None:
        """Called once with the result when the note is published."""
        self._confirmed_callbacks.append(callback)

    def start(self) -> None:
        """Open the subscription."""
        with self._lock:
            if self._subscription is not None or self._state is not TraceState.WAITING:
                return

            relays = self.relays
            logger.info(f"Tracing {len(self._route)} hops on {len(relays)} relays")
            subscription = self._network.subscribe_many(
                relays,
                [{"ids": self.watched_ids}],
                self.handle_event,
            )
            self._subscription = subscription
            finished = self._state is not TraceState.WAITING

        # Stored events replayed by subscribe_many may already have
        # completed the trace before the subscription was recorded
        if finished:
            subscription.close()

    def handle_event(self, event: Event) -> None:
        """
        Process an event from the subscription.

        Unknown ids, unverifiable events and events after completion are
        ignored.
        """
        with self._lock:
            if self._state is not TraceState.WAITING:
                return

        if event.id not in self._hop_by_layer and event.id != self._onion.payload_id:
            return

        if self._verify and not verify_event(event):
            logger.warning(f"Ignoring event {event.id[:8]} with bad id or signature")
            return

        traced = classify_event(event)

        if isinstance(traced, (EphemeralLayer, ExpiringLayer)):
            self._handle_layer(traced.event, traced.recipient)
        elif isinstance(traced, PlaintextNote):
            self._handle_note(traced.event)
        else:
            raise TypeError(f"Unhandled traced event {traced!r}")

    def _handle_layer(self, event: Event, recipient: Optional[str]) -> None:
        index = self._hop_by_layer.get(event.id)
        if index is None:
            return

        hop = self._route.hops[index]
        if recipient != hop.pubkey:
            logger.debug(f"Layer {event.id[:8]} addressed to unexpected key")
            return

        with self._lock:
            if index in self._reached_set or self._state is not TraceState.WAITING:
                return
            self._reached_set.add(index)
            self._reached.append(index)

        logger.info(f"Onion reached hop {index} ({hop.pubkey[:8]})")
        for callback in self._progress_callbacks:
            self._run_callback(callback, index, hop)

    def _handle_note(self, event: Event) -> None:
        if event.id != self._onion.payload_id:
            return

        with self._lock:
            if self._state is not TraceState.WAITING:
                return

            reference = nevent_encode(event.id, self._outboxes)
            self._result = TraceResult(
                payload_id=event.id,
                reference=reference,
                url=f"{self._viewer_url}{reference}" if self._viewer_url else None,
                reached=list(self._reached),
            )
            self._state = TraceState.CONFIRMED

        logger.info("Event published!")
        if self._result.url:
            logger.info(self._result.url)

        for callback in self._confirmed_callbacks:
            self._run_callback(callback, self._result)

        self._close()

    def _run_callback(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("Delivery callback failed")

    def _close(self) -> None:
        with self._lock:
            subscription = self._subscription
            self._state = TraceState.CLOSED

        if subscription is not None:
            subscription.close()
        self._done.set()

    def cancel(self) -> None:
        """
        Abandon tracing.

        Any thread blocked in wait() raises TracingAbandoned. Has no
        effect once the note is confirmed.
        """
        with self._lock:
            if self._state is not TraceState.WAITING:
                return
            self._cancelled = True

        logger.info("Tracing cancelled")
        self._close()

    def wait(self, timeout: Optional[float] = None) -> Optional[TraceResult]:
        """
        Block until the note is confirmed.

        Args:
            timeout: Seconds to wait (None = forever)

        Returns:
            TraceResult, or None if the timeout elapsed first. A timeout
            is inconclusive; the subscription stays open.

        Raises:
            TracingAbandoned: If cancel() was called
        """
        if not self._done.wait(timeout):
            return None

        if self._cancelled:
            raise TracingAbandoned(
                f"Tracing cancelled after {len(self._reached)} of {len(self._route)} hops"
            )
        return self._result
