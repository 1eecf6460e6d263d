"""
sats-onion Onion Module

Implements pay-per-hop onion construction and tracing.

Components:
- route.py: Hop selection, fee splitting and expirations
- layers.py: Onion encoding (and peeling, for verification)
- delivery.py: Delivery tracing state machine
"""

from .route import (
    Hop,
    Route,
    RouteComposer,
    RouteError,
    InvalidFee,
    EmptyRoute,
    compose_route,
)

from .layers import (
    OnionEncoder,
    EncodedOnion,
    EncodingFailure,
    PeeledLayer,
    PeelError,
    encode_onion,
    peel_layer,
    peel_all,
)

from .delivery import (
    DeliveryTracer,
    TraceState,
    TraceResult,
    TracingAbandoned,
    EphemeralLayer,
    ExpiringLayer,
    PlaintextNote,
    classify_event,
)

__all__ = [
    # Route
    'Hop',
    'Route',
    'RouteComposer',
    'RouteError',
    'InvalidFee',
    'EmptyRoute',
    'compose_route',
    # Layers
    'OnionEncoder',
    'EncodedOnion',
    'EncodingFailure',
    'PeeledLayer',
    'PeelError',
    'encode_onion',
    'peel_layer',
    'peel_all',
    # Delivery
    'DeliveryTracer',
    'TraceState',
    'TraceResult',
    'TracingAbandoned',
    'EphemeralLayer',
    'ExpiringLayer',
    'PlaintextNote',
    'classify_event',
]
