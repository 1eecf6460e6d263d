"""
sats-onion - pay-per-hop onion relaying for Nostr notes

A sender wraps a note in one encrypted Nostr event per hop. Every layer
carries a Cashu token paying that hop to decrypt and republish the next
layer, until the innermost note is published.

This package contains:
- crypto/    : NIP-44 encryption, event signing, key handling, NIP-19
- wallet/    : Cashu proofs, token strings, token pool splitting, mint interface
- relay/     : Relay network interface, loopback network, mailbox resolution
- onion/     : Route composition, onion encoding, delivery tracing
"""

__version__ = "0.1.0"
__author__ = "sats-onion contributors"
