"""onionctl - sats-onion command-line tool."""
