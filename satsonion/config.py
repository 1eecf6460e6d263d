"""
sats-onion Configuration Management

Handles loading and validation of configuration from a TOML file.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

import toml

from .crypto.keys import is_hex_key


# Default configuration path
DEFAULT_CONFIG_PATH = Path("~/.config/sats-onion/config.toml").expanduser()

DEFAULT_LOOKUP_RELAYS = ["wss://purplepag.es"]
DEFAULT_FALLBACK_RELAYS = ["wss://nostrue.com"]
DEFAULT_VIEWER_URL = "https://nostrudel.ninja/#/l/"

DEFAULT_MINTS = [
    "https://mint.minibits.cash/Bitcoin",
    "https://stablenut.umint.cash",
    "https://8333.space:3338",
]


class ConfigError(Exception):
    """Exception raised when a config file cannot be read."""
    pass


@dataclass
class NostrConfig:
    """Relay configuration."""
    lookup_relays: List[str] = field(default_factory=lambda: list(DEFAULT_LOOKUP_RELAYS))
    fallback_relays: List[str] = field(default_factory=lambda: list(DEFAULT_FALLBACK_RELAYS))
    viewer_url: str = DEFAULT_VIEWER_URL


@dataclass
class RouteConfig:
    """Route timing configuration."""
    expiration_base: int = 600  # seconds added per hop
    expiration_jitter: int = 300  # random extra seconds per hop
    expiring_layers: bool = True  # False = ephemeral layers without expiration
    created_at_jitter: float = 2.0  # max seconds of created_at skew per layer position


@dataclass
class WalletConfig:
    """Wallet configuration."""
    mints: List[str] = field(default_factory=lambda: list(DEFAULT_MINTS))
    min_funding: int = 2  # sats
    max_funding: int = 100  # sats


@dataclass
class Contact:
    """Known hop identity."""
    name: str
    pubkey: str
    inboxes: List[str] = field(default_factory=list)
    outboxes: List[str] = field(default_factory=list)


@dataclass
class Config:
    """
    Complete sats-onion configuration.
    """
    # Sub-configurations
    nostr: NostrConfig = field(default_factory=NostrConfig)
    route: RouteConfig = field(default_factory=RouteConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    contacts: List[Contact] = field(default_factory=list)

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from file.

        Args:
            config_path: Path to config file (default: ~/.config/sats-onion/config.toml)

        Returns:
            Loaded configuration (defaults if the file does not exist)

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        config = cls()
        config.config_path = path

        if not path.exists():
            return config

        try:
            data = toml.load(path)
        except (OSError, toml.TomlDecodeError) as e:
            raise ConfigError(f"Failed to read {path}: {e}")

        try:
            config._apply_dict(data)
        except (TypeError, ValueError, KeyError) as e:
            raise ConfigError(f"Invalid value in {path}: {e}")

        return config

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary data to config."""
        # Top-level settings
        if "log_level" in data:
            self.log_level = str(data["log_level"]).upper()
        if "log_file" in data:
            self.log_file = Path(data["log_file"])

        # Nostr config
        if "nostr" in data:
            n = data["nostr"]
            if "lookup_relays" in n:
                self.nostr.lookup_relays = [str(r) for r in n["lookup_relays"]]
            if "fallback_relays" in n:
                self.nostr.fallback_relays = [str(r) for r in n["fallback_relays"]]
            if "viewer_url" in n:
                self.nostr.viewer_url = str(n["viewer_url"])

        # Route config
        if "route" in data:
            r = data["route"]
            if "expiration_base" in r:
                self.route.expiration_base = int(r["expiration_base"])
            if "expiration_jitter" in r:
                self.route.expiration_jitter = int(r["expiration_jitter"])
            if "expiring_layers" in r:
                self.route.expiring_layers = bool(r["expiring_layers"])
            if "created_at_jitter" in r:
                self.route.created_at_jitter = float(r["created_at_jitter"])

        # Wallet config
        if "wallet" in data:
            w = data["wallet"]
            if "mints" in w:
                self.wallet.mints = [str(m) for m in w["mints"]]
            if "min_funding" in w:
                self.wallet.min_funding = int(w["min_funding"])
            if "max_funding" in w:
                self.wallet.max_funding = int(w["max_funding"])

        # Contacts
        if "contacts" in data:
            self.contacts = [
                Contact(
                    name=str(c["name"]),
                    pubkey=str(c["pubkey"]).lower(),
                    inboxes=[str(u) for u in c.get("inboxes", [])],
                    outboxes=[str(u) for u in c.get("outboxes", [])],
                )
                for c in data["contacts"]
            ]

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.route.expiration_base < 1:
            raise ValueError(f"Invalid expiration base: {self.route.expiration_base}")

        if self.route.expiration_jitter < 0:
            raise ValueError(f"Invalid expiration jitter: {self.route.expiration_jitter}")

        if self.route.created_at_jitter < 0:
            raise ValueError(f"Invalid created_at jitter: {self.route.created_at_jitter}")

        if self.wallet.min_funding < 1 or self.wallet.max_funding < self.wallet.min_funding:
            raise ValueError(
                f"Invalid funding range: {self.wallet.min_funding}-{self.wallet.max_funding}"
            )

        for relay in self.nostr.lookup_relays + self.nostr.fallback_relays:
            if not relay.startswith(("ws://", "wss://")):
                raise ValueError(f"Invalid relay URL: {relay}")

        for contact in self.contacts:
            if not is_hex_key(contact.pubkey):
                raise ValueError(f"Invalid pubkey for contact {contact.name}")

    def contact_name(self, pubkey: str) -> Optional[str]:
        """Display name for a pubkey, if it is a known contact."""
        for contact in self.contacts:
            if contact.pubkey == pubkey:
                return contact.name
        return None
