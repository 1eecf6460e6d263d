"""Tests for configuration loading."""

import pytest

from satsonion.config import Config, ConfigError, Contact, DEFAULT_FALLBACK_RELAYS


CONFIG = """
log_level = "debug"

[nostr]
lookup_relays = ["wss://lookup.example"]
fallback_relays = ["wss://fallback.example"]

[route]
expiration_base = 120
expiration_jitter = 0
expiring_layers = false

[wallet]
mints = ["https://mint.test"]
max_funding = 50

[[contacts]]
name = "bob"
pubkey = "%s"
inboxes = ["wss://bob.example"]
"""


def test_missing_file_gives_defaults(tmp_path):
    config = Config.load(tmp_path / "absent.toml")
    assert config.nostr.fallback_relays == DEFAULT_FALLBACK_RELAYS
    assert config.route.expiration_base == 600
    assert config.route.expiration_jitter == 300
    assert config.wallet.min_funding == 2
    assert config.wallet.max_funding == 100
    config.validate()


def test_load(tmp_path):
    pubkey = "AB" * 32
    path = tmp_path / "config.toml"
    path.write_text(CONFIG % pubkey)

    config = Config.load(path)
    config.validate()

    assert config.log_level == "DEBUG"
    assert config.nostr.lookup_relays == ["wss://lookup.example"]
    assert config.nostr.fallback_relays == ["wss://fallback.example"]
    assert config.route.expiration_base == 120
    assert config.route.expiring_layers is False
    assert config.wallet.mints == ["https://mint.test"]
    assert config.wallet.max_funding == 50
    assert config.contacts[0].pubkey == pubkey.lower()
    assert config.contact_name(pubkey.lower()) == "bob"
    assert config.contact_name("cd" * 32) is None


def test_unparseable_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[route\nexpiration_base = ")
    with pytest.raises(ConfigError):
        Config.load(path)


def test_invalid_value(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[route]\nexpiration_base = "soon"\n')
    with pytest.raises(ConfigError):
        Config.load(path)


@pytest.mark.parametrize("mutate", [
    lambda c: setattr(c.route, "expiration_base", 0),
    lambda c: setattr(c.wallet, "max_funding", 1),
    lambda c: c.nostr.fallback_relays.append("https://not-a-relay"),
    lambda c: c.contacts.append(Contact(name="bob", pubkey="zz" * 32)),
])
def test_validate_rejects(mutate):
    config = Config()
    mutate(config)
    with pytest.raises(ValueError):
        config.validate()
