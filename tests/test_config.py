"""
Tests for layered configuration and registration settings
"""
import pytest

from fm_discovery.config import (
    DiscoveryConfig,
    KEY_TTL,
    load_registration_settings,
)
from fm_discovery.errors import ConfigurationError, VersionParseError
from fm_discovery.models import RegisterOptions


def test_env_var_name():
    assert DiscoveryConfig.env_var_name("kumuluzee.discovery.ping-interval") == (
        "KUMULUZEE_DISCOVERY_PING_INTERVAL"
    )


def test_nested_and_flat_mappings_are_equivalent():
    nested = DiscoveryConfig({"kumuluzee": {"discovery": {"ttl": 15}}}, environ={})
    flat = DiscoveryConfig({"kumuluzee.discovery.ttl": 15}, environ={})

    assert nested.get_int(KEY_TTL) == flat.get_int(KEY_TTL) == 15


def test_environment_variable_overrides_mapping():
    config = DiscoveryConfig(
        {"kumuluzee": {"discovery": {"ttl": 15}}},
        environ={"KUMULUZEE_DISCOVERY_TTL": "45"},
    )

    assert config.get_int(KEY_TTL) == 45


def test_empty_environment_variable_is_ignored():
    config = DiscoveryConfig({"kumuluzee.env.name": "prod"}, environ={"KUMULUZEE_ENV_NAME": ""})

    assert config.environment == "prod"


def test_environment_defaults_to_dev(config):
    assert config.environment == "dev"


def test_invalid_integer_raises():
    config = DiscoveryConfig({"kumuluzee.discovery.ttl": "soon"}, environ={})

    with pytest.raises(ConfigurationError, match="kumuluzee.discovery.ttl"):
        config.get_int(KEY_TTL)


def test_registration_defaults():
    config = DiscoveryConfig({"kumuluzee": {"name": "customers"}}, environ={})

    settings = load_registration_settings(config)

    assert settings.name == "customers"
    assert settings.environment == "dev"
    assert settings.version == "1.0.0"
    assert settings.ttl == 30
    assert settings.ping_interval == 20
    assert settings.start_retry_delay_ms == 500
    assert settings.max_retry_delay_ms == 900000
    assert settings.target_url == "http://localhost:9000"
    assert not settings.singleton


def test_options_override_environment_and_mapping():
    config = DiscoveryConfig(
        {"kumuluzee": {"name": "customers", "version": "1.0.0", "discovery": {"ttl": 15}}},
        environ={"KUMULUZEE_VERSION": "1.1.0"},
    )

    from_env = load_registration_settings(config)
    from_options = load_registration_settings(
        config, RegisterOptions(value="orders", version="2.0.0", ttl=60, singleton=True)
    )

    assert from_env.version == "1.1.0"
    assert from_env.ttl == 15
    assert from_options.name == "orders"
    assert from_options.version == "2.0.0"
    assert from_options.ttl == 60
    assert from_options.singleton


def test_target_url_from_base_url_or_http_address():
    with_base_url = DiscoveryConfig(
        {"kumuluzee": {"name": "customers", "server": {"base-url": "http://customers:8080/"}}},
        environ={},
    )
    with_address = DiscoveryConfig(
        {"kumuluzee": {"name": "customers", "server": {"http": {"address": "10.0.0.5", "port": 8081}}}},
        environ={},
    )

    assert load_registration_settings(with_base_url).target_url == "http://customers:8080"
    assert load_registration_settings(with_address).target_url == "http://10.0.0.5:8081"
    assert (
        load_registration_settings(with_address, RegisterOptions(base_url="http://lb:80")).target_url
        == "http://lb:80"
    )


def test_missing_service_name_raises(config):
    with pytest.raises(ConfigurationError, match="Service name is required"):
        load_registration_settings(config)


def test_invalid_version_raises(config):
    with pytest.raises(VersionParseError):
        load_registration_settings(config, RegisterOptions(value="customers", version="one"))


def test_non_positive_configured_ttl_raises():
    config = DiscoveryConfig({"kumuluzee": {"name": "customers", "discovery": {"ttl": 0}}}, environ={})

    with pytest.raises(ConfigurationError):
        load_registration_settings(config)


def test_ping_interval_not_below_ttl_warns(caplog):
    config = DiscoveryConfig({"kumuluzee": {"name": "customers"}}, environ={})

    settings = load_registration_settings(config, RegisterOptions(ttl=10, ping_interval=10))

    assert settings.ping_interval == 10
    assert "may expire between refreshes" in caplog.text
