"""Configuration for registration and discovery.

Settings are looked up in layers, the first match wins:

1. call-time options (RegisterOptions / DiscoverOptions)
2. environment variables: the key upper-cased with "." and "-" replaced by
   "_" (``kumuluzee.discovery.ttl`` -> ``KUMULUZEE_DISCOVERY_TTL``)
3. the configuration mapping handed to DiscoveryConfig, either flat dotted
   keys or nested dicts as loaded from a YAML file by the caller
4. library defaults

The key names are shared with the discovery libraries of the other platforms
so one configuration file serves all of them.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fm_discovery.errors import ConfigurationError
from fm_discovery.models import RegisterOptions
from fm_discovery.versioning import parse_version

logger = logging.getLogger(__name__)

KEY_NAME = "kumuluzee.name"
KEY_ENVIRONMENT = "kumuluzee.env.name"
KEY_VERSION = "kumuluzee.version"
KEY_TTL = "kumuluzee.discovery.ttl"
KEY_PING_INTERVAL = "kumuluzee.discovery.ping-interval"
KEY_START_RETRY_DELAY = "kumuluzee.config.start-retry-delay-ms"
KEY_MAX_RETRY_DELAY = "kumuluzee.config.max-retry-delay-ms"
KEY_BASE_URL = "kumuluzee.server.base-url"
KEY_HTTP_ADDRESS = "kumuluzee.server.http.address"
KEY_HTTP_PORT = "kumuluzee.server.http.port"
KEY_ETCD_HOSTS = "kumuluzee.discovery.etcd.hosts"
KEY_CONSUL_HOSTS = "kumuluzee.discovery.consul.hosts"
KEY_CONSUL_TOKEN = "kumuluzee.discovery.consul.token"

DEFAULT_ENVIRONMENT = "dev"
DEFAULT_VERSION = "1.0.0"
DEFAULT_TTL = 30
DEFAULT_PING_INTERVAL = 20
DEFAULT_START_RETRY_DELAY_MS = 500
DEFAULT_MAX_RETRY_DELAY_MS = 900000
DEFAULT_HTTP_ADDRESS = "localhost"
DEFAULT_HTTP_PORT = 9000
DEFAULT_ETCD_HOSTS = "http://localhost:2379"
DEFAULT_CONSUL_HOSTS = "http://localhost:8500"


def _flatten(values: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in values.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(_flatten(value, full_key))
        else:
            flat[full_key] = value
    return flat


class DiscoveryConfig:
    """Layered read-only view over environment variables and a config mapping.

    Example:
        ```python
        config = DiscoveryConfig({"kumuluzee": {"name": "customers"}})
        config.get_str("kumuluzee.name")
        # 'customers', unless KUMULUZEE_NAME is set in the environment
        ```
    """

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize configuration.

        Args:
            values: Parsed configuration (flat dotted keys or nested dicts)
            environ: Environment to read overrides from (default: os.environ)
        """
        self._values = _flatten(values or {})
        self._environ = os.environ if environ is None else environ

    @staticmethod
    def env_var_name(key: str) -> str:
        return key.upper().replace(".", "_").replace("-", "_")

    def get(self, key: str, default: Any = None) -> Any:
        env_value = self._environ.get(self.env_var_name(key))
        if env_value not in (None, ""):
            return env_value
        value = self._values.get(key)
        return default if value is None else value

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.get(key)
        return default if value is None else str(value)

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Configuration key {key} must be an integer, got {value!r}") from e

    @property
    def environment(self) -> str:
        """Environment name used when a call does not specify one."""
        return self.get_str(KEY_ENVIRONMENT, DEFAULT_ENVIRONMENT)


class RegistrationSettings(BaseModel):
    """Resolved settings for registering one service instance."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    environment: str = Field(DEFAULT_ENVIRONMENT, min_length=1)
    version: str = DEFAULT_VERSION
    ttl: int = Field(DEFAULT_TTL, gt=0)
    ping_interval: int = Field(DEFAULT_PING_INTERVAL, gt=0)
    singleton: bool = False
    start_retry_delay_ms: int = Field(DEFAULT_START_RETRY_DELAY_MS, gt=0)
    max_retry_delay_ms: int = Field(DEFAULT_MAX_RETRY_DELAY_MS, gt=0)
    target_url: str = Field(..., min_length=1)


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def load_registration_settings(
    config: DiscoveryConfig,
    options: Optional[RegisterOptions] = None,
) -> RegistrationSettings:
    """Merge call-time options over configuration and defaults.

    Args:
        config: Configuration lookup
        options: Call-time options, taking precedence over configuration

    Returns:
        Validated registration settings

    Raises:
        ConfigurationError: If the service name is missing or a value is invalid
        VersionParseError: If the configured version is not a semantic version
    """
    options = options or RegisterOptions()

    name = _first(options.value, config.get_str(KEY_NAME))
    if not name:
        raise ConfigurationError(
            f"Service name is required: pass RegisterOptions(value=...) or set {KEY_NAME}"
        )

    version = _first(options.version, config.get_str(KEY_VERSION), DEFAULT_VERSION)
    parse_version(version)

    target_url = _first(options.base_url, config.get_str(KEY_BASE_URL))
    if target_url is None:
        address = config.get_str(KEY_HTTP_ADDRESS, DEFAULT_HTTP_ADDRESS)
        port = config.get_int(KEY_HTTP_PORT, DEFAULT_HTTP_PORT)
        target_url = f"http://{address}:{port}"

    try:
        settings = RegistrationSettings(
            name=name,
            environment=_first(options.environment, config.environment),
            version=version,
            ttl=_first(options.ttl, config.get_int(KEY_TTL), DEFAULT_TTL),
            ping_interval=_first(
                options.ping_interval, config.get_int(KEY_PING_INTERVAL), DEFAULT_PING_INTERVAL
            ),
            singleton=options.singleton,
            start_retry_delay_ms=_first(
                options.start_retry_delay_ms,
                config.get_int(KEY_START_RETRY_DELAY),
                DEFAULT_START_RETRY_DELAY_MS,
            ),
            max_retry_delay_ms=_first(
                options.max_retry_delay_ms,
                config.get_int(KEY_MAX_RETRY_DELAY),
                DEFAULT_MAX_RETRY_DELAY_MS,
            ),
            target_url=target_url.rstrip("/"),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid registration configuration: {e}") from e

    if settings.ping_interval >= settings.ttl:
        logger.warning(
            f"ping-interval ({settings.ping_interval}s) is not below ttl ({settings.ttl}s), "
            f"the registration of {settings.name} may expire between refreshes"
        )

    logger.debug(
        f"start-retry-delay-ms={settings.start_retry_delay_ms}, "
        f"max-retry-delay-ms={settings.max_retry_delay_ms}"
    )
    return settings
