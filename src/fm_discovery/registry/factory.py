"""Create the registry backend selected by name."""

import logging
from typing import Optional

from fm_discovery.config import (
    DEFAULT_CONSUL_HOSTS,
    DEFAULT_ETCD_HOSTS,
    KEY_CONSUL_HOSTS,
    KEY_CONSUL_TOKEN,
    KEY_ETCD_HOSTS,
    DiscoveryConfig,
)
from fm_discovery.errors import ConfigurationError
from fm_discovery.registry.base import Registry

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("etcd", "consul", "redis", "memory")


def create_registry(
    extension: str,
    config: Optional[DiscoveryConfig] = None,
    timeout: float = 5.0,
) -> Registry:
    """Create the registry client for a discovery extension.

    Args:
        extension: "etcd", "consul", "redis" or "memory"
        config: Configuration holding the store addresses
        timeout: Per-request timeout in seconds for network registries

    Returns:
        Registry instance (not yet connected)

    Raises:
        ConfigurationError: If the extension is unknown
    """
    config = config or DiscoveryConfig()
    extension = (extension or "").strip().lower()

    if extension == "etcd":
        from fm_discovery.registry.etcd import EtcdRegistry

        hosts = config.get_str(KEY_ETCD_HOSTS, DEFAULT_ETCD_HOSTS)
        logger.info(f"etcd client address set to: {hosts}")
        return EtcdRegistry(hosts, timeout=timeout)

    if extension == "consul":
        from fm_discovery.registry.consul import ConsulRegistry

        hosts = config.get_str(KEY_CONSUL_HOSTS, DEFAULT_CONSUL_HOSTS)
        logger.info(f"Consul client address set to: {hosts}")
        return ConsulRegistry(hosts, timeout=timeout, token=config.get_str(KEY_CONSUL_TOKEN))

    if extension == "redis":
        from fm_discovery.registry.redis import RedisRegistry, create_redis_client

        return RedisRegistry(create_redis_client(socket_timeout=timeout))

    if extension == "memory":
        from fm_discovery.registry.memory import InMemoryRegistry

        return InMemoryRegistry()

    raise ConfigurationError(
        f"Specified discovery source extension '{extension}' is invalid. "
        f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
    )
