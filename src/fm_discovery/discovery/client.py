"""Service registration and discovery facade.

Usage:
    ```python
    from fm_discovery import DiscoveryClient, DiscoverOptions, RegisterOptions

    client = DiscoveryClient.from_extension("etcd", config={"kumuluzee": {"name": "orders"}})
    await client.connect()
    instance_id = await client.register_service(RegisterOptions(base_url="http://orders:8080"))

    customers_url = await client.discover_service(
        DiscoverOptions(value="customers", version="^1.0.0", access_type="direct")
    )

    await client.close(deregister=True)
    ```
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from fm_discovery.config import DiscoveryConfig, load_registration_settings
from fm_discovery.discovery.registration import RegistrationLoop
from fm_discovery.discovery.resolver import Resolver
from fm_discovery.models import (
    DiscoverOptions,
    Registration,
    RegisterOptions,
    Resolution,
    ServiceIdentity,
)
from fm_discovery.registry.base import Registry
from fm_discovery.registry.factory import create_registry

logger = logging.getLogger(__name__)

ConfigSource = Union[DiscoveryConfig, Mapping[str, Any], None]


def _as_config(config: ConfigSource) -> DiscoveryConfig:
    if isinstance(config, DiscoveryConfig):
        return config
    return DiscoveryConfig(config)


class DiscoveryClient:
    """Registers this service and discovers others through one registry.

    Each registered instance gets its own RegistrationLoop task; discovery
    calls go through a shared Resolver.
    """

    def __init__(
        self,
        registry: Registry,
        config: ConfigSource = None,
        fallback_to_last_known: bool = True,
        log_level: Optional[Union[int, str]] = None,
    ):
        """Initialize discovery client.

        Args:
            registry: Registry backend to use
            config: DiscoveryConfig or a parsed configuration mapping
            fallback_to_last_known: Return the last known address when discovery fails
            log_level: Level for the fm_discovery loggers (e.g. logging.WARNING)
        """
        if log_level is not None:
            logging.getLogger("fm_discovery").setLevel(log_level)

        self.registry = registry
        self.config = _as_config(config)
        self.resolver = Resolver(
            registry, self.config, fallback_to_last_known=fallback_to_last_known
        )
        self._loops: Dict[str, RegistrationLoop] = {}

        logger.info(f"DiscoveryClient initialized with {registry.backend_name} registry")

    @classmethod
    def from_extension(
        cls,
        extension: str,
        config: ConfigSource = None,
        **kwargs,
    ) -> "DiscoveryClient":
        """Create a client for a named extension ("etcd", "consul", "redis", "memory")."""
        discovery_config = _as_config(config)
        registry = create_registry(extension, discovery_config)
        return cls(registry, discovery_config, **kwargs)

    @property
    def registrations(self) -> List[Registration]:
        return [loop.registration for loop in self._loops.values()]

    async def connect(self) -> None:
        """Verify the registry is reachable.

        Raises:
            RegistryError: If the registry stays unreachable after retries
        """
        await self.registry.connect()

    async def register_service(self, options: Optional[RegisterOptions] = None) -> str:
        """Register this service and keep the registration alive in the background.

        Args:
            options: Call-time options overriding configuration

        Returns:
            Generated instance id

        Raises:
            ConfigurationError: If the registration configuration is invalid
            VersionParseError: If the configured version is invalid
        """
        settings = load_registration_settings(self.config, options)

        registration = Registration(
            identity=ServiceIdentity(
                name=settings.name,
                environment=settings.environment,
                version=settings.version,
            ),
            target_url=settings.target_url,
            ttl_seconds=settings.ttl,
            ping_interval_seconds=settings.ping_interval,
            singleton=settings.singleton,
        )
        loop = RegistrationLoop(
            self.registry,
            registration,
            start_retry_delay_ms=settings.start_retry_delay_ms,
            max_retry_delay_ms=settings.max_retry_delay_ms,
        )
        self._loops[registration.instance_id] = loop
        loop.start()

        logger.info(
            f"Registration started for {settings.name} {settings.version} "
            f"in {settings.environment}, id={registration.instance_id}"
        )
        return registration.instance_id

    async def deregister_service(self, instance_id: Optional[str] = None) -> None:
        """Stop renewing and delete registrations from the registry.

        Args:
            instance_id: Registration to remove; all registrations when omitted
        """
        ids = [instance_id] if instance_id else list(self._loops)
        for loop_id in ids:
            loop = self._loops.pop(loop_id, None)
            if loop is None:
                logger.warning(f"No registration with id {loop_id}")
                continue
            await loop.stop(deregister=True)

    async def discover_service(self, options: DiscoverOptions) -> str:
        """Resolve a service to an address.

        Raises:
            DiscoveryError: If the service cannot be resolved and no address is cached
        """
        return await self.resolver.discover(options)

    async def resolve_service(self, options: DiscoverOptions) -> Resolution:
        """Resolve a service, including whether the address is a stale fallback."""
        return await self.resolver.resolve(options)

    async def close(self, deregister: bool = False) -> None:
        """Stop all registration loops and release the registry client.

        Args:
            deregister: Delete registrations instead of letting their leases lapse
        """
        for loop in list(self._loops.values()):
            await loop.stop(deregister=deregister)
        self._loops.clear()
        await self.registry.close()
