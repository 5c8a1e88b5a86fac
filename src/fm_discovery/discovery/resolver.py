"""Version-aware resolution of service names to addresses.

One discovery call reads every version registered under a service name,
keeps the instances at the highest version matching the requested
constraint, and picks one of them at random.
"""

import logging
import random
import threading
from typing import Dict, List, Optional, Tuple

from semver import Version

from fm_discovery import keys
from fm_discovery.config import DiscoveryConfig
from fm_discovery.errors import (
    NoMatchingVersion,
    NoUsableAddress,
    RegistryError,
    VersionParseError,
)
from fm_discovery.models import AccessType, DiscoveredInstance, DiscoverOptions, Resolution
from fm_discovery.registry.base import Registry, RegistryNode
from fm_discovery.versioning import ANY_VERSION, parse_constraint, parse_version, select_latest

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str, str]


class LastKnownAddressCache:
    """Last successfully resolved address per discovery query."""

    def __init__(self):
        self._addresses: Dict[CacheKey, str] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[str]:
        with self._lock:
            return self._addresses.get(key)

    def set(self, key: CacheKey, address: str) -> None:
        with self._lock:
            self._addresses[key] = address

    def clear(self) -> None:
        with self._lock:
            self._addresses.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._addresses)


class Resolver:
    """Resolves DiscoverOptions to a service address.

    Failures are raised to the caller as typed errors; there is no retry.
    With ``fallback_to_last_known`` a failed lookup returns the previous
    address for the same query instead, marked stale.

    Usage:
        resolver = Resolver(registry, config)
        url = await resolver.discover(DiscoverOptions(value="customers", version="^1.0.0"))
    """

    def __init__(
        self,
        registry: Registry,
        config: Optional[DiscoveryConfig] = None,
        fallback_to_last_known: bool = True,
        rng: Optional[random.Random] = None,
    ):
        """Initialize resolver.

        Args:
            registry: Registry to query
            config: Configuration providing the default environment
            fallback_to_last_known: Return the last known address when a lookup fails
            rng: Random source for instance selection
        """
        self.registry = registry
        self.config = config or DiscoveryConfig()
        self.fallback_to_last_known = fallback_to_last_known
        self.last_known = LastKnownAddressCache()
        self._rng = rng or random.Random()

    def _with_defaults(self, options: DiscoverOptions) -> DiscoverOptions:
        return options.model_copy(
            update={
                "environment": options.environment or self.config.environment,
                "version": options.version or ANY_VERSION,
                "access_type": options.access_type or AccessType.GATEWAY,
            }
        )

    async def list_instances(self, name: str, environment: str) -> List[DiscoveredInstance]:
        """Read every instance of a service across all registered versions.

        Version directories whose name is not a valid version are skipped
        with a warning. Disabled instances and instances whose url key is
        gone (an expired lease) are left out.

        Raises:
            RegistryError: If the registry query fails
        """
        tree = await self.registry.get(keys.service_key(environment, name), recursive=True)
        instances = []

        for version_node in tree.nodes:
            if not version_node.dir:
                continue
            try:
                version = parse_version(version_node.name)
            except VersionParseError as e:
                logger.warning(f"Skipping instances of {name} with invalid version tag: {e}")
                continue

            gateway_url = version_node.child_value(keys.GATEWAY_URL_KEY) or ""
            instances.extend(self._read_instances(version_node, version, gateway_url))

        return instances

    @staticmethod
    def _read_instances(
        version_node: RegistryNode, version: Version, gateway_url: str
    ) -> List[DiscoveredInstance]:
        instances_node = version_node.child(keys.INSTANCES_DIR)
        if instances_node is None:
            return []

        found = []
        for node in instances_node.nodes:
            if not node.dir:
                continue
            url = node.child_value(keys.URL_KEY)
            if url is None:
                # lease lapsed, only the parent directory is left
                logger.debug(f"Skipping instance {node.name} of version {version} without url")
                continue
            if node.child_value(keys.STATUS_KEY) == keys.STATUS_DISABLED:
                continue
            found.append(
                DiscoveredInstance(
                    id=node.name,
                    version=version,
                    direct_url=url,
                    gateway_url=gateway_url,
                )
            )
        return found

    async def _lookup(self, options: DiscoverOptions) -> Resolution:
        constraint = parse_constraint(options.version)
        instances = await self.list_instances(options.value, options.environment)

        candidates = select_latest(instances, constraint)
        instance = self._rng.choice(candidates)

        if options.access_type == AccessType.GATEWAY and instance.gateway_url:
            address = instance.gateway_url
        elif instance.direct_url:
            address = instance.direct_url
        else:
            raise NoUsableAddress(f"No service found (no service with URL) for {options.value}")

        logger.debug(
            f"Resolved {options.value} ({options.version}) -> {address} "
            f"[instance={instance.id} version={instance.version}]"
        )
        return Resolution(address=address, instance=instance)

    async def resolve(self, options: DiscoverOptions) -> Resolution:
        """Resolve a service, returning the address with its provenance.

        Raises:
            VersionParseError: If the version constraint is malformed
            NoMatchingVersion: If no instance matches (and nothing is cached)
            NoUsableAddress: If the picked instance has no URL (and nothing is cached)
            RegistryError: If the registry is unreachable (and nothing is cached)
        """
        options = self._with_defaults(options)
        cache_key = (
            options.environment,
            options.value,
            options.version,
            options.access_type.value,
        )

        try:
            resolution = await self._lookup(options)
        except (RegistryError, NoMatchingVersion, NoUsableAddress) as e:
            cached = self.last_known.get(cache_key) if self.fallback_to_last_known else None
            if cached is None:
                raise
            logger.warning(f"Discovery of {options.value} failed ({e}), using last known address {cached}")
            return Resolution(address=cached, stale=True, error=e)

        self.last_known.set(cache_key, resolution.address)
        return resolution

    async def discover(self, options: DiscoverOptions) -> str:
        """Resolve a service to an address string.

        Raises:
            DiscoveryError: See ``resolve``
        """
        resolution = await self.resolve(options)
        return resolution.address
