"""FaultMaven Discovery Library

Service registration with TTL leases and version-aware service discovery
over etcd, Consul, Redis or an in-process registry.
"""

__version__ = "0.1.0"

# Export errors and models first (no registry dependencies)
from fm_discovery.errors import (
    DiscoveryError,
    ConfigurationError,
    VersionParseError,
    NoMatchingVersion,
    NoUsableAddress,
    RegistryError,
    AlreadyRegisteredConflict,
)
from fm_discovery.models import (
    AccessType, DiscoverOptions, RegisterOptions,
    Registration, ServiceIdentity, DiscoveredInstance, Resolution,
)
from fm_discovery.config import DiscoveryConfig
from fm_discovery.versioning import parse_constraint, parse_version, select_latest

# Export registry backends and the discovery facade
from fm_discovery.registry import (
    Registry,
    RegistryNode,
    InMemoryRegistry,
    EtcdRegistry,
    ConsulRegistry,
    create_registry,
)
from fm_discovery.discovery import (
    DiscoveryClient,
    RegistrationLoop,
    Resolver,
)


# Lazy import for the Redis backend so redis is only loaded when used
def __getattr__(name):
    """Lazy import for RedisRegistry."""
    if name == "RedisRegistry":
        from fm_discovery.registry.redis import RedisRegistry
        return RedisRegistry
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

__all__ = [
    # Errors
    "DiscoveryError", "ConfigurationError", "VersionParseError",
    "NoMatchingVersion", "NoUsableAddress", "RegistryError",
    "AlreadyRegisteredConflict",
    # Models
    "AccessType", "DiscoverOptions", "RegisterOptions",
    "Registration", "ServiceIdentity", "DiscoveredInstance", "Resolution",
    # Configuration and versions
    "DiscoveryConfig", "parse_constraint", "parse_version", "select_latest",
    # Registries (RedisRegistry lazy loaded)
    "Registry", "RegistryNode", "InMemoryRegistry", "EtcdRegistry",
    "ConsulRegistry", "RedisRegistry", "create_registry",
    # Discovery
    "DiscoveryClient",
    "RegistrationLoop",
    "Resolver",
]
