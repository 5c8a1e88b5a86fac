"""Registry backends

Coordination-store clients exposing put/refresh/get/delete with TTL leases.
"""

from fm_discovery.registry.base import Registry, RegistryNode
from fm_discovery.registry.consul import ConsulRegistry
from fm_discovery.registry.etcd import EtcdRegistry
from fm_discovery.registry.factory import SUPPORTED_EXTENSIONS, create_registry
from fm_discovery.registry.memory import InMemoryRegistry


# Redis client import is deferred so the module only loads when used
def __getattr__(name):
    """Lazy import for the Redis backend."""
    if name == "RedisRegistry":
        from fm_discovery.registry.redis import RedisRegistry
        return RedisRegistry
    if name == "create_redis_client":
        from fm_discovery.registry.redis import create_redis_client
        return create_redis_client
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "Registry",
    "RegistryNode",
    "InMemoryRegistry",
    "EtcdRegistry",
    "ConsulRegistry",
    "RedisRegistry",
    "create_redis_client",
    "create_registry",
    "SUPPORTED_EXTENSIONS",
]
