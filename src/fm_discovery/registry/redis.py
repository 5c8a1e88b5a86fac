"""Redis registry with Sentinel support.

Keys are stored verbatim ("/environments/dev/...") as plain string values;
leases are Redis key expiry (``SET EX`` on put, ``EXPIRE`` on refresh).
Redis has no directories: directory puts are accepted and ignored, and
directories in read results are derived from the key paths.

Supports:
- Standalone Redis (development/self-hosted)
- Redis Sentinel (HA deployments), selected through REDIS_MODE
"""

import logging
import os
import re
from typing import List, Optional, Tuple

from redis.asyncio import Redis
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import RedisError

from fm_discovery.errors import RegistryError
from fm_discovery.keys import normalize
from fm_discovery.registry.base import Registry, RegistryNode
from fm_discovery.utils import service_startup_retry

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _parse_sentinel_hosts(hosts_str: str) -> List[Tuple[str, int]]:
    """Parse comma-separated sentinel host:port string.

    Example:
        >>> _parse_sentinel_hosts("sentinel1:26379,sentinel2")
        [('sentinel1', 26379), ('sentinel2', 26379)]
    """
    sentinels = []

    for host_port in hosts_str.split(","):
        host_port = host_port.strip()
        if not host_port:
            continue

        if ":" in host_port:
            host, port_str = host_port.rsplit(":", 1)
            sentinels.append((host, int(port_str)))
        else:
            # Default Sentinel port
            sentinels.append((host_port, 26379))

    return sentinels


def create_redis_client(
    mode: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    db: Optional[int] = None,
    password: Optional[str] = None,
    sentinel_hosts: Optional[str] = None,
    master_set: Optional[str] = None,
    socket_timeout: float = 5.0,
) -> Redis:
    """Create a Redis client for the registry.

    Explicit arguments take precedence over environment variables.

    Environment Variables:
        REDIS_MODE: "standalone" (default) or "sentinel"
        REDIS_HOST / REDIS_PORT / REDIS_DB / REDIS_PASSWORD: standalone connection
        REDIS_SENTINEL_HOSTS: Comma-separated "host:port" pairs (sentinel mode)
        REDIS_MASTER_SET: Sentinel master set name (default: "mymaster")

    Raises:
        ValueError: If Sentinel mode is configured without sentinel hosts
    """
    mode = (mode or os.getenv("REDIS_MODE", "standalone")).lower()
    db_index = db if db is not None else int(os.getenv("REDIS_DB", "0"))
    password = password or os.getenv("REDIS_PASSWORD")

    if mode == "sentinel":
        sentinel_hosts_str = sentinel_hosts or os.getenv("REDIS_SENTINEL_HOSTS", "")
        master_name = master_set or os.getenv("REDIS_MASTER_SET", "mymaster")
        sentinels = _parse_sentinel_hosts(sentinel_hosts_str)
        if not sentinels:
            raise ValueError(
                "REDIS_SENTINEL_HOSTS environment variable is required for Sentinel mode"
            )

        logger.info(f"Registry using Redis Sentinel: master={master_name}, sentinels={sentinels}")
        sentinel_client = Sentinel(
            sentinels,
            sentinel_kwargs={"password": password} if password else {},
            socket_timeout=socket_timeout,
        )
        return sentinel_client.master_for(
            master_name,
            db=db_index,
            password=password,
            decode_responses=True,
            socket_timeout=socket_timeout,
        )

    redis_host = host or os.getenv("REDIS_HOST", "localhost")
    redis_port = port if port is not None else int(os.getenv("REDIS_PORT", "6379"))
    logger.info(f"Registry using standalone Redis: {redis_host}:{redis_port}/{db_index}")
    return Redis(
        host=redis_host,
        port=redis_port,
        db=db_index,
        password=password,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


class RedisRegistry(Registry):
    """Registry backed by Redis key expiry.

    Usage:
        registry = RedisRegistry(create_redis_client())
        await registry.connect()
    """

    def __init__(self, client: Optional[Redis] = None, scan_count: int = 500):
        self.client = client if client is not None else create_redis_client()
        self.scan_count = scan_count

    @property
    def backend_name(self) -> str:
        return "redis"

    async def _scan(self, pattern: str) -> List[str]:
        return [key async for key in self.client.scan_iter(match=pattern, count=self.scan_count)]

    async def put(
        self,
        key: str,
        value: str = "",
        ttl: Optional[int] = None,
        directory: bool = False,
    ) -> None:
        if directory:
            return
        key = normalize(key)
        try:
            await self.client.set(key, value, ex=ttl if ttl else None)
        except RedisError as e:
            raise RegistryError(f"redis put {key} failed: {e}", key=key) from e

    async def refresh(self, key: str, ttl: int) -> None:
        key = normalize(key)
        try:
            refreshed = await self.client.expire(key, ttl)
        except RedisError as e:
            raise RegistryError(f"redis refresh {key} failed: {e}", key=key) from e
        if not refreshed:
            raise RegistryError(f"redis refresh failed, key not found: {key}", key=key)

    async def get(self, key_prefix: str, recursive: bool = True) -> RegistryNode:
        prefix = normalize(key_prefix)
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        try:
            found = await self._scan(pattern)
            values = await self.client.mget(found) if found else []
        except RedisError as e:
            raise RegistryError(f"redis get {prefix} failed: {e}", key=prefix) from e

        # keys may expire between SCAN and MGET
        items = {key: value for key, value in zip(found, values) if value is not None}
        return RegistryNode.from_flat(prefix, items, recursive=recursive)

    async def delete(self, key: str) -> None:
        key = normalize(key)
        try:
            children = await self._scan(_GLOB_SPECIAL.sub(r"\\\1", key) + "/*")
            await self.client.delete(key, *children)
        except RedisError as e:
            raise RegistryError(f"redis delete {key} failed: {e}", key=key) from e

    @service_startup_retry
    async def connect(self) -> None:
        """Verify Redis connection with retry logic."""
        try:
            await self.client.ping()
        except RedisError as e:
            raise RegistryError(f"redis ping failed: {e}") from e
        logger.info("Redis registry connection verified")

    async def close(self) -> None:
        await self.client.aclose()
