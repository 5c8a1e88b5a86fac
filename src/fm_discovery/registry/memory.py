"""In-process registry for development and tests.

Keys expire on their TTL like in a real coordination store, measured with an
injectable monotonic clock.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

from fm_discovery.errors import RegistryError
from fm_discovery.keys import normalize
from fm_discovery.registry.base import Registry, RegistryNode

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: str
    expires_at: Optional[float] = None
    ttl: Optional[int] = None


class InMemoryRegistry(Registry):
    """Registry backed by a dict, shared by everything holding the instance.

    Usage:
        registry = InMemoryRegistry()
        await registry.put("/environments/dev/services/foo/1.0.0/instances/a/url",
                           "http://localhost:8080", ttl=30)
        tree = await registry.get("/environments/dev/services/foo")
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._directories: Dict[str, _Entry] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    def _purge_expired(self) -> None:
        now = self._clock()
        for store in (self._entries, self._directories):
            expired = [
                key for key, entry in store.items()
                if entry.expires_at is not None and entry.expires_at <= now
            ]
            for key in expired:
                logger.debug(f"Key expired: {key}")
                store.pop(key, None)
                # an expired directory takes its contents with it
                self._remove_tree(key)

    def _remove_tree(self, key: str) -> None:
        prefix = key + "/"
        for store in (self._entries, self._directories):
            for child in [k for k in store if k.startswith(prefix)]:
                del store[child]

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        if ttl is None or ttl <= 0:
            return None
        return self._clock() + ttl

    async def put(
        self,
        key: str,
        value: str = "",
        ttl: Optional[int] = None,
        directory: bool = False,
    ) -> None:
        key = normalize(key)
        self._purge_expired()

        if directory:
            if key in self._entries:
                raise RegistryError(f"Not a directory: {key}", key=key)
            self._directories[key] = _Entry(value="", expires_at=self._expiry(ttl), ttl=ttl)
            return

        if key in self._directories:
            raise RegistryError(f"Not a file: {key}", key=key)
        self._entries[key] = _Entry(value=value, expires_at=self._expiry(ttl), ttl=ttl)

    async def refresh(self, key: str, ttl: int) -> None:
        key = normalize(key)
        self._purge_expired()

        entry = self._entries.get(key) or self._directories.get(key)
        if entry is None:
            raise RegistryError(f"Key not found: {key}", key=key)
        entry.ttl = ttl
        entry.expires_at = self._expiry(ttl)

    async def get(self, key_prefix: str, recursive: bool = True) -> RegistryNode:
        self._purge_expired()
        node = RegistryNode.from_flat(
            key_prefix,
            {key: entry.value for key, entry in self._entries.items()},
            recursive=recursive,
            directories=self._directories.keys(),
        )
        ttls = {key: entry.ttl for key, entry in self._entries.items()}
        ttls.update({key: entry.ttl for key, entry in self._directories.items()})
        for child in node.walk():
            child.ttl = ttls.get(child.key)
        return node

    async def delete(self, key: str) -> None:
        key = normalize(key)
        self._entries.pop(key, None)
        self._directories.pop(key, None)
        self._remove_tree(key)

    def keys(self) -> Set[str]:
        """Live value keys, for inspection in tests and tooling."""
        self._purge_expired()
        return set(self._entries)
