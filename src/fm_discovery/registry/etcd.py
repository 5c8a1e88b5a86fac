"""etcd registry using the v2 keys HTTP API.

Leases are native key TTLs: ``PUT ?ttl=N`` writes a key that expires, and
``PUT ?refresh=true&prevExist=true&ttl=N`` extends it without touching the
value or notifying watchers.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Union

import httpx

from fm_discovery.errors import RegistryError
from fm_discovery.keys import normalize
from fm_discovery.registry.base import RegistryNode
from fm_discovery.registry.http import BaseHttpRegistry

logger = logging.getLogger(__name__)

# etcd v2 error code for "Key not found"
ETCD_KEY_NOT_FOUND = 100


class EtcdRegistry(BaseHttpRegistry):
    """Registry client for etcd (v2 keys API).

    Usage:
        registry = EtcdRegistry("http://etcd:2379")
        await registry.connect()
        await registry.put("/environments/dev/services/foo/1.0.0/instances/a/url",
                           "http://foo:8080", ttl=30)
    """

    def __init__(
        self,
        endpoints: Union[str, Sequence[str]] = "http://localhost:2379",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(endpoints=endpoints, timeout=timeout, transport=transport)

    @property
    def backend_name(self) -> str:
        return "etcd"

    @staticmethod
    def _keys_path(key: str) -> str:
        return f"/v2/keys{normalize(key)}"

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[int]:
        try:
            return response.json().get("errorCode")
        except ValueError:
            return None

    async def put(
        self,
        key: str,
        value: str = "",
        ttl: Optional[int] = None,
        directory: bool = False,
    ) -> None:
        data: Dict[str, str] = {}
        if directory:
            data["dir"] = "true"
        else:
            data["value"] = value
        if ttl:
            data["ttl"] = str(ttl)

        response = await self._request("PUT", self._keys_path(key), key=key, data=data)
        self._check(response, key)
        logger.debug(f"etcd put {key} (ttl={ttl}, dir={directory})")

    async def refresh(self, key: str, ttl: int) -> None:
        data = {"ttl": str(ttl), "refresh": "true", "prevExist": "true"}
        response = await self._request("PUT", self._keys_path(key), key=key, data=data)
        if response.status_code == 404:
            raise RegistryError(f"etcd refresh failed, key not found: {key}", key=key)
        self._check(response, key)

    async def get(self, key_prefix: str, recursive: bool = True) -> RegistryNode:
        params = {"recursive": "true" if recursive else "false", "sorted": "true"}
        response = await self._request(
            "GET", self._keys_path(key_prefix), key=key_prefix, params=params
        )
        if response.status_code == 404 and self._error_code(response) == ETCD_KEY_NOT_FOUND:
            return RegistryNode(key=normalize(key_prefix), dir=True)
        self._check(response, key_prefix)

        try:
            body = response.json()
        except ValueError as e:
            raise RegistryError(f"etcd returned invalid JSON for {key_prefix}", key=key_prefix) from e
        return self._to_node(body.get("node", {}))

    async def delete(self, key: str) -> None:
        response = await self._request(
            "DELETE", self._keys_path(key), key=key, params={"recursive": "true"}
        )
        if response.status_code == 404:
            return
        self._check(response, key)

    async def _health_check(self) -> None:
        response = await self._request("GET", "/health")
        self._check(response)
        try:
            healthy = str(response.json().get("health")).lower() == "true"
        except ValueError:
            healthy = False
        if not healthy:
            raise RegistryError(f"etcd reports unhealthy: {response.text.strip()}")

    def _to_node(self, raw: Dict[str, Any]) -> RegistryNode:
        children = sorted(raw.get("nodes", []), key=lambda n: n.get("key", ""))
        return RegistryNode(
            key=raw.get("key", "/"),
            value=raw.get("value"),
            dir=bool(raw.get("dir", False)),
            ttl=raw.get("ttl"),
            nodes=[self._to_node(child) for child in children],
        )
