"""Consul registry using the KV HTTP API.

Consul KV entries have no TTL of their own. A key written with a TTL is
acquired by a session created with that TTL and ``Behavior=delete``: when the
session is not renewed in time Consul invalidates it and deletes the key.
Refreshing a key renews its session.
"""

import base64
import logging
from typing import Dict, Optional, Sequence, Union

import httpx

from fm_discovery.errors import RegistryError
from fm_discovery.keys import normalize
from fm_discovery.registry.base import RegistryNode
from fm_discovery.registry.http import BaseHttpRegistry

logger = logging.getLogger(__name__)

# Consul rejects session TTLs outside 10s..86400s
MIN_SESSION_TTL = 10
MAX_SESSION_TTL = 86400


class ConsulRegistry(BaseHttpRegistry):
    """Registry client for Consul KV with session-bound leases.

    Usage:
        registry = ConsulRegistry("http://consul:8500", token=os.getenv("CONSUL_HTTP_TOKEN"))
        await registry.connect()
    """

    def __init__(
        self,
        endpoints: Union[str, Sequence[str]] = "http://localhost:8500",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token: Optional[str] = None,
    ):
        """Initialize Consul registry.

        Args:
            endpoints: Consul agent URL(s)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
            token: ACL token sent as X-Consul-Token
        """
        self.token = token
        self._sessions: Dict[str, str] = {}
        super().__init__(endpoints=endpoints, timeout=timeout, transport=transport)

    @property
    def backend_name(self) -> str:
        return "consul"

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"X-Consul-Token": self.token}
        return {}

    @staticmethod
    def _kv_path(key: str) -> str:
        return f"/v1/kv/{normalize(key).lstrip('/')}"

    async def _create_session(self, key: str, ttl: int) -> str:
        session_ttl = min(max(ttl, MIN_SESSION_TTL), MAX_SESSION_TTL)
        if session_ttl != ttl:
            logger.warning(f"Consul session TTL for {key} adjusted from {ttl}s to {session_ttl}s")

        response = await self._request(
            "PUT",
            "/v1/session/create",
            key=key,
            json={
                "Name": f"fm-discovery:{key}",
                "TTL": f"{session_ttl}s",
                "Behavior": "delete",
                "LockDelay": "0s",
            },
        )
        self._check(response, key)
        return response.json()["ID"]

    async def _destroy_session(self, session_id: str, key: str) -> None:
        response = await self._request("PUT", f"/v1/session/destroy/{session_id}", key=key)
        self._check(response, key)

    async def put(
        self,
        key: str,
        value: str = "",
        ttl: Optional[int] = None,
        directory: bool = False,
    ) -> None:
        key = normalize(key)

        if directory:
            response = await self._request("PUT", self._kv_path(key) + "/", key=key, content=b"")
            self._check(response, key)
            return

        if not ttl:
            response = await self._request("PUT", self._kv_path(key), key=key, content=value.encode())
            self._check(response, key)
            return

        session_id = self._sessions.get(key)
        if session_id is not None and not await self._renew_session(session_id, key):
            self._sessions.pop(key, None)
            session_id = None

        created = session_id is None
        if created:
            session_id = await self._create_session(key, ttl)

        response = await self._request(
            "PUT",
            self._kv_path(key),
            key=key,
            params={"acquire": session_id},
            content=value.encode(),
        )
        self._check(response, key)
        if response.json() is not True:
            if created:
                await self._destroy_session(session_id, key)
            raise RegistryError(f"consul could not acquire {key}, it is held by another session", key=key)

        self._sessions[key] = session_id
        logger.debug(f"consul put {key} under session {session_id} (ttl={ttl})")

    async def _renew_session(self, session_id: str, key: str) -> bool:
        """Renew a session; False if Consul no longer knows it."""
        response = await self._request("PUT", f"/v1/session/renew/{session_id}", key=key)
        if response.status_code == 404:
            return False
        self._check(response, key)
        return True

    async def refresh(self, key: str, ttl: int) -> None:
        key = normalize(key)
        session_id = self._sessions.get(key)
        if session_id is None:
            raise RegistryError(f"consul refresh failed, no lease held for {key}", key=key)

        if not await self._renew_session(session_id, key):
            self._sessions.pop(key, None)
            raise RegistryError(f"consul refresh failed, session for {key} expired", key=key)

    async def get(self, key_prefix: str, recursive: bool = True) -> RegistryNode:
        response = await self._request(
            "GET", self._kv_path(key_prefix), key=key_prefix, params={"recurse": "true"}
        )
        if response.status_code == 404:
            return RegistryNode(key=normalize(key_prefix), dir=True)
        self._check(response, key_prefix)

        items: Dict[str, Optional[str]] = {}
        directories = []
        for entry in response.json() or []:
            entry_key = "/" + entry["Key"]
            if entry_key.endswith("/"):
                directories.append(entry_key)
                continue
            raw = entry.get("Value")
            items[entry_key] = base64.b64decode(raw).decode("utf-8") if raw else ""

        return RegistryNode.from_flat(
            key_prefix, items, recursive=recursive, directories=directories
        )

    async def delete(self, key: str) -> None:
        key = normalize(key)
        response = await self._request(
            "DELETE", self._kv_path(key), key=key, params={"recurse": "true"}
        )
        self._check(response, key)

        held = [k for k in self._sessions if k == key or k.startswith(key + "/")]
        for held_key in held:
            await self._destroy_session(self._sessions.pop(held_key), held_key)

    async def _health_check(self) -> None:
        response = await self._request("GET", "/v1/status/leader")
        self._check(response)
        if not response.json():
            raise RegistryError("consul cluster has no leader")
