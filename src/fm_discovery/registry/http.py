"""Base class for registries reached over HTTP."""

import logging
from typing import Dict, List, Optional, Sequence, Union

import httpx

from fm_discovery.errors import RegistryError
from fm_discovery.registry.base import Registry
from fm_discovery.utils import service_startup_retry

logger = logging.getLogger(__name__)


def parse_endpoints(endpoints: Union[str, Sequence[str]]) -> List[str]:
    """Parse a comma-separated endpoint list into base URLs.

    Example:
        >>> parse_endpoints("etcd-0:2379, http://etcd-1:2379/")
        ['http://etcd-0:2379', 'http://etcd-1:2379']
    """
    if isinstance(endpoints, str):
        endpoints = endpoints.split(",")

    parsed = []
    for endpoint in endpoints:
        endpoint = endpoint.strip().rstrip("/")
        if not endpoint:
            continue
        if "://" not in endpoint:
            endpoint = f"http://{endpoint}"
        parsed.append(endpoint)

    if not parsed:
        raise ValueError("At least one registry endpoint is required")
    return parsed


class BaseHttpRegistry(Registry):
    """Registry that talks to its store over HTTP with httpx.

    Requests go to the active endpoint; on a transport error the next
    endpoint is tried, and it stays active for later calls.

    Usage:
        class EtcdRegistry(BaseHttpRegistry):
            async def get(self, key_prefix, recursive=True):
                response = await self._request("GET", f"/v2/keys{key_prefix}")
                ...
    """

    def __init__(
        self,
        endpoints: Union[str, Sequence[str]],
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the registry client.

        Args:
            endpoints: Base URL(s) of the store, a list or comma-separated string
            timeout: Per-request timeout in seconds (default: 5.0)
            transport: Optional httpx transport (used by tests)
        """
        self.endpoints = parse_endpoints(endpoints)
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._active = 0

        logger.info(f"Initialized {self.__class__.__name__} with endpoints={self.endpoints}")

    @property
    def base_url(self) -> str:
        return self.endpoints[self._active]

    def _headers(self) -> Dict[str, str]:
        """Headers sent with every request. Override to add credentials."""
        return {}

    def _get_client(self) -> httpx.AsyncClient:
        """Get the persistent HTTP client, creating it on first use."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers(),
            )
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        key: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a request, failing over between endpoints on transport errors.

        Raises:
            RegistryError: If no endpoint could be reached
        """
        client = self._get_client()
        last_error: Optional[httpx.HTTPError] = None

        for attempt in range(len(self.endpoints)):
            index = (self._active + attempt) % len(self.endpoints)
            url = f"{self.endpoints[index]}{path}"
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                logger.warning(f"{self.backend_name} endpoint {self.endpoints[index]} failed: {e}")
                last_error = e
                continue

            if index != self._active:
                logger.info(f"Switching {self.backend_name} endpoint to {self.endpoints[index]}")
                self._active = index
            return response

        raise RegistryError(
            f"{self.backend_name} {method} {path} failed on all endpoints: {last_error}",
            key=key,
        ) from last_error

    def _check(self, response: httpx.Response, key: Optional[str] = None) -> None:
        """Raise RegistryError for non-2xx responses."""
        if response.is_success:
            return
        raise RegistryError(
            f"{self.backend_name} {response.request.method} {key or response.request.url.path} "
            f"failed: HTTP {response.status_code} {response.text.strip()}",
            key=key,
        )

    async def _health_check(self) -> None:
        """Probe the store. Override in subclasses."""
        pass

    @service_startup_retry
    async def connect(self) -> None:
        """Verify the store is reachable, retrying with backoff."""
        await self._health_check()
        logger.info(f"{self.backend_name} connection verified: {self.base_url}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
