"""Registration lifecycle of a service instance.

The RegistrationLoop keeps one instance registered in the registry:

    UNREGISTERED --register ok--> REGISTERED --refresh ok--> REGISTERED
         ^  |                         |
         |  +--register failed--+     |
         |      (backoff)       |     |
         +----------------------+-----+ refresh failed (backoff)

After every success it waits the ping interval; after every failure it waits
the current retry delay, which doubles up to the configured maximum and goes
back to the start value on the next success.
"""

import asyncio
import logging
from typing import Optional

from fm_discovery import keys
from fm_discovery.errors import AlreadyRegisteredConflict, RegistryError
from fm_discovery.models import Registration, RegistrationState
from fm_discovery.registry.base import Registry
from fm_discovery.utils import ExponentialBackoff

logger = logging.getLogger(__name__)


class RegistrationLoop:
    """Background task registering an instance and refreshing its TTL lease.

    The loop is the only writer of ``registration.is_registered``. It never
    raises to its owner; failures are logged and retried.

    Usage:
        loop = RegistrationLoop(registry, registration)
        loop.start()
        ...
        await loop.stop(deregister=True)
    """

    def __init__(
        self,
        registry: Registry,
        registration: Registration,
        start_retry_delay_ms: int = 500,
        max_retry_delay_ms: int = 900000,
    ):
        """Initialize the registration loop.

        Args:
            registry: Registry the instance is registered in
            registration: Registration owned by this loop
            start_retry_delay_ms: Delay after the first failure
            max_retry_delay_ms: Ceiling for the doubled retry delay
        """
        self.registry = registry
        self.registration = registration
        self.backoff = ExponentialBackoff(start_retry_delay_ms, max_retry_delay_ms)

        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> RegistrationState:
        return self.registration.state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def is_service_registered(self) -> bool:
        """Check whether another active instance holds this identity.

        An instance counts as active when its url key is present and its
        optional status key is not "disabled". This instance is ignored.

        Raises:
            RegistryError: If the registry query fails
        """
        reg = self.registration
        tree = await self.registry.get(reg.identity.instances_key, recursive=True)

        for instance in tree.nodes:
            if not instance.dir or instance.name == reg.instance_id:
                continue
            if not instance.child_value(keys.URL_KEY):
                continue
            if instance.child_value(keys.STATUS_KEY) == keys.STATUS_DISABLED:
                continue
            return True
        return False

    async def register(self) -> bool:
        """Write the instance url key with its TTL lease.

        Returns:
            True if registered, False if skipped because of a singleton conflict

        Raises:
            RegistryError: If a registry call fails
        """
        reg = self.registration

        if reg.singleton and await self.is_service_registered():
            conflict = AlreadyRegisteredConflict(
                reg.identity.environment, reg.identity.name, reg.identity.version
            )
            logger.error(str(conflict))
            return False

        logger.info(
            f"Registering service: id={reg.instance_id} name={reg.identity.name} "
            f"version={reg.identity.version} url={reg.target_url}"
        )
        await self.registry.put(reg.url_key, reg.target_url, ttl=reg.ttl_seconds)
        logger.info(f"Service registered, id={reg.instance_id}")
        return True

    async def refresh(self) -> None:
        """Extend the TTL lease of the registered url key.

        Raises:
            RegistryError: If the lease could not be refreshed
        """
        reg = self.registration
        logger.debug(f"Updating TTL for service {reg.instance_id}")
        await self.registry.refresh(reg.url_key, reg.ttl_seconds)

    def _failed(self, message: str) -> float:
        delay = self.backoff.next_delay()
        logger.error(f"{message}, retry delay: {int(delay * 1000)} ms")
        return delay

    def _succeeded(self) -> float:
        self.backoff.reset()
        return float(self.registration.ping_interval_seconds)

    async def step(self) -> float:
        """Run one transition of the state machine.

        Returns:
            Seconds to wait before the next step
        """
        reg = self.registration

        if not reg.is_registered:
            try:
                registered = await self.register()
            except RegistryError as e:
                return self._failed(f"Service registration failed: {e}")
            if not registered:
                return self._failed(f"Service {reg.identity.name} not registered")
            reg.is_registered = True
            return self._succeeded()

        try:
            await self.refresh()
        except RegistryError as e:
            reg.is_registered = False
            return self._failed(f"Updating TTL failed for service {reg.instance_id}, error: {e}")
        return self._succeeded()

    async def run(self) -> None:
        """Step until stopped. Never raises except on cancellation."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()

        while not self._stop_event.is_set():
            try:
                delay = await self.step()
            except Exception as e:
                # unexpected failure, the lease state is unknown
                self.registration.is_registered = False
                delay = self._failed(f"Registration loop error for {self.registration.instance_id}: {e!r}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Registration loop stopped for service {self.registration.instance_id}")

    def start(self) -> asyncio.Task:
        """Start the loop as a background task on the running event loop."""
        if self.running:
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self.run(), name=f"registration-{self.registration.instance_id}"
        )
        return self._task

    async def stop(self, deregister: bool = False) -> None:
        """Stop the loop and optionally delete the instance from the registry.

        Without ``deregister`` the lease lapses on its own after the TTL.
        """
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            # a task cancelled by someone else is already finished
            if not self._task.done():
                await self._task
            self._task = None

        if deregister:
            reg = self.registration
            try:
                await self.registry.delete(reg.instance_key)
                logger.info(f"Service deregistered, id={reg.instance_id}")
            except RegistryError as e:
                logger.error(f"Deregistering service {reg.instance_id} failed: {e}")
            reg.is_registered = False
