"""
Tests for the registration state machine
"""
import asyncio
import time
from typing import Optional

import pytest

from fm_discovery import keys
from fm_discovery.errors import RegistryError
from fm_discovery.discovery.registration import RegistrationLoop
from fm_discovery.models import Registration, RegistrationState, ServiceIdentity
from fm_discovery.registry.memory import InMemoryRegistry


class FlakyRegistry(InMemoryRegistry):
    """In-memory registry whose puts and refreshes can be made to fail."""

    def __init__(self, clock=time.monotonic, put_failures: int = 0, refresh_failures: int = 0, error=None):
        super().__init__(clock=clock)
        self.put_failures = put_failures
        self.refresh_failures = refresh_failures
        self.error = error or RegistryError("store unavailable")
        self.put_calls = 0
        self.refresh_calls = 0

    async def put(self, key: str, value: str = "", ttl: Optional[int] = None, directory: bool = False) -> None:
        self.put_calls += 1
        if self.put_failures > 0:
            self.put_failures -= 1
            raise self.error
        await super().put(key, value, ttl=ttl, directory=directory)

    async def refresh(self, key: str, ttl: int) -> None:
        self.refresh_calls += 1
        if self.refresh_failures > 0:
            self.refresh_failures -= 1
            raise self.error
        await super().refresh(key, ttl)


URL_KEY = keys.instance_url_key("dev", "customers", "1.0.0", "instance-1")


def _registration(**kwargs) -> Registration:
    identity = ServiceIdentity(name="customers", environment="dev", version="1.0.0")
    defaults = dict(
        identity=identity,
        target_url="http://customers:8080",
        ttl_seconds=30,
        ping_interval_seconds=20,
        instance_id="instance-1",
    )
    defaults.update(kwargs)
    return Registration(**defaults)


@pytest.mark.asyncio
async def test_successful_registration_waits_ping_interval(registry):
    registration = _registration()
    loop = RegistrationLoop(registry, registration)

    delay = await loop.step()

    assert delay == 20
    assert loop.state == RegistrationState.REGISTERED
    tree = await registry.get(keys.instance_key("dev", "customers", "1.0.0", "instance-1"))
    assert tree.child_value("url") == "http://customers:8080"
    assert tree.child("url").ttl == 30


@pytest.mark.asyncio
async def test_registered_step_refreshes_lease(clock):
    registry = FlakyRegistry(clock)
    loop = RegistrationLoop(registry, _registration())

    await loop.step()
    clock.advance(20)
    delay = await loop.step()
    clock.advance(20)

    assert delay == 20
    assert registry.put_calls == 1
    assert registry.refresh_calls == 1
    # refreshed at t=20, so still alive at t=40 with a 30s TTL
    assert URL_KEY in registry.keys()


@pytest.mark.asyncio
async def test_register_failures_back_off_exponentially():
    registry = FlakyRegistry(put_failures=3)
    loop = RegistrationLoop(registry, _registration(), start_retry_delay_ms=500)

    delays = [await loop.step() for _ in range(3)]

    assert delays == [0.5, 1.0, 2.0]
    assert loop.state == RegistrationState.UNREGISTERED

    assert await loop.step() == 20
    assert loop.state == RegistrationState.REGISTERED
    assert loop.backoff.current_ms == 500


@pytest.mark.asyncio
async def test_backoff_is_capped_at_max_delay():
    registry = FlakyRegistry(put_failures=10)
    loop = RegistrationLoop(
        registry, _registration(), start_retry_delay_ms=500, max_retry_delay_ms=3000
    )

    delays = [await loop.step() for _ in range(6)]

    assert delays == [0.5, 1.0, 2.0, 3.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_refresh_failure_drops_back_to_unregistered_and_reregisters():
    registry = FlakyRegistry(refresh_failures=1)
    loop = RegistrationLoop(registry, _registration())

    await loop.step()
    delay = await loop.step()

    assert delay == 0.5
    assert loop.state == RegistrationState.UNREGISTERED

    assert await loop.step() == 20
    assert registry.put_calls == 2
    assert loop.state == RegistrationState.REGISTERED


@pytest.mark.asyncio
async def test_expired_lease_is_detected_on_refresh(clock):
    registry = InMemoryRegistry(clock=clock)
    loop = RegistrationLoop(registry, _registration())

    await loop.step()
    clock.advance(31)
    delay = await loop.step()

    assert delay == 0.5
    assert not loop.registration.is_registered


@pytest.mark.asyncio
async def test_singleton_conflict_is_not_registered(registry):
    await registry.put(
        keys.instance_url_key("dev", "customers", "1.0.0", "other"), "http://other:8080", ttl=30
    )
    loop = RegistrationLoop(registry, _registration(singleton=True))

    delay = await loop.step()

    assert delay == 0.5
    assert loop.state == RegistrationState.UNREGISTERED
    assert URL_KEY not in registry.keys()


@pytest.mark.asyncio
async def test_singleton_ignores_disabled_and_own_instances(registry):
    await registry.put(
        keys.instance_url_key("dev", "customers", "1.0.0", "other"), "http://other:8080"
    )
    await registry.put(
        keys.instance_key("dev", "customers", "1.0.0", "other") + "/status", "disabled"
    )
    await registry.put(URL_KEY, "http://customers:8080")
    loop = RegistrationLoop(registry, _registration(singleton=True))

    assert not await loop.is_service_registered()
    assert await loop.step() == 20
    assert loop.state == RegistrationState.REGISTERED


@pytest.mark.asyncio
async def test_singleton_registers_after_other_instance_expires(clock):
    registry = InMemoryRegistry(clock=clock)
    await registry.put(
        keys.instance_url_key("dev", "customers", "1.0.0", "other"), "http://other:8080", ttl=10
    )
    loop = RegistrationLoop(registry, _registration(singleton=True))

    assert await loop.step() == 0.5
    clock.advance(11)
    assert await loop.step() == 20


@pytest.mark.asyncio
async def test_start_and_stop_with_deregister(registry):
    loop = RegistrationLoop(registry, _registration())

    task = loop.start()
    assert loop.start() is task
    for _ in range(5):
        await asyncio.sleep(0)

    assert loop.running
    assert URL_KEY in registry.keys()

    await loop.stop(deregister=True)

    assert not loop.running
    assert registry.keys() == set()
    assert loop.state == RegistrationState.UNREGISTERED


@pytest.mark.asyncio
async def test_stop_without_deregister_leaves_lease(registry):
    loop = RegistrationLoop(registry, _registration())
    loop.start()
    for _ in range(5):
        await asyncio.sleep(0)

    await loop.stop()

    assert URL_KEY in registry.keys()


@pytest.mark.asyncio
async def test_run_survives_unexpected_errors():
    registry = FlakyRegistry(put_failures=1, error=RuntimeError("boom"))
    loop = RegistrationLoop(registry, _registration(), start_retry_delay_ms=1)

    loop.start()
    for _ in range(50):
        await asyncio.sleep(0.01)
        if loop.registration.is_registered:
            break

    assert loop.running
    assert loop.registration.is_registered
    await loop.stop(deregister=True)


@pytest.mark.asyncio
async def test_stop_after_task_was_cancelled_elsewhere(registry):
    loop = RegistrationLoop(registry, _registration())
    task = loop.start()
    for _ in range(5):
        await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await loop.stop(deregister=True)

    assert not loop.running
    assert registry.keys() == set()
