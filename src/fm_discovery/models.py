"""Data models shared across the discovery library.

This module contains:
- ServiceIdentity / Registration: the state of one registered instance
- DiscoveredInstance / Resolution: transient results of a discovery call
- RegisterOptions / DiscoverOptions: call-time options (pydantic)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, Field
from semver import Version

from fm_discovery.errors import DiscoveryError
from fm_discovery import keys


class AccessType(str, Enum):
    """Which URL of a discovered service is returned to the caller."""

    GATEWAY = "gateway"
    DIRECT = "direct"


class RegistrationState(str, Enum):
    """States of the registration lifecycle."""

    UNREGISTERED = "unregistered"
    REGISTERED = "registered"


@dataclass(frozen=True)
class ServiceIdentity:
    """Name, environment and version a service instance is registered under."""

    name: str
    environment: str
    version: str

    @property
    def service_key(self) -> str:
        return keys.service_key(self.environment, self.name)

    @property
    def instances_key(self) -> str:
        return keys.instances_key(self.environment, self.name, self.version)


@dataclass
class Registration:
    """Registration state of one service instance.

    ``is_registered`` is written only by the RegistrationLoop that owns this
    registration.

    Attributes:
        identity: Service name, environment and version
        target_url: Base URL other services use to reach this instance
        ttl_seconds: Lease duration of the registration key
        ping_interval_seconds: Interval between lease refreshes
        singleton: Refuse to register while another instance is active
        instance_id: Unique id, generated once per process
    """

    identity: ServiceIdentity
    target_url: str
    ttl_seconds: int = 30
    ping_interval_seconds: int = 20
    singleton: bool = False
    instance_id: str = field(default_factory=lambda: str(uuid4()))
    is_registered: bool = False

    @property
    def instance_key(self) -> str:
        return keys.instance_key(
            self.identity.environment,
            self.identity.name,
            self.identity.version,
            self.instance_id,
        )

    @property
    def url_key(self) -> str:
        return keys.instance_url_key(
            self.identity.environment,
            self.identity.name,
            self.identity.version,
            self.instance_id,
        )

    @property
    def state(self) -> RegistrationState:
        if self.is_registered:
            return RegistrationState.REGISTERED
        return RegistrationState.UNREGISTERED


@dataclass
class DiscoveredInstance:
    """A service instance found in the registry during one discovery call."""

    id: str
    version: Version
    direct_url: str = ""
    gateway_url: str = ""


@dataclass
class Resolution:
    """Outcome of a discovery call.

    When ``stale`` is True the address is the last one successfully resolved
    for the same query and ``error`` holds the reason the fresh lookup failed.
    """

    address: str
    instance: Optional[DiscoveredInstance] = None
    stale: bool = False
    error: Optional[DiscoveryError] = None

    @property
    def hostname(self) -> Optional[str]:
        return urlparse(self.address).hostname

    @property
    def port(self) -> Optional[int]:
        return urlparse(self.address).port


class RegisterOptions(BaseModel):
    """Call-time registration options.

    Unset fields fall back to environment variables, then the supplied
    configuration mapping, then library defaults.
    """

    value: Optional[str] = Field(None, description="Service name to register the service by")
    environment: Optional[str] = Field(None, description="Environment the service is registered in")
    version: Optional[str] = Field(None, description="Semantic version of the service")
    ttl: Optional[int] = Field(None, gt=0, description="TTL of the registration key in seconds")
    ping_interval: Optional[int] = Field(
        None, gt=0, description="Interval between TTL refreshes in seconds"
    )
    singleton: bool = Field(
        False, description="Register only if no other instance of this name/version/env is active"
    )
    base_url: Optional[str] = Field(None, description="URL other services use to reach this instance")
    start_retry_delay_ms: Optional[int] = Field(None, gt=0, description="First retry delay")
    max_retry_delay_ms: Optional[int] = Field(None, gt=0, description="Retry delay ceiling")


class DiscoverOptions(BaseModel):
    """Options for discovering a service."""

    value: str = Field(..., min_length=1, description="Name of the service to discover")
    environment: Optional[str] = Field(
        None, description="Environment to search; defaults to kumuluzee.env.name, then 'dev'"
    )
    version: Optional[str] = Field(
        None, description="Version constraint; defaults to '*' (highest deployed version)"
    )
    access_type: Optional[AccessType] = Field(
        None, description="Return the gateway or the direct URL; defaults to gateway"
    )
