"""Service Discovery Module

Registration lifecycle and version-aware resolution of service addresses.
"""

from .client import DiscoveryClient
from .registration import RegistrationLoop
from .resolver import LastKnownAddressCache, Resolver

__all__ = [
    "DiscoveryClient",
    "RegistrationLoop",
    "Resolver",
    "LastKnownAddressCache",
]
