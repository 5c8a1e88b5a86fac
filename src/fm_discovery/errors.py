"""Exceptions raised by the discovery library."""

from typing import Optional


class DiscoveryError(Exception):
    """Base class for all discovery errors."""

    pass


class ConfigurationError(DiscoveryError, ValueError):
    """Raised when registration or client configuration is invalid."""

    pass


class VersionParseError(DiscoveryError, ValueError):
    """Raised when a version or version constraint cannot be parsed."""

    def __init__(self, text: str, reason: Optional[str] = None):
        self.text = text
        self.reason = reason
        message = f"Cannot parse version '{text}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NoMatchingVersion(DiscoveryError):
    """Raised when no registered instance satisfies the version constraint."""

    pass


class NoUsableAddress(DiscoveryError):
    """Raised when the picked instance has neither a gateway nor a direct URL."""

    pass


class RegistryError(DiscoveryError):
    """Raised when a registry call fails.

    The underlying client exception, if any, is chained as ``__cause__``.
    """

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class AlreadyRegisteredConflict(DiscoveryError):
    """A singleton service already has an active instance registered.

    The registration loop logs this and retries; it is never raised to callers.
    """

    def __init__(self, environment: str, name: str, version: str):
        self.environment = environment
        self.name = name
        self.version = version
        super().__init__(
            f"Service {name} {version} is already registered in environment "
            f"{environment}, not registering with singleton=True"
        )
