"""Registry key layout.

The layout is shared with the discovery libraries of the other platforms and
must not change:

    /environments/{env}/services/{name}/{version}/instances/{instanceId}/url
    /environments/{env}/services/{name}/{version}/gatewayUrl
"""

URL_KEY = "url"
GATEWAY_URL_KEY = "gatewayUrl"
STATUS_KEY = "status"
INSTANCES_DIR = "instances"

STATUS_DISABLED = "disabled"


def service_key(environment: str, name: str) -> str:
    return f"/environments/{environment}/services/{name}"


def version_key(environment: str, name: str, version: str) -> str:
    return f"{service_key(environment, name)}/{version}"


def instances_key(environment: str, name: str, version: str) -> str:
    return f"{version_key(environment, name, version)}/{INSTANCES_DIR}"


def instance_key(environment: str, name: str, version: str, instance_id: str) -> str:
    return f"{instances_key(environment, name, version)}/{instance_id}"


def instance_url_key(environment: str, name: str, version: str, instance_id: str) -> str:
    return f"{instance_key(environment, name, version, instance_id)}/{URL_KEY}"


def gateway_url_key(environment: str, name: str, version: str) -> str:
    return f"{version_key(environment, name, version)}/{GATEWAY_URL_KEY}"


def normalize(key: str) -> str:
    """Normalize a key to a single leading slash and no trailing slash."""
    stripped = key.strip("/")
    return f"/{stripped}" if stripped else "/"
