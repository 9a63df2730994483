"""Typed snapshots of the Marzban API resources.

Each model is built from a decoded JSON payload with ``from_dict`` and is
discarded once its values have been folded into the metrics registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from marzban_exporter.errors import MalformedResponse

_MISSING = object()


def _field(data: Any, key: str, kind: str, default: Any = _MISSING) -> Any:
    """Read and type-check one field of a payload object.

    Args:
        data: Decoded JSON object.
        key: Field name.
        kind: One of 'str', 'int', 'float', 'bool'.
        default: Value used when the key is absent or null. Without a
            default the field is required.

    Raises:
        MalformedResponse: If the field is missing or has the wrong type.
    """
    if not isinstance(data, dict):
        raise MalformedResponse(f"expected an object, got {type(data).__name__}")

    value = data.get(key)
    if value is None:
        if default is _MISSING:
            raise MalformedResponse(f"missing field '{key}'")
        return default

    if kind == "str":
        if isinstance(value, str):
            return value
    elif kind == "bool":
        if isinstance(value, bool):
            return value
    elif kind == "int":
        # bool is an int subclass, reject it explicitly
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif kind == "float":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)

    raise MalformedResponse(
        f"field '{key}' should be {kind}, got {type(value).__name__}"
    )


def _items(data: Any, key: str) -> list[Any]:
    """Unwrap a ``{key: [...]}`` envelope."""
    if not isinstance(data, dict):
        raise MalformedResponse(f"expected an object, got {type(data).__name__}")
    items = data.get(key)
    if not isinstance(items, list):
        raise MalformedResponse(f"field '{key}' should be a list")
    return items


@dataclass(frozen=True)
class Node:
    """A node registered with the panel."""

    name: str
    address: str
    port: int
    api_port: int
    usage_coefficient: float
    xray_version: str
    status: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """Create a Node from an item of ``GET /api/nodes``."""
        if isinstance(data, dict) and "xray_version" not in data:
            version = _field(data, "xray_build_version", "str", "")
        else:
            version = _field(data, "xray_version", "str", "")
        return cls(
            name=_field(data, "name", "str"),
            address=_field(data, "address", "str"),
            port=_field(data, "port", "int"),
            api_port=_field(data, "api_port", "int"),
            usage_coefficient=_field(data, "usage_coefficient", "float"),
            xray_version=version,
            status=_field(data, "status", "str"),
        )

    @classmethod
    def list_from_payload(cls, data: Any) -> list[Node]:
        """Parse the bare JSON array returned by ``GET /api/nodes``."""
        if not isinstance(data, list):
            raise MalformedResponse(
                f"expected a list of nodes, got {type(data).__name__}"
            )
        return [cls.from_dict(item) for item in data]


@dataclass(frozen=True)
class NodeUsage:
    """Traffic counters of one node."""

    node_name: str
    uplink: int
    downlink: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeUsage:
        return cls(
            node_name=_field(data, "node_name", "str"),
            uplink=_field(data, "uplink", "int"),
            downlink=_field(data, "downlink", "int"),
        )

    @classmethod
    def list_from_payload(cls, data: Any) -> list[NodeUsage]:
        """Parse the ``{usages: [...]}`` body of ``GET /api/nodes/usage``."""
        return [cls.from_dict(item) for item in _items(data, "usages")]


@dataclass(frozen=True)
class SystemStats:
    """Resource usage and user counts of the panel host."""

    version: str
    mem_total: int
    mem_used: int
    cpu_cores: int
    cpu_usage: float
    total_user: int
    users_active: int
    incoming_bandwidth: int
    outgoing_bandwidth: int
    incoming_bandwidth_speed: int
    outgoing_bandwidth_speed: int
    online_users: int | None = None  # Not reported by older panels

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SystemStats:
        """Create SystemStats from the body of ``GET /api/system``."""
        return cls(
            version=_field(data, "version", "str"),
            mem_total=_field(data, "mem_total", "int"),
            mem_used=_field(data, "mem_used", "int"),
            cpu_cores=_field(data, "cpu_cores", "int"),
            cpu_usage=_field(data, "cpu_usage", "float"),
            total_user=_field(data, "total_user", "int"),
            users_active=_field(data, "users_active", "int"),
            incoming_bandwidth=_field(data, "incoming_bandwidth", "int"),
            outgoing_bandwidth=_field(data, "outgoing_bandwidth", "int"),
            incoming_bandwidth_speed=_field(data, "incoming_bandwidth_speed", "int"),
            outgoing_bandwidth_speed=_field(data, "outgoing_bandwidth_speed", "int"),
            online_users=_field(data, "online_users", "int", None),
        )


@dataclass(frozen=True)
class CoreStatus:
    """State of the Xray core managed by the panel."""

    version: str
    started: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoreStatus:
        return cls(
            version=_field(data, "version", "str"),
            started=_field(data, "started", "bool"),
        )


@dataclass(frozen=True)
class User:
    """Traffic accounting for one user."""

    username: str
    status: str
    used_traffic: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> User:
        return cls(
            username=_field(data, "username", "str"),
            status=_field(data, "status", "str"),
            used_traffic=_field(data, "used_traffic", "int", 0),
        )

    @classmethod
    def list_from_payload(cls, data: Any) -> list[User]:
        """Parse the ``{users: [...]}`` body of ``GET /api/users``."""
        return [cls.from_dict(item) for item in _items(data, "users")]


@dataclass(frozen=True)
class ResourceSnapshot:
    """Everything fetched during one successful refresh cycle."""

    nodes: list[Node]
    node_usages: list[NodeUsage]
    system: SystemStats
    core: CoreStatus
    users: list[User] = field(default_factory=list)
