"""Marzban gauges and the update step that fills them from API snapshots."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from marzban_exporter.metrics.registry import GaugeFamily, MetricRegistry

if TYPE_CHECKING:
    from marzban_exporter.models import (
        CoreStatus,
        Node,
        NodeUsage,
        ResourceSnapshot,
        SystemStats,
        User,
    )

logger = logging.getLogger(__name__)

NODE_LABELS = ("node_name",)
NODE_INFO_LABELS = (
    "node_name",
    "xray_build_version",
    "status",
    "address",
    "port",
    "api_port",
)
VERSION_LABELS = ("version",)
USER_LABELS = ("username", "status")

# name -> (help text, label names)
METRIC_DEFINITIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "node_usage_coefficient": ("Node usage coefficient", NODE_LABELS),
    "node_uplink": ("Node uplink bandwidth in bytes", NODE_LABELS),
    "node_downlink": ("Node downlink bandwidth in bytes", NODE_LABELS),
    "node_version_info": ("Node version information", NODE_INFO_LABELS),
    "system_mem_total": ("Total memory in bytes", ()),
    "system_mem_used": ("Used memory in bytes", ()),
    "system_cpu_cores": ("Number of CPU cores", ()),
    "system_cpu_usage": ("CPU usage percentage", ()),
    "system_total_user": ("Total number of users", ()),
    "system_users_active": ("Number of active users", ()),
    "system_online_users": ("Number of users currently online", ()),
    "system_incoming_bandwidth": ("Incoming bandwidth in bytes", ()),
    "system_outgoing_bandwidth": ("Outgoing bandwidth in bytes", ()),
    "system_incoming_bandwidth_speed": ("Incoming bandwidth speed in bytes per second", ()),
    "system_outgoing_bandwidth_speed": ("Outgoing bandwidth speed in bytes per second", ()),
    "system_version_info": ("System version information", VERSION_LABELS),
    "core_started": ("Core started status", ()),
    "core_version_info": ("Core version information", VERSION_LABELS),
    "user_used_traffic": ("User used traffic in bytes", USER_LABELS),
}

# Unlabeled system gauges and the SystemStats attribute feeding each
SYSTEM_GAUGES = {
    "system_mem_total": "mem_total",
    "system_mem_used": "mem_used",
    "system_cpu_cores": "cpu_cores",
    "system_cpu_usage": "cpu_usage",
    "system_total_user": "total_user",
    "system_users_active": "users_active",
    "system_online_users": "online_users",
    "system_incoming_bandwidth": "incoming_bandwidth",
    "system_outgoing_bandwidth": "outgoing_bandwidth",
    "system_incoming_bandwidth_speed": "incoming_bandwidth_speed",
    "system_outgoing_bandwidth_speed": "outgoing_bandwidth_speed",
}


class MarzbanMetrics:
    """The exporter's gauges, declared once on a MetricRegistry.

    ``update`` only overwrites values. Label sets seen in earlier cycles keep
    their last value, e.g. a node deleted from the panel stays exported until
    the process restarts.
    """

    def __init__(self, registry: MetricRegistry | None = None):
        """Declare every gauge.

        Args:
            registry: Registry to declare on. A fresh one by default.

        Raises:
            ValueError: If any of the gauges is already declared on registry.
        """
        self.registry = registry if registry is not None else MetricRegistry()
        self.gauges: dict[str, GaugeFamily] = {}

        for name, (documentation, labelnames) in METRIC_DEFINITIONS.items():
            self.gauges[name] = self.registry.declare(name, documentation, labelnames)

    def update(
        self,
        nodes: list[Node],
        node_usages: list[NodeUsage],
        system: SystemStats,
        core: CoreStatus,
        users: list[User],
    ) -> None:
        """Overwrite gauge values from freshly fetched resources."""
        for node in nodes:
            self.gauges["node_usage_coefficient"].set(node.usage_coefficient, node.name)
            self.gauges["node_version_info"].set(
                1,
                node.name,
                node.xray_version,
                node.status,
                node.address,
                node.port,
                node.api_port,
            )

        for usage in node_usages:
            self.gauges["node_uplink"].set(usage.uplink, usage.node_name)
            self.gauges["node_downlink"].set(usage.downlink, usage.node_name)

        for name, attribute in SYSTEM_GAUGES.items():
            value = getattr(system, attribute)
            if value is not None:
                self.gauges[name].set(value)
        self.gauges["system_version_info"].set(1, system.version)

        self.gauges["core_started"].set(1 if core.started else 0)
        self.gauges["core_version_info"].set(1, core.version)

        for user in users:
            self.gauges["user_used_traffic"].set(user.used_traffic, user.username, user.status)

        logger.debug(
            f"Updated metrics for {len(nodes)} nodes, "
            f"{len(node_usages)} node usages and {len(users)} users"
        )

    def apply(self, snapshot: ResourceSnapshot) -> None:
        """Update from the result of a complete refresh cycle."""
        self.update(
            snapshot.nodes,
            snapshot.node_usages,
            snapshot.system,
            snapshot.core,
            snapshot.users,
        )

    def render(self) -> bytes:
        """Current values in the Prometheus text exposition format."""
        return self.registry.render()
