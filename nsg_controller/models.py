"""
Data model shared by the controller components.

PodSnapshot is the immutable view of a pod taken from a Kubernetes event,
FirewallRule is one NSG security rule, either synthesized by the controller
or read back from Azure.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class RuleProtocol(Enum):
    TCP = "Tcp"
    UDP = "Udp"
    ICMP = "Icmp"
    ESP = "Esp"
    AH = "Ah"
    ANY = "*"


class RuleDirection(Enum):
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"


class RuleAccess(Enum):
    ALLOW = "Allow"
    DENY = "Deny"


ANY_SOURCE = "*"


@dataclass(frozen=True)
class PodSnapshot:
    """Point-in-time view of a pod, as delivered by one watch event."""

    namespace: str
    name: str
    host_network: bool = False
    labels: Mapping[str, str] = field(default_factory=dict)
    node_name: str = ""
    host_ip: str = ""
    ports: Tuple[int, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_v1_pod(cls, pod) -> "PodSnapshot":
        """Build a snapshot from a kubernetes.client.V1Pod."""
        metadata = pod.metadata
        spec = pod.spec
        status = pod.status

        ports = []
        for container in (spec.containers if spec else None) or []:
            for port in container.ports or []:
                ports.append(port.container_port)

        return cls(
            namespace=metadata.namespace or "",
            name=metadata.name or "",
            host_network=bool(spec.host_network) if spec else False,
            labels=dict(metadata.labels or {}),
            node_name=(spec.node_name if spec else None) or "",
            host_ip=(status.host_ip if status else None) or "",
            ports=tuple(ports),
        )


@dataclass(frozen=True)
class FirewallRule:
    """One security rule of a network security group."""

    name: str
    priority: int
    destination_address_prefix: Optional[str] = None
    destination_port_ranges: Tuple[str, ...] = ()
    protocol: RuleProtocol = RuleProtocol.TCP
    direction: RuleDirection = RuleDirection.INBOUND
    access: RuleAccess = RuleAccess.ALLOW
    source_address_prefix: str = ANY_SOURCE
    source_port_range: str = ANY_SOURCE
    description: Optional[str] = None
    # SDK model this rule was read from; written back untouched for foreign rules.
    raw: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "protocol": self.protocol.value,
            "direction": self.direction.value,
            "access": self.access.value,
            "source_address_prefix": self.source_address_prefix,
            "source_port_range": self.source_port_range,
            "destination_address_prefix": self.destination_address_prefix,
            "destination_port_ranges": list(self.destination_port_ranges),
            "description": self.description,
        }
