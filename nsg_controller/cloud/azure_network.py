"""
Azure network client.

Finds the network security group attached to the cluster subnet, reads its
rules and writes the whole rule collection back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from azure.core.exceptions import AzureError
from azure.identity import DefaultAzureCredential
from azure.mgmt.core.tools import parse_resource_id
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import SecurityRule

from ..config import AzureConfig
from ..exceptions import RemoteOperationError
from ..models import FirewallRule, RuleAccess, RuleDirection, RuleProtocol

logger = logging.getLogger(__name__)


@dataclass
class RemoteSecurityGroup:
    """An NSG as read from Azure, plus its rules in controller form."""

    id: str
    resource_group: str
    name: str
    rules: List[FirewallRule] = field(default_factory=list)
    raw: Any = None


def parse_nsg_id(resource_id: str) -> Tuple[str, str]:
    """Return (resource_group, name) of an NSG resource id."""
    parts = parse_resource_id(resource_id or "")
    resource_group = parts.get("resource_group")
    name = parts.get("name")
    if not resource_group or not name:
        raise RemoteOperationError(f"Malformed network security group id: {resource_id!r}")
    return resource_group, name


def _enum_member(enum_cls, value, default):
    raw = getattr(value, "value", value)
    if raw is None:
        return default
    for member in enum_cls:
        if member.value.lower() == str(raw).lower():
            return member
    return default


def rule_from_sdk(rule: SecurityRule) -> FirewallRule:
    """Convert an SDK SecurityRule, keeping the original for write-back."""
    port_ranges = tuple(rule.destination_port_ranges or ())
    if not port_ranges and rule.destination_port_range:
        port_ranges = (rule.destination_port_range,)

    return FirewallRule(
        name=rule.name or "",
        priority=rule.priority if rule.priority is not None else 0,
        protocol=_enum_member(RuleProtocol, rule.protocol, RuleProtocol.ANY),
        direction=_enum_member(RuleDirection, rule.direction, RuleDirection.INBOUND),
        access=_enum_member(RuleAccess, rule.access, RuleAccess.ALLOW),
        source_address_prefix=rule.source_address_prefix or "",
        source_port_range=rule.source_port_range or "",
        destination_address_prefix=rule.destination_address_prefix,
        destination_port_ranges=port_ranges,
        description=rule.description,
        raw=rule,
    )


def rule_to_sdk(rule: FirewallRule) -> SecurityRule:
    """Rules read from Azure go back as they came; new rules are built fresh."""
    if rule.raw is not None:
        return rule.raw
    return SecurityRule(
        name=rule.name,
        priority=rule.priority,
        protocol=rule.protocol.value,
        direction=rule.direction.value,
        access=rule.access.value,
        source_address_prefix=rule.source_address_prefix,
        source_port_range=rule.source_port_range,
        destination_address_prefix=rule.destination_address_prefix,
        destination_port_ranges=list(rule.destination_port_ranges),
        description=rule.description,
    )


def build_credential(azure_config: AzureConfig):
    if azure_config.user_assigned_identity_id:
        return DefaultAzureCredential(
            managed_identity_client_id=azure_config.user_assigned_identity_id
        )
    return DefaultAzureCredential()


class NetworkClient:
    """Thin wrapper around NetworkManagementClient for the subnet's NSG."""

    def __init__(
        self,
        azure_config: AzureConfig,
        credential=None,
        client: Optional[NetworkManagementClient] = None,
    ):
        self.config = azure_config
        if client is None:
            client = NetworkManagementClient(
                credential=credential or build_credential(azure_config),
                subscription_id=azure_config.subscription_id,
            )
        self.client = client

    def resolve_nsg_id(self) -> str:
        """Resource id of the NSG attached to the configured subnet."""
        cfg = self.config
        try:
            subnet = self.client.subnets.get(
                cfg.subnet_resource_group, cfg.vnet_name, cfg.subnet_name
            )
        except AzureError as e:
            raise RemoteOperationError(
                f"Failed to read subnet {cfg.vnet_name}/{cfg.subnet_name}: {e}"
            ) from e

        nsg = subnet.network_security_group
        if nsg is None or not nsg.id:
            raise RemoteOperationError(
                f"Subnet {cfg.vnet_name}/{cfg.subnet_name} has no network security group"
            )
        logger.debug(f"Found nsgId: {nsg.id}")
        return nsg.id

    def get_security_group(self, nsg_id: str) -> RemoteSecurityGroup:
        resource_group, name = parse_nsg_id(nsg_id)
        try:
            nsg = self.client.network_security_groups.get(resource_group, name)
        except AzureError as e:
            raise RemoteOperationError(f"Failed to read NSG {name}: {e}") from e

        return RemoteSecurityGroup(
            id=nsg.id or nsg_id,
            resource_group=resource_group,
            name=name,
            rules=[rule_from_sdk(rule) for rule in nsg.security_rules or []],
            raw=nsg,
        )

    def update_security_rules(self, group: RemoteSecurityGroup, rules: Sequence[FirewallRule]):
        """PUT the NSG with ``rules`` and wait until Azure reports completion."""
        nsg = group.raw
        nsg.security_rules = [rule_to_sdk(rule) for rule in rules]
        try:
            poller = self.client.network_security_groups.begin_create_or_update(
                group.resource_group, group.name, nsg
            )
            poller.result()
        except AzureError as e:
            raise RemoteOperationError(f"Failed to update NSG {group.name}: {e}") from e
        logger.info(f"Updated NSG {group.name} with {len(rules)} rules")
