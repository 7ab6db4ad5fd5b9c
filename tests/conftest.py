import pytest
from kubernetes.client import (
    V1Container,
    V1ContainerPort,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
)

from nsg_controller.cloud import RemoteSecurityGroup
from nsg_controller.models import FirewallRule, PodSnapshot, RuleDirection

NSG_ID = (
    "/subscriptions/sub-1/resourceGroups/rg-net/providers/"
    "Microsoft.Network/networkSecurityGroups/aks-agentpool-nsg"
)


def make_pod(
    name="app1",
    namespace="ns",
    host_network=True,
    opted_in=True,
    node_name="node1",
    host_ip="10.0.0.5",
    ports=(8080,),
    label_key="updateNSG",
):
    labels = {"app": name}
    if opted_in is not None:
        labels[label_key] = "true" if opted_in else "false"
    return PodSnapshot(
        namespace=namespace,
        name=name,
        host_network=host_network,
        labels=labels,
        node_name=node_name,
        host_ip=host_ip,
        ports=tuple(ports),
    )


def make_v1_pod(
    name="app1",
    namespace="ns",
    host_network=True,
    labels=None,
    node_name="node1",
    host_ip="10.0.0.5",
    ports=(8080,),
    resource_version="1",
):
    if labels is None:
        labels = {"updateNSG": "true"}
    return V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels,
            resource_version=resource_version,
        ),
        spec=V1PodSpec(
            host_network=host_network,
            node_name=node_name,
            containers=[
                V1Container(
                    name="main",
                    ports=[V1ContainerPort(container_port=p) for p in ports],
                )
            ],
        ),
        status=V1PodStatus(host_ip=host_ip),
    )


def foreign_rule(name="allow-ssh", priority=100, direction=RuleDirection.INBOUND):
    return FirewallRule(
        name=name,
        priority=priority,
        direction=direction,
        destination_address_prefix="*",
        destination_port_ranges=("22",),
    )


class FakePodSource:
    """Stands in for PodWatcher.list_target_pods."""

    def __init__(self, pods=None, error=None):
        self.pods = list(pods or [])
        self.error = error
        self.calls = []

    def list_target_pods(self, label_key):
        self.calls.append(label_key)
        if self.error:
            raise self.error
        return list(self.pods)


class FakeNetwork:
    """In-memory NSG with the NetworkClient interface."""

    def __init__(self, rules=None, nsg_id=NSG_ID):
        self.nsg_id = nsg_id
        self.rules = list(rules or [])
        self.writes = []
        self.resolve_error = None
        self.get_error = None
        self.update_error = None

    def resolve_nsg_id(self):
        if self.resolve_error:
            raise self.resolve_error
        return self.nsg_id

    def get_security_group(self, nsg_id):
        if self.get_error:
            raise self.get_error
        return RemoteSecurityGroup(
            id=nsg_id,
            resource_group="rg-net",
            name="aks-agentpool-nsg",
            rules=list(self.rules),
        )

    def update_security_rules(self, group, rules):
        if self.update_error:
            raise self.update_error
        self.writes.append(list(rules))
        self.rules = list(rules)


@pytest.fixture
def fake_network():
    return FakeNetwork(rules=[foreign_rule()])


@pytest.fixture
def fake_pod_source():
    return FakePodSource([make_pod()])
