#!/usr/bin/env python3
"""
Security Group Rules

Translates host-network pods into Azure NSG inbound rules and merges them
into the rule collection already present on the security group.

- Rule synthesis: one Allow/Inbound rule per target pod, named
  ``<prefix>-<namespace>-<name>``, priorities ``base + step * k``
- Merge: every rule outside the reserved prefix is kept untouched, every
  rule inside it is replaced by the freshly synthesized set
- Validation: no duplicate names, no duplicate priorities per direction
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

from ..config import (
    DEFAULT_BASE_PRIORITY,
    DEFAULT_PRIORITY_STEP,
    DEFAULT_RULE_PREFIX,
    DEFAULT_TARGET_LABEL,
    MAX_RULE_PRIORITY,
)
from ..exceptions import RuleConflictError, RulePriorityExhaustedError
from ..models import (
    ANY_SOURCE,
    FirewallRule,
    PodSnapshot,
    RuleAccess,
    RuleDirection,
    RuleProtocol,
)
from .pod_filter import is_target

logger = logging.getLogger(__name__)

SKIP_NO_HOST_IP = "no_host_ip"
SKIP_NO_PORTS = "no_ports"


@dataclass(frozen=True)
class RuleSettings:
    prefix: str = DEFAULT_RULE_PREFIX
    label_key: str = DEFAULT_TARGET_LABEL
    base_priority: int = DEFAULT_BASE_PRIORITY
    priority_step: int = DEFAULT_PRIORITY_STEP
    protocol: RuleProtocol = RuleProtocol.TCP

    @classmethod
    def from_config(cls, config) -> "RuleSettings":
        return cls(
            prefix=config.rule_prefix,
            label_key=config.target_label,
            base_priority=config.base_priority,
            priority_step=config.priority_step,
            protocol=config.protocol,
        )


@dataclass
class SynthesisResult:
    """Rules produced by one synthesis pass plus the pods left out of it."""

    rules: List[FirewallRule] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)


def rule_name(prefix: str, pod: PodSnapshot) -> str:
    return f"{prefix}-{pod.namespace}-{pod.name}"


def destination_ports(pod: PodSnapshot) -> Tuple[str, ...]:
    """Container ports of the pod in declaration order, duplicates dropped."""
    seen = set()
    ports = []
    for port in pod.ports:
        if port not in seen:
            seen.add(port)
            ports.append(str(port))
    return tuple(ports)


def synthesize_rules(
    pods: Iterable[PodSnapshot], settings: RuleSettings = RuleSettings()
) -> SynthesisResult:
    """
    Generate the desired controller-owned rules for the given pods.

    Pods are visited in the order given. Non-target pods are ignored; target
    pods without a host IP or without declared ports are skipped and
    reported, without affecting the rest of the pass. Priorities have no
    gaps: the k-th emitted rule gets ``base + step * k``.
    """
    result = SynthesisResult()

    for pod in pods:
        if not is_target(pod, settings.label_key):
            # matched the label selector but doesn't use hostNetwork or isn't scheduled
            continue

        if not pod.host_ip:
            logger.warning(f"Skipping pod {pod.key}: no host IP assigned yet")
            result.skipped.append((pod.key, SKIP_NO_HOST_IP))
            continue

        ports = destination_ports(pod)
        if not ports:
            logger.warning(f"Skipping pod {pod.key}: no container ports declared")
            result.skipped.append((pod.key, SKIP_NO_PORTS))
            continue

        priority = settings.base_priority + settings.priority_step * len(result.rules)
        if priority > MAX_RULE_PRIORITY:
            raise RulePriorityExhaustedError(
                f"Rule for pod {pod.key} would need priority {priority}, "
                f"above the maximum of {MAX_RULE_PRIORITY}"
            )

        logger.info(f"Adding rule for pod {pod.key} - {pod.host_ip}:{list(ports)}")
        result.rules.append(
            FirewallRule(
                name=rule_name(settings.prefix, pod),
                priority=priority,
                protocol=settings.protocol,
                direction=RuleDirection.INBOUND,
                access=RuleAccess.ALLOW,
                source_address_prefix=ANY_SOURCE,
                source_port_range=ANY_SOURCE,
                destination_address_prefix=pod.host_ip,
                destination_port_ranges=ports,
                description=f"hostNetwork for pod {pod.key}",
            )
        )

    return result


def is_managed_rule(rule: FirewallRule, prefix: str) -> bool:
    """True if the rule lives in the controller's reserved name space."""
    return (rule.name or "").startswith(f"{prefix}-")


def merge_rules(
    remote: Sequence[FirewallRule],
    desired: Sequence[FirewallRule],
    prefix: str = DEFAULT_RULE_PREFIX,
) -> List[FirewallRule]:
    """
    Replace every controller-owned rule of ``remote`` with ``desired``.

    Foreign rules come first, in their remote order and unchanged, followed
    by the desired rules. Collisions are not resolved here; see
    validate_rule_set.
    """
    foreign = [rule for rule in remote if not is_managed_rule(rule, prefix)]
    return foreign + list(desired)


def validate_rule_set(rules: Sequence[FirewallRule]):
    """
    Raise RuleConflictError if two rules share a name, or two rules of the
    same direction share a priority.

    Priorities are compared per direction because Azure scopes NSG rule
    priorities that way: an inbound and an outbound rule may both use 2000,
    and the default AllowVnetInBound/AllowVnetOutBound pair already does.
    Rejecting such a pair would fail passes against perfectly valid groups.
    """
    conflicts = []

    by_name: Dict[str, List[FirewallRule]] = defaultdict(list)
    for rule in rules:
        by_name[rule.name].append(rule)
    for name, group in by_name.items():
        if len(group) > 1:
            conflicts.append(f"name {name!r} used by {len(group)} rules")

    by_priority: Dict[Tuple[RuleDirection, int], List[FirewallRule]] = defaultdict(list)
    for rule in rules:
        by_priority[(rule.direction, rule.priority)].append(rule)
    for (direction, priority), group in by_priority.items():
        if len(group) > 1:
            names = ", ".join(rule.name for rule in group)
            conflicts.append(
                f"{direction.value.lower()} priority {priority} shared by {names}"
            )

    if conflicts:
        raise RuleConflictError(
            "Security rule collision: " + "; ".join(conflicts), conflicts=conflicts
        )
