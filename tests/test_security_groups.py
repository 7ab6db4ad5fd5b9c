"""Tests for rule synthesis, merge and validation"""

import pytest

from nsg_controller.exceptions import RuleConflictError, RulePriorityExhaustedError
from nsg_controller.firewall import (
    RuleSettings,
    is_managed_rule,
    merge_rules,
    synthesize_rules,
    validate_rule_set,
)
from nsg_controller.models import FirewallRule, RuleAccess, RuleDirection, RuleProtocol

from conftest import foreign_rule, make_pod

SETTINGS = RuleSettings()


class TestSynthesizeRules:
    """Test suite for rule synthesis"""

    def test_single_pod_rule(self):
        """ns/app1 on 10.0.0.5:8080 becomes hostNetwork-ns-app1 at the base priority"""
        result = synthesize_rules([make_pod()], SETTINGS)

        assert len(result.rules) == 1
        rule = result.rules[0]
        assert rule.name == "hostNetwork-ns-app1"
        assert rule.priority == 2000
        assert rule.destination_address_prefix == "10.0.0.5"
        assert rule.destination_port_ranges == ("8080",)
        assert rule.direction == RuleDirection.INBOUND
        assert rule.access == RuleAccess.ALLOW
        assert rule.protocol == RuleProtocol.TCP
        assert rule.source_address_prefix == "*"
        assert rule.source_port_range == "*"
        assert rule.description == "hostNetwork for pod ns/app1"

    def test_priorities_follow_base_and_step(self):
        """The k-th rule gets base plus step times k"""
        pods = [make_pod(name=f"app{i}") for i in range(4)]
        settings = RuleSettings(base_priority=3000, priority_step=5)

        result = synthesize_rules(pods, settings)

        assert [r.priority for r in result.rules] == [3000, 3005, 3010, 3015]

    def test_priorities_strictly_increasing_and_distinct(self):
        """Skipped pods leave no gaps and no repeats"""
        pods = [make_pod(name=f"app{i}", host_ip="" if i % 3 == 0 else "10.0.0.9") for i in range(10)]

        rules = synthesize_rules(pods, SETTINGS).rules

        priorities = [r.priority for r in rules]
        assert len(rules) <= len(pods)
        assert len(set(priorities)) == len(priorities)
        assert priorities == sorted(priorities)

    def test_pod_without_host_ip_does_not_abort_pass(self):
        """A pod without a host IP is skipped and the rest still synthesize"""
        pods = [
            make_pod(name="first"),
            make_pod(name="pending", host_ip=""),
            make_pod(name="last", host_ip="10.0.0.7"),
        ]

        result = synthesize_rules(pods, SETTINGS)

        assert [r.name for r in result.rules] == ["hostNetwork-ns-first", "hostNetwork-ns-last"]
        assert [r.priority for r in result.rules] == [2000, 2010]
        assert result.skipped == [("ns/pending", "no_host_ip")]

    def test_pod_without_ports_is_skipped(self):
        """A pod without container ports is skipped"""
        result = synthesize_rules([make_pod(ports=())], SETTINGS)

        assert result.rules == []
        assert result.skipped == [("ns/app1", "no_ports")]

    def test_non_target_pods_are_ignored(self):
        """Non-target pods are neither synthesized nor reported"""
        pods = [make_pod(name="plain", host_network=False), make_pod(name="unscheduled", node_name="")]

        result = synthesize_rules(pods, SETTINGS)

        assert result.rules == []
        assert result.skipped == []

    def test_ports_keep_declaration_order_without_duplicates(self):
        """Ports keep their order and duplicates are dropped"""
        result = synthesize_rules([make_pod(ports=(9090, 8080, 9090, 53))], SETTINGS)

        assert result.rules[0].destination_port_ranges == ("9090", "8080", "53")

    def test_custom_prefix_and_protocol(self):
        """Prefix and protocol come from the settings"""
        settings = RuleSettings(prefix="gameserver", protocol=RuleProtocol.UDP)

        rule = synthesize_rules([make_pod(namespace="games", name="srv-0")], settings).rules[0]

        assert rule.name == "gameserver-games-srv-0"
        assert rule.protocol == RuleProtocol.UDP

    def test_input_is_not_mutated(self):
        """Synthesis leaves the pod list unchanged"""
        pods = [make_pod(name="b"), make_pod(name="a")]
        before = list(pods)

        synthesize_rules(pods, SETTINGS)

        assert pods == before

    def test_priority_range_exhausted(self):
        """Priorities past 4096 raise an error"""
        pods = [make_pod(name=f"app{i}") for i in range(3)]
        settings = RuleSettings(base_priority=4090, priority_step=5)

        with pytest.raises(RulePriorityExhaustedError):
            synthesize_rules(pods, settings)


class TestMergeRules:
    """Test suite for merging into the remote rule set"""

    def test_stale_managed_rule_is_replaced(self):
        """Managed rules are replaced by the desired set"""
        remote = [foreign_rule("allow-ssh", 100), foreign_rule("hostNetwork-ns-old", 2000)]
        desired = synthesize_rules([make_pod()], SETTINGS).rules

        merged = merge_rules(remote, desired, "hostNetwork")

        assert [(r.name, r.priority) for r in merged] == [
            ("allow-ssh", 100),
            ("hostNetwork-ns-app1", 2000),
        ]

    def test_foreign_rules_preserved_unchanged(self):
        """Foreign rules survive as the same objects in their order"""
        remote = [
            foreign_rule("allow-ssh", 100),
            foreign_rule("hostNetwork-ns-gone", 2010),
            foreign_rule("deny-all-out", 4000, RuleDirection.OUTBOUND),
            foreign_rule("hostNetworkish", 300),
        ]

        for desired in ([], synthesize_rules([make_pod()], SETTINGS).rules):
            merged = merge_rules(remote, desired, "hostNetwork")
            foreign = [r for r in merged if not is_managed_rule(r, "hostNetwork")]
            assert foreign == [remote[0], remote[2], remote[3]]
            assert all(a is b for a, b in zip(foreign, [remote[0], remote[2], remote[3]]))

    def test_merge_is_idempotent(self):
        """Merging twice gives the same rule set"""
        pods = [make_pod(name="a"), make_pod(name="b", host_ip="10.0.0.6", ports=(53, 8053))]
        remote = [foreign_rule("allow-ssh", 100)]

        first = merge_rules(remote, synthesize_rules(pods, SETTINGS).rules, "hostNetwork")
        second = merge_rules(first, synthesize_rules(pods, SETTINGS).rules, "hostNetwork")

        assert first == second
        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    def test_empty_desired_removes_all_managed_rules(self):
        """No desired rules removes every managed rule"""
        remote = [foreign_rule("hostNetwork-ns-a", 2000), foreign_rule("hostNetwork-ns-b", 2010)]

        assert merge_rules(remote, [], "hostNetwork") == []


class TestValidateRuleSet:
    """Test suite for rule set validation"""

    def test_valid_set(self):
        """Distinct names and priorities pass validation"""
        rules = [
            foreign_rule("allow-ssh", 100),
            foreign_rule("allow-out", 100, RuleDirection.OUTBOUND),
            FirewallRule(name="hostNetwork-ns-app1", priority=2000),
        ]
        validate_rule_set(rules)

    def test_inbound_and_outbound_may_share_priority(self):
        """Priorities only collide within one direction"""
        outbound = foreign_rule("allow-egress", 2000, RuleDirection.OUTBOUND)
        merged = merge_rules([outbound], synthesize_rules([make_pod()], SETTINGS).rules, "hostNetwork")

        validate_rule_set(merged)

        inbound = foreign_rule("allow-web", 2000)
        with pytest.raises(RuleConflictError):
            validate_rule_set(merged + [inbound])

    def test_foreign_priority_collision(self):
        """A foreign rule on a managed priority is a conflict"""
        remote = [foreign_rule("allow-web", 2000)]
        merged = merge_rules(remote, synthesize_rules([make_pod()], SETTINGS).rules, "hostNetwork")

        with pytest.raises(RuleConflictError) as excinfo:
            validate_rule_set(merged)

        assert "priority 2000" in str(excinfo.value)
        assert len(excinfo.value.conflicts) == 1

    def test_duplicate_name(self):
        """Two rules with one name are a conflict"""
        rules = [foreign_rule("allow-ssh", 100), foreign_rule("allow-ssh", 110)]

        with pytest.raises(RuleConflictError, match="allow-ssh"):
            validate_rule_set(rules)
