#!/usr/bin/env python3
"""
NSG Reconciliation Engine

One pass brings the subnet's network security group in line with the
host-network pods currently running in the cluster.

Steps:
1. List the pods carrying the opt-in label
2. Filter them and synthesize the desired controller-owned rules
3. Resolve the NSG attached to the cluster subnet
4. Fetch its current rules
5. Merge: keep foreign rules, replace controller-owned ones
6. Write the whole collection back and wait for Azure to accept it

A pass either completes or is abandoned as a whole. Nothing is carried
over between passes; the next pass starts again from step 1.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import NsgControllerError
from ..firewall import (
    RuleSettings,
    is_managed_rule,
    merge_rules,
    synthesize_rules,
    validate_rule_set,
)
from ..metrics import METRICS
from ..models import PodSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Result of a reconciliation pass."""

    success: bool
    changed: bool = False
    nsg_id: Optional[str] = None
    managed_rules: int = 0
    foreign_rules: int = 0
    skipped_pods: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "changed": self.changed,
            "nsg_id": self.nsg_id,
            "managed_rules": self.managed_rules,
            "foreign_rules": self.foreign_rules,
            "skipped_pods": list(self.skipped_pods),
            "errors": list(self.errors),
            "duration_ms": round(self.duration_ms, 1),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ReconciliationEngine:
    """
    Runs reconciliation passes on behalf of the event coalescer.

    ``pod_source`` provides ``list_target_pods(label_key)``, ``network``
    provides ``resolve_nsg_id()``, ``get_security_group(nsg_id)`` and
    ``update_security_rules(group, rules)``.
    """

    def __init__(self, pod_source, network, settings: RuleSettings = RuleSettings()):
        self.pod_source = pod_source
        self.network = network
        self.settings = settings
        self.last_result: Optional[ReconciliationResult] = None
        self.last_success: Optional[ReconciliationResult] = None
        self.metrics = {
            "cycles": 0,
            "writes": 0,
            "errors": 0,
            "last_cycle_duration_ms": 0,
        }

    def reconcile(self) -> ReconciliationResult:
        """Perform one full pass. Never raises; failures are in the result."""
        start_time = time.time()
        result = ReconciliationResult(success=True)

        try:
            self._reconcile(result)
        except NsgControllerError as e:
            result.success = False
            result.errors.append(str(e))
            logger.error(f"Reconciliation failed: {e}")
        except Exception as e:
            result.success = False
            result.errors.append(f"{type(e).__name__}: {e}")
            logger.exception(f"Reconciliation failed unexpectedly: {e}")

        result.duration_ms = (time.time() - start_time) * 1000
        result.finished_at = datetime.now(timezone.utc)
        self._record(result)
        return result

    def _reconcile(self, result: ReconciliationResult):
        pods = self._fetch_target_pods()

        synthesis = synthesize_rules(pods, self.settings)
        for pod_key, reason in synthesis.skipped:
            result.skipped_pods.append(pod_key)
            METRICS["pods_skipped"].labels(reason=reason).inc()

        nsg_id = self.network.resolve_nsg_id()
        result.nsg_id = nsg_id

        group = self.network.get_security_group(nsg_id)
        final_rules = merge_rules(group.rules, synthesis.rules, self.settings.prefix)
        validate_rule_set(final_rules)

        result.managed_rules = len(synthesis.rules)
        result.foreign_rules = sum(
            1 for rule in final_rules if not is_managed_rule(rule, self.settings.prefix)
        )

        if final_rules == group.rules:
            logger.info(f"NSG {group.name} already up to date ({len(final_rules)} rules)")
            return

        logger.info(
            f"Updating NSG {group.name}: {result.foreign_rules} foreign rules, "
            f"{result.managed_rules} hostNetwork rules"
        )
        self.network.update_security_rules(group, final_rules)
        result.changed = True

    def _fetch_target_pods(self) -> List[PodSnapshot]:
        pods = self.pod_source.list_target_pods(self.settings.label_key)
        # list order isn't guaranteed; sort so priorities are stable across passes
        return sorted(pods, key=lambda pod: (pod.namespace, pod.name))

    def _record(self, result: ReconciliationResult):
        self.last_result = result
        self.metrics["cycles"] += 1
        self.metrics["last_cycle_duration_ms"] = result.duration_ms
        if result.changed:
            self.metrics["writes"] += 1
        if not result.success:
            self.metrics["errors"] += 1

        METRICS["reconciliation_latency"].observe(result.duration_ms)
        if not result.success:
            METRICS["reconciliations"].labels(result="error").inc()
            return

        self.last_success = result
        METRICS["reconciliations"].labels(
            result="updated" if result.changed else "unchanged"
        ).inc()
        METRICS["managed_rules"].set(result.managed_rules)
        METRICS["foreign_rules"].set(result.foreign_rules)
        METRICS["last_success_timestamp"].set(result.finished_at.timestamp())
