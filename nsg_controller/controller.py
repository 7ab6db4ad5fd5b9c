"""
Host-network NSG controller.

Wires pod watch events to the event coalescer and the coalescer to the
reconciliation engine. Watch callbacks only ever signal the coalescer;
reconciliation passes run on the coalescer's own thread.
"""

import logging
from typing import Any, Dict, Optional

from .cluster import PodEventHandler, PodWatcher
from .config import DEFAULT_COOLDOWN_SECONDS, DEFAULT_TARGET_LABEL
from .firewall import is_target
from .metrics import METRICS
from .models import PodSnapshot
from .reconciler import EventCoalescer, ReconciliationEngine

logger = logging.getLogger(__name__)


class HostNetworkNsgController(PodEventHandler):
    def __init__(
        self,
        watcher: PodWatcher,
        reconciler: ReconciliationEngine,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        label_key: str = DEFAULT_TARGET_LABEL,
    ):
        self.watcher = watcher
        self.watcher.handler = self
        self.reconciler = reconciler
        self.label_key = label_key
        self.coalescer = EventCoalescer(self._reconcile, cooldown)
        self.running = False

    def run(self):
        """
        Sync the pod cache, start the coalescer (which reconciles at once)
        and then start streaming pod events.
        """
        logger.info("NsgController starting")
        self.watcher.sync()
        self.coalescer.start()
        self.watcher.start()
        self.running = True
        logger.info("NsgController started")

    def stop(self, timeout: Optional[float] = 30):
        logger.info("NsgController stopping")
        self.watcher.stop(timeout)
        self.coalescer.stop(timeout)
        self.running = False

    def _reconcile(self) -> bool:
        logger.info("Updating NSG...")
        return self.reconciler.reconcile().success

    def signal_update(self, event: str, pod: PodSnapshot):
        logger.info(f"Update signaled by {event} pod {pod.key}")
        METRICS["signals"].labels(event=event).inc()
        self.coalescer.signal()

    def on_pod_added(self, pod: PodSnapshot):
        if is_target(pod, self.label_key):
            self.signal_update("added", pod)

    def on_pod_updated(self, old: PodSnapshot, new: PodSnapshot):
        # only a node (re)assignment moves the rule's destination IP
        if is_target(new, self.label_key) and old.node_name != new.node_name:
            self.signal_update("updated", new)

    def on_pod_deleted(self, pod: PodSnapshot):
        if is_target(pod, self.label_key):
            self.signal_update("deleted", pod)

    @property
    def ready(self) -> bool:
        return self.reconciler.last_success is not None

    def status(self) -> Dict[str, Any]:
        last = self.reconciler.last_result
        last_success = self.reconciler.last_success
        return {
            "running": self.running,
            "ready": self.ready,
            "coalescer": self.coalescer.snapshot(),
            "last_result": last.to_dict() if last else None,
            "last_success": last_success.to_dict() if last_success else None,
            "engine": dict(self.reconciler.metrics),
        }
