"""
Kubernetes pod watcher.

Lists and watches every pod in the cluster and turns watch events into
add/update/delete callbacks, keeping a local cache so updates carry the
previous state of the pod. Also answers point-in-time queries for the
pods that opted in to NSG management.
"""

import logging
import threading
from typing import Dict, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from ..exceptions import ConfigurationError, RemoteOperationError
from ..models import PodSnapshot

logger = logging.getLogger(__name__)

WATCH_TIMEOUT_SECONDS = 300
RECONNECT_DELAY_SECONDS = 5
HTTP_GONE = 410


def load_kubernetes_config(kubeconfig: str = ""):
    """Load an explicit kubeconfig, else in-cluster config, else the default kubeconfig."""
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig)
            return
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
    except (config.ConfigException, OSError) as e:
        raise ConfigurationError(f"Unable to load Kubernetes configuration: {e}") from e


class PodEventHandler:
    """Receiver of pod events. Implementations must return quickly."""

    def on_pod_added(self, pod: PodSnapshot):
        pass

    def on_pod_updated(self, old: PodSnapshot, new: PodSnapshot):
        pass

    def on_pod_deleted(self, pod: PodSnapshot):
        pass


class PodWatcher:
    def __init__(
        self,
        core_api: Optional[client.CoreV1Api] = None,
        handler: Optional[PodEventHandler] = None,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ):
        self.core = core_api or client.CoreV1Api()
        self.handler = handler or PodEventHandler()
        self.watch_timeout = watch_timeout
        self.reconnect_delay = reconnect_delay
        self.resource_version: Optional[str] = None
        self.synced = False
        self._cache: Dict[str, PodSnapshot] = {}
        self._stopped = threading.Event()
        self._watch: Optional[watch.Watch] = None
        self._thread: Optional[threading.Thread] = None

    def list_target_pods(self, label_key: str) -> List[PodSnapshot]:
        """Pods in every namespace labelled ``<label_key>=true``."""
        try:
            pods = self.core.list_pod_for_all_namespaces(label_selector=f"{label_key}=true")
        except ApiException as e:
            raise RemoteOperationError(f"Failed to list target pods: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise RemoteOperationError(f"Failed to list target pods: {e}") from e
        return [PodSnapshot.from_v1_pod(pod) for pod in pods.items]

    def sync(self) -> int:
        """Initial list. Fills the cache without emitting events."""
        pods = self._list_all()
        self._cache = {pod.key: pod for pod in pods}
        self.synced = True
        logger.info(f"Pod cache synced: {len(self._cache)} pods at resourceVersion {self.resource_version}")
        return len(self._cache)

    def relist(self):
        """List again and emit events for whatever changed since the cache was built."""
        pods = {pod.key: pod for pod in self._list_all()}

        for key, pod in pods.items():
            old = self._cache.get(key)
            if old is None:
                self.handler.on_pod_added(pod)
            elif old != pod:
                self.handler.on_pod_updated(old, pod)
        for key, old in self._cache.items():
            if key not in pods:
                self.handler.on_pod_deleted(old)

        self._cache = pods
        logger.info(f"Pod cache relisted: {len(pods)} pods")

    def _list_all(self) -> List[PodSnapshot]:
        try:
            pods = self.core.list_pod_for_all_namespaces()
        except ApiException as e:
            raise RemoteOperationError(f"Failed to list pods: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise RemoteOperationError(f"Failed to list pods: {e}") from e
        self.resource_version = pods.metadata.resource_version
        return [PodSnapshot.from_v1_pod(pod) for pod in pods.items]

    def start(self):
        if not self.synced:
            self.sync()
        self._stopped.clear()
        self._thread = threading.Thread(target=self.run, name="pod-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stopped.set()
        if self._watch is not None:
            self._watch.stop()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run(self):
        """Keep a watch open until stopped, reconnecting on failures."""
        while not self._stopped.is_set():
            w = watch.Watch()
            self._watch = w
            try:
                for event in w.stream(
                    self.core.list_pod_for_all_namespaces,
                    resource_version=self.resource_version,
                    timeout_seconds=self.watch_timeout,
                ):
                    self.handle_event(event)
                    if self._stopped.is_set():
                        break
            except ApiException as e:
                if e.status == HTTP_GONE:
                    logger.info("Watch resourceVersion expired, relisting pods")
                    self._relist_safely()
                else:
                    logger.error(f"Kubernetes API error during pod watch: {e.status} {e.reason}")
                    self._stopped.wait(self.reconnect_delay)
            except Exception as e:
                logger.error(f"Unexpected error during pod watch: {e}")
                self._stopped.wait(self.reconnect_delay)
            finally:
                w.stop()
                self._watch = None

    def _relist_safely(self):
        try:
            self.relist()
        except RemoteOperationError as e:
            logger.error(f"Relist failed: {e}")
            self._stopped.wait(self.reconnect_delay)
        except Exception as e:
            logger.exception(f"Unexpected error during relist: {e}")
            self._stopped.wait(self.reconnect_delay)

    def handle_event(self, event):
        """Apply one watch event to the cache and dispatch it."""
        event_type = event["type"]
        obj = event["object"]

        if event_type == "ERROR":
            code = obj.get("code") if isinstance(obj, dict) else None
            raise ApiException(status=code, reason="watch error event")

        metadata = getattr(obj, "metadata", None)
        if metadata is not None and metadata.resource_version:
            self.resource_version = metadata.resource_version
        if event_type == "BOOKMARK":
            return

        pod = PodSnapshot.from_v1_pod(obj)
        if event_type in ("ADDED", "MODIFIED"):
            old = self._cache.get(pod.key)
            self._cache[pod.key] = pod
            if old is None:
                self.handler.on_pod_added(pod)
            else:
                self.handler.on_pod_updated(old, pod)
        elif event_type == "DELETED":
            self._cache.pop(pod.key, None)
            self.handler.on_pod_deleted(pod)
        else:
            logger.debug(f"Ignoring pod watch event of type {event_type}")
