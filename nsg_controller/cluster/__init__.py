from .pod_watcher import PodEventHandler, PodWatcher, load_kubernetes_config

__all__ = ["PodEventHandler", "PodWatcher", "load_kubernetes_config"]
