"""Decides which pods get an NSG rule."""

from ..config import DEFAULT_TARGET_LABEL
from ..models import PodSnapshot

TARGET_LABEL_VALUE = "true"


def is_target(pod: PodSnapshot, label_key: str = DEFAULT_TARGET_LABEL) -> bool:
    """
    A pod is a target when it uses host networking, opts in with
    ``<label_key>: "true"`` and has been scheduled onto a node.
    """
    return (
        pod.host_network
        and pod.labels.get(label_key) == TARGET_LABEL_VALUE
        and pod.node_name != ""
    )
