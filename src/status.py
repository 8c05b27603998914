"""
Convergence status for live objects.

Computes whether an object read back from the cluster has reached the state
it was declared with, using the conditions and counters the built-in
controllers publish.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ResourceStatus(Enum):
    """Convergence status of a live object."""

    CURRENT = "Current"
    IN_PROGRESS = "InProgress"
    FAILED = "Failed"
    NOT_FOUND = "NotFound"


def _conditions(obj: Dict[str, Any]) -> Dict[str, str]:
    conditions = (obj.get("status") or {}).get("conditions") or []
    return {
        c.get("type"): c.get("status")
        for c in conditions
        if isinstance(c, dict) and c.get("type")
    }


_REPLICA_COUNTERS = {
    "Deployment": ("updatedReplicas", "readyReplicas", "availableReplicas"),
    "StatefulSet": ("updatedReplicas", "readyReplicas"),
    "ReplicaSet": ("readyReplicas", "availableReplicas"),
}


def _replica_status(obj: Dict[str, Any]) -> ResourceStatus:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    desired = spec.get("replicas", 1)

    for counter in _REPLICA_COUNTERS[obj["kind"]]:
        if status.get(counter, 0) < desired:
            return ResourceStatus.IN_PROGRESS
    return ResourceStatus.CURRENT


def _daemonset_status(obj: Dict[str, Any]) -> ResourceStatus:
    status = obj.get("status") or {}
    desired = status.get("desiredNumberScheduled")
    if desired is None:
        return ResourceStatus.IN_PROGRESS
    if status.get("numberReady", 0) < desired:
        return ResourceStatus.IN_PROGRESS
    if status.get("updatedNumberScheduled", 0) < desired:
        return ResourceStatus.IN_PROGRESS
    return ResourceStatus.CURRENT


def _crd_status(obj: Dict[str, Any]) -> ResourceStatus:
    conditions = _conditions(obj)
    if conditions.get("NamesAccepted") == "False":
        return ResourceStatus.FAILED
    if conditions.get("Established") == "True":
        return ResourceStatus.CURRENT
    return ResourceStatus.IN_PROGRESS


def _namespace_status(obj: Dict[str, Any]) -> ResourceStatus:
    phase = (obj.get("status") or {}).get("phase")
    if phase == "Active":
        return ResourceStatus.CURRENT
    return ResourceStatus.IN_PROGRESS


def _job_status(obj: Dict[str, Any]) -> ResourceStatus:
    conditions = _conditions(obj)
    if conditions.get("Failed") == "True":
        return ResourceStatus.FAILED
    if conditions.get("Complete") == "True":
        return ResourceStatus.CURRENT
    return ResourceStatus.IN_PROGRESS


def _pod_status(obj: Dict[str, Any]) -> ResourceStatus:
    phase = (obj.get("status") or {}).get("phase")
    if phase == "Succeeded":
        return ResourceStatus.CURRENT
    if phase == "Failed":
        return ResourceStatus.FAILED
    if _conditions(obj).get("Ready") == "True":
        return ResourceStatus.CURRENT
    return ResourceStatus.IN_PROGRESS


def _generic_status(obj: Dict[str, Any]) -> ResourceStatus:
    conditions = _conditions(obj)
    if conditions.get("Stalled") == "True":
        return ResourceStatus.FAILED
    if conditions.get("Ready") == "False" or conditions.get("Available") == "False":
        return ResourceStatus.IN_PROGRESS
    if conditions.get("Reconciling") == "True":
        return ResourceStatus.IN_PROGRESS
    return ResourceStatus.CURRENT


_KIND_RULES = {
    "CustomResourceDefinition": _crd_status,
    "Namespace": _namespace_status,
    "Deployment": _replica_status,
    "StatefulSet": _replica_status,
    "ReplicaSet": _replica_status,
    "DaemonSet": _daemonset_status,
    "Job": _job_status,
    "Pod": _pod_status,
}


def compute_status(obj: Optional[Dict[str, Any]]) -> ResourceStatus:
    """
    Compute the convergence status of a live object.

    Args:
        obj: The object as read from the cluster, or None if it does not exist

    Returns:
        The ResourceStatus of the object
    """
    if obj is None:
        return ResourceStatus.NOT_FOUND

    metadata = obj.get("metadata") or {}
    if metadata.get("deletionTimestamp"):
        return ResourceStatus.IN_PROGRESS

    generation = metadata.get("generation")
    observed = (obj.get("status") or {}).get("observedGeneration")
    if generation is not None and observed is not None and observed < generation:
        return ResourceStatus.IN_PROGRESS

    rule = _KIND_RULES.get(obj.get("kind", ""), _generic_status)
    return rule(obj)


def is_current(obj: Optional[Dict[str, Any]]) -> bool:
    return compute_status(obj) is ResourceStatus.CURRENT
