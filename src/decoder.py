"""
Object Decoder - Multi-document YAML to Kubernetes-style objects.

Decodes declaration text into plain dict objects and validates each one
against a minimal object schema before anything is sent to a cluster.
"""

import copy
import logging
from typing import Any, Dict, List, Tuple

import yaml
from jsonschema import Draft7Validator

from errors import DecodeError

logger = logging.getLogger(__name__)

OBJECT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["apiVersion", "kind", "metadata"],
    "properties": {
        "apiVersion": {"type": "string", "minLength": 1},
        "kind": {"type": "string", "minLength": 1},
        "metadata": {
            "type": "object",
            "required": ["name"],
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "namespace": {"type": "string"},
            },
        },
    },
}

# Fields the API server owns; submitting them with a server-side apply
# either fails or fights the server.
SERVER_METADATA_FIELDS = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
)

DEFAULT_NAMESPACE = "default"

# Built-in kinds that live outside any namespace, keyed by (group, lower-case
# kind). Other kinds without a namespace are placed in DEFAULT_NAMESPACE; the
# resource manager ignores the namespace for cluster-scoped custom kinds, so
# the inventory identity stays the same across cycles either way.
CLUSTER_SCOPED_KINDS = {
    ("", "namespace"),
    ("", "node"),
    ("", "persistentvolume"),
    ("admissionregistration.k8s.io", "mutatingwebhookconfiguration"),
    ("admissionregistration.k8s.io", "validatingwebhookconfiguration"),
    ("apiextensions.k8s.io", "customresourcedefinition"),
    ("apiregistration.k8s.io", "apiservice"),
    ("certificates.k8s.io", "certificatesigningrequest"),
    ("flowcontrol.apiserver.k8s.io", "flowschema"),
    ("flowcontrol.apiserver.k8s.io", "prioritylevelconfiguration"),
    ("networking.k8s.io", "ingressclass"),
    ("node.k8s.io", "runtimeclass"),
    ("rbac.authorization.k8s.io", "clusterrole"),
    ("rbac.authorization.k8s.io", "clusterrolebinding"),
    ("scheduling.k8s.io", "priorityclass"),
    ("storage.k8s.io", "csidriver"),
    ("storage.k8s.io", "csinode"),
    ("storage.k8s.io", "storageclass"),
    ("storage.k8s.io", "volumeattachment"),
}

_validator = Draft7Validator(OBJECT_SCHEMA)


def split_api_version(api_version: str) -> Tuple[str, str]:
    """
    Split an apiVersion into (group, version).

    The core group has no prefix, so "v1" yields ("", "v1").
    """
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


def object_ref(obj: Dict[str, Any]) -> str:
    """Readable reference for an object, e.g. ConfigMap/default/settings."""
    metadata = obj.get("metadata") or {}
    kind = obj.get("kind", "")
    namespace = metadata.get("namespace")
    if namespace:
        return f"{kind}/{namespace}/{metadata.get('name', '')}"
    return f"{kind}/{metadata.get('name', '')}"


def is_cluster_scoped(obj: Dict[str, Any]) -> bool:
    """Check whether obj is a built-in kind that has no namespace."""
    group, _ = split_api_version(obj.get("apiVersion", ""))
    return (group, obj.get("kind", "").lower()) in CLUSTER_SCOPED_KINDS


def _is_list(doc: Dict[str, Any]) -> bool:
    kind = doc.get("kind")
    return (
        isinstance(kind, str)
        and kind.endswith("List")
        and isinstance(doc.get("items"), list)
    )


def _validate(obj: Any, position: str) -> None:
    errors = sorted(_validator.iter_errors(obj), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return

    messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        messages.append(f"{path}: {error.message}")
    raise DecodeError(f"invalid object in {position}: {'; '.join(messages)}")


def normalize_object(obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of obj with server-populated fields removed.

    Namespaced objects always come back with an explicit namespace, so an
    object declared with and without "namespace: default" is one object.
    """
    result = copy.deepcopy(obj)
    result.pop("status", None)
    metadata = result["metadata"]
    for key in SERVER_METADATA_FIELDS:
        metadata.pop(key, None)

    if is_cluster_scoped(result):
        metadata.pop("namespace", None)
    elif not metadata.get("namespace"):
        metadata["namespace"] = DEFAULT_NAMESPACE
    return result


def decode_objects(text: str) -> List[Dict[str, Any]]:
    """
    Decode a multi-document YAML stream into a list of objects.

    Empty documents are skipped and ``*List`` documents are flattened into
    their items. The whole call fails on the first malformed document.

    Args:
        text: YAML declaration text

    Returns:
        Ordered list of normalized object dicts

    Raises:
        DecodeError: If the text is not valid YAML or an object is malformed
    """
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        raise DecodeError(f"error decoding yaml: {e}") from e

    objects: List[Dict[str, Any]] = []
    for index, doc in enumerate(documents):
        if doc is None:
            continue

        if isinstance(doc, dict) and _is_list(doc):
            for item_index, item in enumerate(doc["items"]):
                position = f"document {index} item {item_index}"
                _validate(item, position)
                objects.append(normalize_object(item))
            continue

        _validate(doc, f"document {index}")
        objects.append(normalize_object(doc))

    logger.debug(f"Decoded {len(objects)} objects from {len(documents)} documents")
    return objects
