"""
Object Classifier - Splits declared objects into two apply stages.

Stage one holds the cluster definitions other objects may need before they
can be admitted (namespaces and custom resource definitions). Everything
else is stage two.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from decoder import decode_objects, split_api_version

CLUSTER_DEFINITION_KINDS = {
    ("", "namespace"),
    ("apiextensions.k8s.io", "customresourcedefinition"),
}


def is_cluster_definition(obj: Dict[str, Any]) -> bool:
    """Check whether obj is a Namespace or a CustomResourceDefinition."""
    group, _ = split_api_version(obj.get("apiVersion", ""))
    kind = obj.get("kind", "").lower()
    return (group, kind) in CLUSTER_DEFINITION_KINDS


@dataclass
class StagedResources:
    """Declared objects split into ordered apply stages."""

    stage_one: List[Dict[str, Any]] = field(default_factory=list)
    stage_two: List[Dict[str, Any]] = field(default_factory=list)

    def all_objects(self) -> List[Dict[str, Any]]:
        """Stage one objects followed by stage two objects."""
        return self.stage_one + self.stage_two


def classify(objects: List[Dict[str, Any]]) -> StagedResources:
    """Partition objects into stages, keeping declaration order in each."""
    staged = StagedResources()
    for obj in objects:
        if is_cluster_definition(obj):
            staged.stage_one.append(obj)
        else:
            staged.stage_two.append(obj)
    return staged


def get_resource_stages(text: str) -> StagedResources:
    """Decode declaration text and classify the result."""
    return classify(decode_objects(text))
