"""
Inventory Model - Records which objects a reconciliation cycle manages.

An inventory is built fresh on every reconcile from the full declared set and
handed back to the caller, who passes it in again on the next cycle so that
objects dropped from the declaration can be pruned.
"""

import json
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Iterator, List, Set

import yaml

from decoder import DEFAULT_NAMESPACE, is_cluster_scoped, split_api_version
from errors import InventoryError

ITEM_FIELDS = ("group", "kind", "version", "namespace", "name")


@dataclass(frozen=True)
class ObjectIdentity:
    """Identity of an object independent of its API version."""

    group: str
    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}_{self.name}_{self.group}_{self.kind}"


@dataclass(frozen=True)
class InventoryItem:
    """An object identity plus the API version observed at apply time."""

    group: str
    kind: str
    version: str
    namespace: str
    name: str

    @property
    def identity(self) -> ObjectIdentity:
        return ObjectIdentity(
            group=self.group,
            kind=self.kind,
            namespace=self.namespace,
            name=self.name,
        )

    @property
    def id(self) -> str:
        return str(self.identity)

    @property
    def api_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "InventoryItem":
        """Build an item from a decoded object."""
        group, version = split_api_version(obj["apiVersion"])
        metadata = obj["metadata"]
        return cls(
            group=group,
            kind=obj["kind"],
            version=version,
            namespace=metadata.get("namespace") or "",
            name=metadata["name"],
        )

    def to_reference(self) -> Dict[str, Any]:
        """Minimal object addressing this item for deletion or lookups."""
        metadata = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }


@dataclass
class Inventory:
    """Ordered set of items managed by one reconciliation cycle."""

    items: List[InventoryItem] = field(default_factory=list)

    @classmethod
    def build(cls, objects: List[Dict[str, Any]]) -> "Inventory":
        """
        Build an inventory from decoded objects, in input order.

        Later duplicates of an identity already seen are dropped.
        """
        return cls.build_from_items(
            [InventoryItem.from_object(obj) for obj in objects]
        )

    def identities(self) -> Set[ObjectIdentity]:
        return {item.identity for item in self.items}

    def items_to_remove(self, other: "Inventory") -> List[Dict[str, Any]]:
        """
        References for every item in this inventory that is absent from other.

        Items that only exist in other are never part of the result.

        Args:
            other: The newer inventory

        Returns:
            Ordered list of minimal object references to delete
        """
        keep = other.identities()
        return [
            item.to_reference() for item in self.items if item.identity not in keep
        ]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[InventoryItem]:
        return iter(self.items)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, InventoryItem):
            item = item.identity
        if not isinstance(item, ObjectIdentity):
            return False
        return item in self.identities()

    # Serialization

    def to_dict(self) -> Dict[str, Any]:
        return {"items": [asdict(item) for item in self.items]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Inventory":
        """
        Load an inventory from its dict form.

        Raises:
            InventoryError: If the payload is not a valid inventory
        """
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise InventoryError("inventory must be a mapping with an 'items' list")

        items = []
        for index, raw in enumerate(data["items"]):
            if not isinstance(raw, dict):
                raise InventoryError(f"inventory item {index} is not a mapping")
            missing = [f for f in ITEM_FIELDS if f not in raw]
            if missing:
                raise InventoryError(
                    f"inventory item {index} missing fields: {', '.join(missing)}"
                )
            if not raw["kind"] or not raw["name"]:
                raise InventoryError(f"inventory item {index} has empty kind or name")
            item = InventoryItem(**{f: str(raw[f] or "") for f in ITEM_FIELDS})
            # Files saved before namespaces were defaulted hold "" for these
            if not item.namespace and not is_cluster_scoped(item.to_reference()):
                item = replace(item, namespace=DEFAULT_NAMESPACE)
            items.append(item)
        return cls.build_from_items(items)

    @classmethod
    def build_from_items(cls, items: List[InventoryItem]) -> "Inventory":
        """Build an inventory from items, dropping duplicate identities."""
        seen: Set[ObjectIdentity] = set()
        unique = []
        for item in items:
            if item.identity not in seen:
                seen.add(item.identity)
                unique.append(item)
        return cls(items=unique)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "Inventory":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InventoryError(f"inventory is not valid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, text: str) -> "Inventory":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise InventoryError(f"inventory is not valid YAML: {e}") from e
        return cls.from_dict(data)
