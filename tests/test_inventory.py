"""Unit tests for inventory.py - Inventory model and prune diff."""

import json

import pytest
import yaml

from conftest import configmap
from decoder import decode_objects
from errors import InventoryError
from inventory import Inventory, InventoryItem, ObjectIdentity


def inventory_from_yaml(text: str) -> Inventory:
    return Inventory.build(decode_objects(text))


# ==================== InventoryItem Tests ====================


class TestInventoryItem:
    """Tests for InventoryItem."""

    def test_from_core_object(self):
        item = InventoryItem.from_object(configmap("settings", "apps"))
        assert item == InventoryItem(
            group="", kind="ConfigMap", version="v1", namespace="apps", name="settings"
        )

    def test_from_grouped_object(self):
        obj = {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "web", "namespace": "prod"},
        }
        item = InventoryItem.from_object(obj)
        assert item.group == "apps"
        assert item.version == "v1"
        assert item.api_version == "apps/v1"

    def test_cluster_scoped_has_empty_namespace(self):
        obj = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "prod"}}
        assert InventoryItem.from_object(obj).namespace == ""

    def test_identity_ignores_version(self):
        v1 = InventoryItem("example.com", "Widget", "v1", "default", "w")
        v2 = InventoryItem("example.com", "Widget", "v2", "default", "w")
        assert v1 != v2
        assert v1.identity == v2.identity
        assert v1.id == v2.id

    def test_id_format(self):
        item = InventoryItem("apps", "Deployment", "v1", "prod", "web")
        assert item.id == "prod_web_apps_Deployment"

    def test_items_are_immutable(self):
        item = InventoryItem("", "ConfigMap", "v1", "default", "c")
        with pytest.raises(AttributeError):
            item.name = "other"

    def test_to_reference_namespaced(self):
        item = InventoryItem("apps", "Deployment", "v1", "prod", "web")
        assert item.to_reference() == {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "web", "namespace": "prod"},
        }

    def test_to_reference_cluster_scoped(self):
        item = InventoryItem("", "Namespace", "v1", "", "prod")
        assert item.to_reference() == {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": "prod"},
        }


# ==================== Inventory.build Tests ====================


class TestInventoryBuild:
    """Tests for building inventories from objects."""

    def test_preserves_input_order(self):
        inv = Inventory.build([configmap("b"), configmap("a"), configmap("c")])
        assert [item.name for item in inv] == ["b", "a", "c"]

    def test_drops_duplicate_identities(self):
        inv = Inventory.build([configmap("a"), configmap("b"), configmap("a")])
        assert [item.name for item in inv] == ["a", "b"]

    def test_same_name_different_namespace_kept(self):
        inv = Inventory.build([configmap("a", "one"), configmap("a", "two")])
        assert len(inv) == 2

    def test_deterministic(self, two_configmaps_yaml):
        first = inventory_from_yaml(two_configmaps_yaml)
        second = inventory_from_yaml(two_configmaps_yaml)
        assert first == second

    def test_contains_by_identity(self):
        inv = Inventory.build([configmap("a")])
        assert ObjectIdentity("", "ConfigMap", "stageply-test", "a") in inv
        assert InventoryItem("", "ConfigMap", "v2", "stageply-test", "a") in inv
        assert ObjectIdentity("", "ConfigMap", "stageply-test", "b") not in inv
        assert "a" not in inv


# ==================== items_to_remove Tests ====================


class TestItemsToRemove:
    """Tests for the prune diff."""

    def test_dropped_configmap(self, two_configmaps_yaml, one_configmap_yaml):
        two_maps = inventory_from_yaml(two_configmaps_yaml)
        one_map = inventory_from_yaml(one_configmap_yaml)

        to_remove = two_maps.items_to_remove(one_map)

        assert [r["metadata"]["name"] for r in to_remove] == ["config-one"]

    def test_identical_sets_remove_nothing(self):
        a = Inventory.build([configmap("x"), configmap("y")])
        b = Inventory.build([configmap("y"), configmap("x")])
        assert a.items_to_remove(b) == []

    def test_empty_other_removes_everything(self):
        a = Inventory.build([configmap("x"), configmap("y")])
        to_remove = a.items_to_remove(Inventory())
        assert [r["metadata"]["name"] for r in to_remove] == ["x", "y"]

    def test_added_items_are_not_removed(self):
        a = Inventory.build([configmap("x")])
        b = Inventory.build([configmap("x"), configmap("y")])
        assert a.items_to_remove(b) == []

    def test_version_change_is_not_a_removal(self):
        a = Inventory([InventoryItem("example.com", "Widget", "v1", "ns", "w")])
        b = Inventory([InventoryItem("example.com", "Widget", "v2", "ns", "w")])
        assert a.items_to_remove(b) == []

    def test_kind_change_is_a_removal(self):
        a = Inventory([InventoryItem("", "ConfigMap", "v1", "ns", "shared")])
        b = Inventory([InventoryItem("", "Secret", "v1", "ns", "shared")])
        to_remove = a.items_to_remove(b)
        assert len(to_remove) == 1
        assert to_remove[0]["kind"] == "ConfigMap"

    def test_reference_uses_previous_version(self):
        a = Inventory([InventoryItem("example.com", "Widget", "v1beta1", "ns", "w")])
        to_remove = a.items_to_remove(Inventory())
        assert to_remove[0]["apiVersion"] == "example.com/v1beta1"

    def test_result_is_exactly_the_difference(self):
        a = Inventory.build([configmap(n) for n in ["a", "b", "c", "d"]])
        b = Inventory.build([configmap(n) for n in ["b", "d", "e"]])
        removed = {r["metadata"]["name"] for r in a.items_to_remove(b)}
        assert removed == {"a", "c"}


# ==================== Serialization Tests ====================


class TestInventorySerialization:
    """Tests for persisting inventories."""

    def test_to_dict_shape(self):
        inv = Inventory.build([configmap("a")])
        assert inv.to_dict() == {
            "items": [
                {
                    "group": "",
                    "kind": "ConfigMap",
                    "version": "v1",
                    "namespace": "stageply-test",
                    "name": "a",
                }
            ]
        }

    def test_json_round_trip_keeps_order(self):
        inv = Inventory.build([configmap("b"), configmap("a")])
        restored = Inventory.from_json(inv.to_json())
        assert restored == inv

    def test_from_dict_rejects_missing_items(self):
        with pytest.raises(InventoryError):
            Inventory.from_dict({"objects": []})

    def test_from_dict_rejects_non_mapping(self):
        with pytest.raises(InventoryError):
            Inventory.from_dict(None)

    def test_from_dict_rejects_missing_fields(self):
        with pytest.raises(InventoryError, match="missing fields: version"):
            Inventory.from_dict(
                {"items": [{"group": "", "kind": "ConfigMap", "namespace": "", "name": "a"}]}
            )

    def test_from_dict_rejects_empty_name(self):
        item = {"group": "", "kind": "ConfigMap", "version": "v1", "namespace": "", "name": ""}
        with pytest.raises(InventoryError):
            Inventory.from_dict({"items": [item]})

    def test_from_dict_treats_null_namespace_as_empty(self):
        item = {
            "group": None,
            "kind": "Namespace",
            "version": "v1",
            "namespace": None,
            "name": "prod",
        }
        inv = Inventory.from_dict({"items": [item]})
        assert inv.items[0].namespace == ""
        assert inv.items[0].group == ""

    def test_from_json_rejects_invalid_json(self):
        with pytest.raises(InventoryError):
            Inventory.from_json("{not json")

    def test_to_json_is_valid_json(self):
        inv = Inventory.build([configmap("a")])
        assert json.loads(inv.to_json())["items"][0]["name"] == "a"

    def test_from_dict_defaults_empty_namespace_of_namespaced_kind(self):
        item = {
            "group": "",
            "kind": "ConfigMap",
            "version": "v1",
            "namespace": "",
            "name": "settings",
        }
        inv = Inventory.from_dict({"items": [item]})
        assert inv.items[0].namespace == "default"

        text = "apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: settings\n"
        declared = Inventory.build(decode_objects(text))
        assert inv.items_to_remove(declared) == []

    def test_from_yaml_round_trip(self):
        inv = Inventory.build([configmap("a")])
        assert Inventory.from_yaml(yaml.safe_dump(inv.to_dict())) == inv

    def test_from_yaml_rejects_invalid_yaml(self):
        with pytest.raises(InventoryError, match="not valid YAML"):
            Inventory.from_yaml("items: [unclosed\n")
