"""Pytest configuration and fixtures."""

import textwrap
from typing import Any, Dict, List, Optional

import pytest

from decoder import object_ref
from managers.base import (
    ChangeAction,
    ChangeSet,
    ChangeSetEntry,
    PropagationPolicy,
    ResourceManager,
)


def manifest(text: str) -> str:
    """Dedent an inline YAML manifest."""
    return textwrap.dedent(text).lstrip("\n")


class RecordingManager(ResourceManager):
    """ResourceManager that records every call and can be told to fail."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}

    def fail_on(self, method: str, error: Exception) -> None:
        self.failures[method] = error

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def apply_all(self, objects: List[Dict[str, Any]]) -> ChangeSet:
        self.calls.append(("apply_all", [object_ref(o) for o in objects]))
        self._maybe_fail("apply_all")
        return ChangeSet(
            [ChangeSetEntry(object_ref(o), ChangeAction.CREATED) for o in objects]
        )

    async def wait(
        self, objects: List[Dict[str, Any]], interval: float, timeout: float
    ) -> None:
        self.calls.append(("wait", [object_ref(o) for o in objects], interval, timeout))
        self._maybe_fail("wait")

    async def delete_all(
        self,
        objects: List[Dict[str, Any]],
        propagation_policy: PropagationPolicy = PropagationPolicy.FOREGROUND,
    ) -> ChangeSet:
        self.calls.append(
            ("delete_all", [object_ref(o) for o in objects], propagation_policy)
        )
        self._maybe_fail("delete_all")
        return ChangeSet(
            [ChangeSetEntry(object_ref(o), ChangeAction.DELETED) for o in objects]
        )

    async def wait_for_termination(
        self, objects: List[Dict[str, Any]], interval: float, timeout: float
    ) -> None:
        self.calls.append(
            ("wait_for_termination", [object_ref(o) for o in objects], interval, timeout)
        )
        self._maybe_fail("wait_for_termination")


@pytest.fixture
def recording_manager():
    return RecordingManager()


@pytest.fixture
def namespace_yaml():
    return manifest(
        """
        apiVersion: v1
        kind: Namespace
        metadata:
          name: stageply-test
        """
    )


@pytest.fixture
def two_configmaps_yaml():
    """A namespace declared after the two config maps that live in it."""
    return manifest(
        """
        ---
        apiVersion: v1
        kind: ConfigMap
        metadata:
          name: config-one
          namespace: stageply-test
        data:
          foo: foo1
        ---
        apiVersion: v1
        kind: ConfigMap
        metadata:
          name: config-two
          namespace: stageply-test
        data:
          bar: bar1
        ---
        apiVersion: v1
        kind: Namespace
        metadata:
          name: stageply-test
        """
    )


@pytest.fixture
def one_configmap_yaml():
    return manifest(
        """
        ---
        apiVersion: v1
        kind: Namespace
        metadata:
          name: stageply-test
        ---
        apiVersion: v1
        kind: ConfigMap
        metadata:
          name: config-two
          namespace: stageply-test
        data:
          bar: bar1
        """
    )


@pytest.fixture
def crd_and_custom_resource_yaml():
    return manifest(
        """
        ---
        apiVersion: example.com/v1
        kind: Widget
        metadata:
          name: my-widget
          namespace: default
        spec:
          size: 3
        ---
        apiVersion: apiextensions.k8s.io/v1
        kind: CustomResourceDefinition
        metadata:
          name: widgets.example.com
        spec:
          group: example.com
          names:
            kind: Widget
            plural: widgets
          scope: Namespaced
        """
    )


def configmap(name: str, namespace: Optional[str] = "stageply-test") -> Dict[str, Any]:
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": metadata}
