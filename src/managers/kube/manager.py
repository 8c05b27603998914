"""
Kubernetes Resource Manager - Implements ResourceManager with server-side apply.

Uses the dynamic client from the official kubernetes package so that any
kind the API server knows about, including kinds defined by custom resource
definitions applied earlier in the same run, can be applied and deleted.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional, Type

import urllib3
import yaml
from kubernetes import client
from kubernetes import config as kube_config
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import NotFoundError, ResourceNotFoundError

from config import KubeConfig
from decoder import DEFAULT_NAMESPACE, object_ref
from errors import (
    ApplyError,
    ConvergenceTimeoutError,
    DeleteError,
    ReconcileError,
    TerminationTimeoutError,
)
from managers.base import (
    ChangeAction,
    ChangeSet,
    ChangeSetEntry,
    PropagationPolicy,
    ResourceManager,
)
from status import ResourceStatus, compute_status

logger = logging.getLogger(__name__)

DEFAULT_FIELD_MANAGER = "stageply"

# Read failures worth retrying on the next poll; anything else fails the wait
TRANSIENT_STATUSES = (429,)


def _gvk(obj: Dict[str, Any]) -> str:
    return f"{obj.get('apiVersion', '')}, Kind={obj.get('kind', '')}"


def _is_transient(error: Exception) -> bool:
    if isinstance(error, ApiException):
        status = error.status or 0
        return status >= 500 or status in TRANSIENT_STATUSES
    return isinstance(error, (urllib3.exceptions.HTTPError, ConnectionError))


class KubernetesResourceManager(ResourceManager):
    """
    Resource manager backed by a Kubernetes API server.

    Blocking client calls run in worker threads, at most max_concurrency at
    a time, so a batch of objects is applied or polled concurrently while
    the reconciler still sees a single awaitable per batch.
    """

    def __init__(
        self,
        dynamic_client: DynamicClient,
        field_manager: str = DEFAULT_FIELD_MANAGER,
        max_concurrency: int = 10,
    ):
        self._client = dynamic_client
        self.field_manager = field_manager
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._discovery_lock = threading.Lock()

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: str,
        context: Optional[str] = None,
        field_manager: str = DEFAULT_FIELD_MANAGER,
    ) -> "KubernetesResourceManager":
        """
        Create a manager from the contents of a kubeconfig file.

        Args:
            kubeconfig: Kubeconfig YAML text
            context: Context to use instead of the current-context
            field_manager: Field manager name for server-side apply
        """
        configuration = client.Configuration()
        kube_config.load_kube_config_from_dict(
            yaml.safe_load(kubeconfig),
            context=context,
            client_configuration=configuration,
        )
        api_client = client.ApiClient(configuration=configuration)
        return cls(DynamicClient(api_client), field_manager=field_manager)

    @classmethod
    def from_config(
        cls, kube: KubeConfig, field_manager: str = DEFAULT_FIELD_MANAGER
    ) -> "KubernetesResourceManager":
        """Create a manager from a KubeConfig, loading in-cluster if requested."""
        configuration = client.Configuration()
        if kube.in_cluster:
            kube_config.load_incluster_config(client_configuration=configuration)
        else:
            kube_config.load_kube_config(
                config_file=kube.kubeconfig,
                context=kube.context,
                client_configuration=configuration,
            )
        api_client = client.ApiClient(configuration=configuration)
        return cls(DynamicClient(api_client), field_manager=field_manager)

    # Blocking helpers, run via asyncio.to_thread

    def _resource_for(self, obj: Dict[str, Any]):
        api_version = obj["apiVersion"]
        kind = obj["kind"]
        try:
            return self._client.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError:
            pass

        # The kind may have been registered by a CRD applied moments ago.
        # One worker refreshes; the rest find the kind once the lock frees.
        with self._discovery_lock:
            try:
                return self._client.resources.get(api_version=api_version, kind=kind)
            except ResourceNotFoundError:
                logger.debug(f"Refreshing discovery cache for {api_version}/{kind}")
                self._client.resources.invalidate_cache()
            return self._client.resources.get(api_version=api_version, kind=kind)

    @staticmethod
    def _namespace_for(resource, obj: Dict[str, Any]) -> Optional[str]:
        if not resource.namespaced:
            return None
        return obj["metadata"].get("namespace") or DEFAULT_NAMESPACE

    def _get(self, resource, name: str, namespace: Optional[str]):
        try:
            return self._client.get(resource, name=name, namespace=namespace).to_dict()
        except NotFoundError:
            return None

    def _apply_one(self, obj: Dict[str, Any]) -> ChangeSetEntry:
        resource = self._resource_for(obj)
        name = obj["metadata"]["name"]
        namespace = self._namespace_for(resource, obj)

        body = dict(obj)
        if namespace:
            body["metadata"] = dict(obj["metadata"], namespace=namespace)

        existing = self._get(resource, name, namespace)
        applied = self._client.server_side_apply(
            resource,
            body=body,
            name=name,
            namespace=namespace,
            field_manager=self.field_manager,
            force_conflicts=True,
        ).to_dict()

        if existing is None:
            action = ChangeAction.CREATED
        elif existing["metadata"].get("resourceVersion") != applied["metadata"].get(
            "resourceVersion"
        ):
            action = ChangeAction.CONFIGURED
        else:
            action = ChangeAction.UNCHANGED

        return ChangeSetEntry(object_ref(body), action, _gvk(obj))

    def _delete_one(
        self, obj: Dict[str, Any], propagation_policy: PropagationPolicy
    ) -> ChangeSetEntry:
        subject = object_ref(obj)
        try:
            resource = self._resource_for(obj)
        except ResourceNotFoundError:
            # The kind itself is gone, so the object is too
            return ChangeSetEntry(subject, ChangeAction.SKIPPED, _gvk(obj))

        try:
            self._client.delete(
                resource,
                name=obj["metadata"]["name"],
                namespace=self._namespace_for(resource, obj),
                body={
                    "apiVersion": "v1",
                    "kind": "DeleteOptions",
                    "propagationPolicy": propagation_policy.value,
                },
            )
        except NotFoundError:
            return ChangeSetEntry(subject, ChangeAction.SKIPPED, _gvk(obj))
        return ChangeSetEntry(subject, ChangeAction.DELETED, _gvk(obj))

    def _read_status(self, obj: Dict[str, Any]) -> ResourceStatus:
        try:
            resource = self._resource_for(obj)
        except ResourceNotFoundError:
            return ResourceStatus.NOT_FOUND
        live = self._get(
            resource, obj["metadata"]["name"], self._namespace_for(resource, obj)
        )
        return compute_status(live)

    # Async plumbing

    async def _run(self, func, *args):
        async with self._semaphore:
            return await asyncio.to_thread(func, *args)

    async def _status_of(
        self, obj: Dict[str, Any], error_cls: Type[ReconcileError]
    ) -> ResourceStatus:
        ref = object_ref(obj)
        try:
            return await self._run(self._read_status, obj)
        except Exception as e:
            if not _is_transient(e):
                raise error_cls(
                    f"failed to read status of {ref}: {e}", identities=[ref]
                ) from e
            logger.debug(f"Status check for {ref} failed, retrying: {e}")
            return ResourceStatus.IN_PROGRESS

    async def _poll(
        self,
        objects: List[Dict[str, Any]],
        interval: float,
        timeout: float,
        done: ResourceStatus,
        error_cls: Type[ReconcileError],
    ) -> List[Dict[str, Any]]:
        """
        Poll until every object reaches the done status; return leftovers.

        A read that fails for a reason other than a transient server or
        connection error raises error_cls at once instead of waiting out the
        deadline.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        pending = list(objects)

        while True:
            statuses = await asyncio.gather(
                *(self._status_of(o, error_cls) for o in pending)
            )
            pending = [o for o, s in zip(pending, statuses) if s is not done]
            if not pending:
                return []

            if loop.time() >= deadline:
                return pending

            logger.debug(
                f"{len(pending)} objects not yet {done.value}, "
                f"waiting {interval}s..."
            )
            await asyncio.sleep(interval)

    async def _batch(
        self,
        verb: str,
        error_cls: Type[ReconcileError],
        objects: List[Dict[str, Any]],
        func,
        *args,
    ) -> ChangeSet:
        """Run func on every object; raise error_cls naming those that failed."""
        results = await asyncio.gather(
            *(self._run(func, obj, *args) for obj in objects),
            return_exceptions=True,
        )

        change_set = ChangeSet()
        failed = []
        for obj, result in zip(objects, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to {verb} {object_ref(obj)}: {result}")
                failed.append((object_ref(obj), result))
            else:
                logger.info(f"{result.subject} {result.action.value}")
                change_set.add(result)

        if failed:
            details = "; ".join(f"{ref}: {err}" for ref, err in failed)
            raise error_cls(
                f"failed to {verb} {len(failed)} of {len(objects)} objects: "
                f"{details}",
                identities=[ref for ref, _ in failed],
            )
        return change_set

    # ResourceManager interface

    async def apply_all(self, objects: List[Dict[str, Any]]) -> ChangeSet:
        return await self._batch("apply", ApplyError, objects, self._apply_one)

    async def wait(
        self, objects: List[Dict[str, Any]], interval: float, timeout: float
    ) -> None:
        pending = await self._poll(
            objects, interval, timeout, ResourceStatus.CURRENT, ApplyError
        )
        if pending:
            refs = [object_ref(o) for o in pending]
            raise ConvergenceTimeoutError(
                f"timed out after {timeout}s waiting for: {', '.join(refs)}",
                identities=refs,
            )

    async def delete_all(
        self,
        objects: List[Dict[str, Any]],
        propagation_policy: PropagationPolicy = PropagationPolicy.FOREGROUND,
    ) -> ChangeSet:
        return await self._batch(
            "delete", DeleteError, objects, self._delete_one, propagation_policy
        )

    async def wait_for_termination(
        self, objects: List[Dict[str, Any]], interval: float, timeout: float
    ) -> None:
        pending = await self._poll(
            objects, interval, timeout, ResourceStatus.NOT_FOUND, DeleteError
        )
        if pending:
            refs = [object_ref(o) for o in pending]
            raise TerminationTimeoutError(
                f"timed out after {timeout}s waiting for termination of: "
                f"{', '.join(refs)}",
                identities=refs,
            )
