"""
Resource Manager Base - Abstract interface for cluster resource managers.

A resource manager owns all communication with the cluster: applying
batches of objects, polling them until they converge, deleting them and
waiting for them to terminate. The reconciler only orders these calls.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class ChangeAction(Enum):
    """What a manager did to a single object."""

    CREATED = "created"
    CONFIGURED = "configured"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    SKIPPED = "skipped"


class PropagationPolicy(Enum):
    """How dependents of a deleted object are garbage collected."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


@dataclass
class ChangeSetEntry:
    """Result of applying or deleting a single object."""

    subject: str
    action: ChangeAction
    group_version_kind: str = ""


@dataclass
class ChangeSet:
    """Ordered results of a batch apply or delete."""

    entries: List[ChangeSetEntry] = field(default_factory=list)

    def add(self, entry: ChangeSetEntry) -> None:
        self.entries.append(entry)

    def summary(self) -> Dict[str, int]:
        """Count entries per action, e.g. {"created": 2, "unchanged": 1}."""
        counts: Dict[str, int] = {}
        for entry in self.entries:
            counts[entry.action.value] = counts.get(entry.action.value, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self.entries)


class ResourceManager(ABC):
    """
    Abstract base class for resource managers.

    Implementations apply with upsert semantics and tolerate objects that are
    already absent on delete, so the reconciler can be re-run after any
    failure.
    """

    @abstractmethod
    async def apply_all(self, objects: List[Dict[str, Any]]) -> ChangeSet:
        """
        Apply a batch of objects.

        Args:
            objects: Decoded objects to create or update

        Returns:
            ChangeSet with one entry per object

        Raises:
            ApplyError: If any object could not be applied
        """
        pass

    @abstractmethod
    async def wait(
        self, objects: List[Dict[str, Any]], interval: float, timeout: float
    ) -> None:
        """
        Poll until every object has converged.

        Args:
            objects: Objects to check
            interval: Seconds between polls
            timeout: Seconds before giving up

        Raises:
            ConvergenceTimeoutError: If objects are not current before timeout
            ApplyError: If an object cannot be read for a non-transient reason
        """
        pass

    @abstractmethod
    async def delete_all(
        self,
        objects: List[Dict[str, Any]],
        propagation_policy: PropagationPolicy = PropagationPolicy.FOREGROUND,
    ) -> ChangeSet:
        """
        Delete a batch of objects, skipping those that no longer exist.

        Args:
            objects: Objects or minimal references to delete
            propagation_policy: Garbage collection policy for dependents

        Returns:
            ChangeSet with one entry per object

        Raises:
            DeleteError: If any object could not be deleted
        """
        pass

    @abstractmethod
    async def wait_for_termination(
        self, objects: List[Dict[str, Any]], interval: float, timeout: float
    ) -> None:
        """
        Poll until every object is gone from the cluster.

        Args:
            objects: Objects or minimal references to check
            interval: Seconds between polls
            timeout: Seconds before giving up

        Raises:
            TerminationTimeoutError: If objects still exist at timeout
            DeleteError: If an object cannot be read for a non-transient reason
        """
        pass
