"""
Resource managers for stageply.

This package provides the interface the reconciler drives and the
Kubernetes implementation of it.
"""

from managers.base import (
    ChangeAction,
    ChangeSet,
    ChangeSetEntry,
    PropagationPolicy,
    ResourceManager,
)

__all__ = [
    "ChangeAction",
    "ChangeSet",
    "ChangeSetEntry",
    "PropagationPolicy",
    "ResourceManager",
]
