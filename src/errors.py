"""
Reconciliation errors.

Every failure raised by the decoder, the resource managers and the reconciler
is a ReconcileError carrying the phase it failed in, so callers can tell a
timeout (worth re-running with a longer deadline) from a rejected apply.
"""

from typing import List, Optional


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""

    def __init__(
        self,
        message: str,
        phase: Optional[str] = None,
        identities: Optional[List[str]] = None,
    ):
        self.message = message
        self.phase = phase
        self.identities = list(identities or [])
        super().__init__(message)

    def __str__(self) -> str:
        if self.phase:
            return f"{self.phase}: {self.message}"
        return self.message


class DecodeError(ReconcileError):
    """Raised when declaration text cannot be decoded into objects."""


class InventoryError(ReconcileError):
    """Raised when a stored inventory cannot be loaded."""


class ApplyError(ReconcileError):
    """Raised when the resource manager fails to apply a batch."""


class ConvergenceTimeoutError(ReconcileError):
    """Raised when applied objects do not converge before the deadline."""


class DeleteError(ReconcileError):
    """Raised when the resource manager fails to delete a batch."""


class PruneError(DeleteError):
    """Raised when removing objects dropped from the declaration fails."""


class TerminationTimeoutError(ReconcileError):
    """Raised when deleted objects are still present after the deadline."""
