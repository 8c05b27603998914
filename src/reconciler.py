"""
Reconciler - Applies a declaration in stages and prunes what it dropped.

Drives a ResourceManager through a fixed sequence for every call:

    apply stage one -> wait -> apply stage two -> wait -> prune

Each phase completes (and converges, unless the wait is skipped) before the
next one starts. Any failure aborts the call; nothing is rolled back, and
re-running the same declaration is the recovery path.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from config import ReconcileConfig
from decoder import decode_objects
from errors import (
    ApplyError,
    ConvergenceTimeoutError,
    DecodeError,
    DeleteError,
    PruneError,
    ReconcileError,
    TerminationTimeoutError,
)
from inventory import Inventory
from managers.base import ChangeSet, PropagationPolicy, ResourceManager
from stages import get_resource_stages

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2  # seconds
STAGE_ONE_TIMEOUT = 30  # seconds


class ReconcilePhase(Enum):
    """Phases of a reconcile or delete call."""

    IDLE = "idle"
    STAGE_ONE_APPLY = "stage_one_apply"
    STAGE_ONE_WAIT = "stage_one_wait"
    STAGE_TWO_APPLY = "stage_two_apply"
    STAGE_TWO_WAIT = "stage_two_wait"
    PRUNING = "pruning"
    DELETING = "deleting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ApplyOptions:
    """Options for reconcile and apply."""

    wait_timeout: Optional[float] = None  # seconds, config default if unset
    skip_wait: bool = False


@dataclass
class DeleteOptions:
    """Options for delete."""

    wait_timeout: Optional[float] = None  # seconds, config default if unset
    skip_wait: bool = False


@contextmanager
def _fail_as(error_cls: Type[ReconcileError], message: str, phase: ReconcilePhase):
    """
    Re-raise any error from the block tagged with phase.

    The error becomes error_cls unless it is a ReconcileError from an
    unrelated branch of the hierarchy (a permission failure surfacing
    during a wait stays an ApplyError, not a timeout).
    """
    try:
        yield
    except Exception as e:
        cls = error_cls
        if isinstance(e, ReconcileError):
            detail, identities = e.message, e.identities
            if not isinstance(e, error_cls) and not issubclass(error_cls, type(e)):
                cls = type(e)
                message = f"error during {phase.value}"
        else:
            detail, identities = str(e), None
        raise cls(
            f"{message}: {detail}", phase=phase.value, identities=identities
        ) from e


class Reconciler:
    """
    Reconciles declarations against a cluster through a ResourceManager.

    The optional log_func receives plain-text progress messages at each
    checkpoint. It is per instance, so concurrent reconcilers can report to
    different sinks.
    """

    def __init__(
        self,
        manager: ResourceManager,
        log_func: Optional[Callable[[str], None]] = None,
        config: Optional[ReconcileConfig] = None,
    ):
        self.manager = manager
        self.config = config or ReconcileConfig()
        self._log_func = log_func
        self.last_phase = ReconcilePhase.IDLE
        self.last_change_sets: Dict[str, ChangeSet] = {}

    def set_log_func(self, log_func: Optional[Callable[[str], None]]) -> None:
        self._log_func = log_func

    def _log(self, msg: str) -> None:
        logger.debug(msg)
        if self._log_func is not None:
            self._log_func(msg)

    def _enter(self, phase: ReconcilePhase) -> None:
        self.last_phase = phase

    def _record(self, phase: ReconcilePhase, result: Any) -> None:
        if isinstance(result, ChangeSet):
            self.last_change_sets[phase.value] = result

    def _timeout(self, wait_timeout: Optional[float]) -> float:
        if wait_timeout is None:
            return self.config.wait_timeout
        return wait_timeout

    async def apply(self, text: str, opts: Optional[ApplyOptions] = None) -> Inventory:
        """Apply a declaration for the first time, without pruning."""
        return await self.reconcile(text, opts, None)

    async def reconcile(
        self,
        text: str,
        opts: Optional[ApplyOptions] = None,
        previous_inventory: Optional[Inventory] = None,
    ) -> Inventory:
        """
        Reconcile a declaration against the cluster.

        Args:
            text: YAML declaration text
            opts: Wait timeout and skip-wait flag
            previous_inventory: Inventory returned by the previous cycle, or
                None on the first apply (no pruning)

        Returns:
            Inventory of everything declared, to pass in on the next cycle

        Raises:
            ReconcileError: A subclass identifying the failed phase
        """
        opts = opts or ApplyOptions()
        wait_timeout = self._timeout(opts.wait_timeout)
        self.last_change_sets = {}
        self._enter(ReconcilePhase.IDLE)
        started = time.time()

        try:
            inventory = await self._reconcile(
                text, wait_timeout, opts.skip_wait, previous_inventory
            )
        except ReconcileError as e:
            logger.error(f"Reconciliation failed in {self.last_phase.value}: {e}")
            self._enter(ReconcilePhase.FAILED)
            raise

        self._enter(ReconcilePhase.DONE)
        logger.info(
            f"Reconciled {len(inventory)} objects in {time.time() - started:.1f}s"
        )
        return inventory

    async def _reconcile(
        self,
        text: str,
        wait_timeout: float,
        skip_wait: bool,
        previous_inventory: Optional[Inventory],
    ) -> Inventory:
        with _fail_as(DecodeError, "error getting resource stages", self.last_phase):
            staged = get_resource_stages(text)

        # Built before touching the cluster; only returned on success
        inventory = Inventory.build(staged.all_objects())

        self._enter(ReconcilePhase.STAGE_ONE_APPLY)
        self._log("beginning apply of stage one resources")
        with _fail_as(
            ApplyError, "error applying stage one resources", self.last_phase
        ):
            result = await self.manager.apply_all(staged.stage_one)
        self._record(ReconcilePhase.STAGE_ONE_APPLY, result)

        # Never skipped: stage two usually needs these namespaces and CRDs
        self._enter(ReconcilePhase.STAGE_ONE_WAIT)
        self._log("waiting for stage one resources to reconcile")
        with _fail_as(
            ConvergenceTimeoutError,
            "timed out waiting for objects to reconcile",
            self.last_phase,
        ):
            await self.manager.wait(staged.stage_one, POLL_INTERVAL, STAGE_ONE_TIMEOUT)

        self._enter(ReconcilePhase.STAGE_TWO_APPLY)
        self._log("beginning apply of stage two resources")
        with _fail_as(
            ApplyError, "error applying stage two resources", self.last_phase
        ):
            result = await self.manager.apply_all(staged.stage_two)
        self._record(ReconcilePhase.STAGE_TWO_APPLY, result)

        if not skip_wait:
            self._enter(ReconcilePhase.STAGE_TWO_WAIT)
            self._log("waiting for stage two resources to reconcile")
            with _fail_as(
                ConvergenceTimeoutError,
                "timed out waiting for objects to reconcile",
                self.last_phase,
            ):
                await self.manager.wait(staged.stage_two, POLL_INTERVAL, wait_timeout)

        if previous_inventory is not None:
            self._enter(ReconcilePhase.PRUNING)
            await self._remove_items(
                previous_inventory, inventory, wait_timeout, skip_wait
            )

        return inventory

    async def _remove_items(
        self,
        previous_inventory: Inventory,
        new_inventory: Inventory,
        wait_timeout: float,
        skip_wait: bool,
    ) -> None:
        to_remove = previous_inventory.items_to_remove(new_inventory)
        if not to_remove:
            logger.debug("Nothing to prune")
            return

        self._log("pruning resources")
        await self._delete(
            to_remove, wait_timeout, skip_wait, PruneError, "error pruning items"
        )

    async def _delete(
        self,
        objects: List[Dict[str, Any]],
        wait_timeout: float,
        skip_wait: bool,
        error_cls: Type[DeleteError],
        message: str,
    ) -> None:
        policy = PropagationPolicy(self.config.propagation_policy)

        self._log("beginning delete of resources")
        with _fail_as(error_cls, message, self.last_phase):
            result = await self.manager.delete_all(objects, policy)
        self._record(self.last_phase, result)

        if skip_wait:
            return

        self._log("waiting for resources to terminate")
        with _fail_as(
            TerminationTimeoutError,
            "timed out waiting for resources to terminate",
            self.last_phase,
        ):
            await self.manager.wait_for_termination(
                objects, POLL_INTERVAL, wait_timeout
            )

    async def delete(self, text: str, opts: Optional[DeleteOptions] = None) -> None:
        """
        Delete every object in a declaration.

        Args:
            text: YAML declaration text
            opts: Wait timeout and skip-wait flag

        Raises:
            ReconcileError: A subclass identifying the failed phase
        """
        opts = opts or DeleteOptions()
        wait_timeout = self._timeout(opts.wait_timeout)
        self.last_change_sets = {}
        self._enter(ReconcilePhase.IDLE)

        try:
            with _fail_as(DecodeError, "error decoding yaml", self.last_phase):
                objects = decode_objects(text)

            self._enter(ReconcilePhase.DELETING)
            await self._delete(
                objects,
                wait_timeout,
                opts.skip_wait,
                DeleteError,
                "error during deletion",
            )
        except ReconcileError as e:
            logger.error(f"Delete failed in {self.last_phase.value}: {e}")
            self._enter(ReconcilePhase.FAILED)
            raise

        self._enter(ReconcilePhase.DONE)
        logger.info(f"Deleted {len(objects)} objects")
