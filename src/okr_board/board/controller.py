"""Board controller: turns user gestures into store operations.

Every action is applied to the local view first (optimistically), then
persisted through a :class:`TaskStoreClient`.  Guard violations are reported
back without touching anything; any other failure is reconciled by reloading
the whole board from the store.  Nothing is retried automatically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..config import BoardSettings
from ..task_engine.dependencies import EdgeSet, find_overlap, selectable_candidates
from ..task_engine.errors import (
    BoardError,
    DependencyOverlapError,
    EvidenceRequiredError,
    GuardViolation,
)
from ..task_engine.model import DependencyKind, Task, TaskStatus
from ..task_engine.ordering import plan_reorder, sort_column
from ..task_engine.status import StatusChange, plan_transition, plan_waiting_toggle
from .clients import TaskStoreClient

logger = logging.getLogger(__name__)

REORDER_REASON = "manual reorder"
REBALANCE_REASON = "rebalance"


@dataclass
class ActionResult:
    """What the UI needs to know about one user action."""

    ok: bool
    reason: Optional[str] = None
    task: Optional[Task] = None
    rebalanced: bool = False
    failed_ids: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


class BoardController:
    """Local board state kept in sync with a task store.

    Parameters
    ----------
    client:
        Where tasks are read from and written to.
    settings:
        Ordering tunables; must match the server's for scores to agree.
    """

    def __init__(self, client: TaskStoreClient, settings: Optional[BoardSettings] = None) -> None:
        self.client = client
        self.settings = settings or BoardSettings()
        self.columns: dict[TaskStatus, list[Task]] = {s: [] for s in TaskStatus}
        self.edges: dict[str, EdgeSet] = {}

    # ------------------------------------------------------------------
    # Local view
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Refetch every task and replace the local view."""
        tasks = self.client.list_all_tasks()
        self.columns = {s: sort_column(t for t in tasks if t.status == s) for s in TaskStatus}

    def reconcile(self) -> bool:
        """Drop optimistic state by reloading; returns False if the reload failed too."""
        try:
            self.load()
        except BoardError as exc:
            logger.warning("Reload after failure did not succeed, board view is stale: %s", exc)
            return False
        return True

    def find(self, task_id: str) -> Optional[Task]:
        for column in self.columns.values():
            for task in column:
                if task.id == task_id:
                    return task
        return None

    def column(self, status: str | TaskStatus) -> list[Task]:
        return list(self.columns[TaskStatus.parse(status)])

    def all_tasks(self) -> list[Task]:
        return [t for column in self.columns.values() for t in column]

    def _replace(self, task: Task) -> None:
        """Put the server's copy of *task* into the right column."""
        for status, column in self.columns.items():
            self.columns[status] = [t for t in column if t.id != task.id]
        self.columns[task.status] = sort_column(self.columns[task.status] + [task])

    def _apply_locally(self, task: Task, change: StatusChange) -> None:
        change.apply(task)
        self._replace(task)

    # ------------------------------------------------------------------
    # Drag and drop
    # ------------------------------------------------------------------

    def on_drag_end(
        self,
        task_id: str,
        dest_status: str | TaskStatus,
        dest_index: int,
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
    ) -> ActionResult:
        """Handle a card dropped at *dest_index* of the *dest_status* column."""
        task = self.find(task_id)
        if task is None:
            return ActionResult(ok=False, reason=f"Task {task_id} is not on the board")
        dest = TaskStatus.parse(dest_status)
        if dest != task.status:
            return self.edit_status(task_id, dest, evidence_url=evidence_url, attachment=attachment)

        plan = plan_reorder(
            task,
            self.columns[dest],
            dest_index,
            step=self.settings.step,
            base=self.settings.base,
            resolution=self.settings.resolution,
        )
        if plan.is_noop:
            return ActionResult(ok=True, task=task)

        by_id = {t.id: t for t in self.columns[dest]}
        for tid, score in plan.changes.items():
            by_id[tid].priority_score = score
        self.columns[dest] = [by_id[tid] for tid in plan.order]

        if not plan.rebalanced:
            try:
                saved = self.client.update_task_priority(task_id, plan.new_score, REORDER_REASON)
            except BoardError as exc:
                logger.warning("Reorder of %s failed, reloading board: %s", task_id, exc)
                self.reconcile()
                return ActionResult(ok=False, reason=str(exc))
            self._replace(saved)
            return ActionResult(ok=True, task=saved)

        # Rebalance: the moved task first, then the rest of the column.
        ordered = [task_id] + [tid for tid in plan.changes if tid != task_id]
        failed: list[str] = []
        for tid in ordered:
            if tid not in plan.changes:
                continue
            reason = REORDER_REASON if tid == task_id else REBALANCE_REASON
            try:
                self.client.update_task_priority(tid, plan.changes[tid], reason)
            except BoardError as exc:
                logger.warning("Rebalance write for %s failed: %s", tid, exc)
                failed.append(tid)
        if failed:
            logger.warning(
                "Partial rebalance of %s column: %d of %d writes failed",
                dest.value,
                len(failed),
                len(plan.changes),
            )
            self.reconcile()
        moved_ok = task_id not in failed
        return ActionResult(
            ok=moved_ok,
            reason=None if moved_ok else f"Could not save new position of {task_id}",
            task=self.find(task_id),
            rebalanced=True,
            failed_ids=failed,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def edit_status(
        self,
        task_id: str,
        status: str | TaskStatus,
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
    ) -> ActionResult:
        task = self.find(task_id)
        if task is None:
            return ActionResult(ok=False, reason=f"Task {task_id} is not on the board")
        try:
            change = plan_transition(
                task,
                status,
                evidence_url=evidence_url,
                attachment=attachment,
                uploads_prefix=self.settings.uploads_prefix,
            )
        except EvidenceRequiredError as exc:
            return ActionResult(ok=False, reason=exc.message, task=task)

        self._apply_locally(task, change)
        try:
            saved = self.client.update_task_status(
                task_id, change.status, evidence_url=evidence_url, attachment=attachment
            )
        except BoardError as exc:
            logger.warning("Status change of %s failed, reloading board: %s", task_id, exc)
            self.reconcile()
            return ActionResult(ok=False, reason=exc.message, task=self.find(task_id))
        self._replace(saved)
        return ActionResult(ok=True, task=saved)

    def toggle_waiting(self, task_id: str, waiting: bool, reason: Optional[str] = None) -> ActionResult:
        task = self.find(task_id)
        if task is None:
            return ActionResult(ok=False, reason=f"Task {task_id} is not on the board")
        self._apply_locally(task, plan_waiting_toggle(task, waiting, reason=reason))
        try:
            saved = self.client.set_waiting_third_party(task_id, waiting, reason=reason)
        except BoardError as exc:
            logger.warning("Waiting toggle of %s failed, reloading board: %s", task_id, exc)
            self.reconcile()
            return ActionResult(ok=False, reason=exc.message, task=self.find(task_id))
        self._replace(saved)
        return ActionResult(ok=True, task=saved)

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def load_dependencies(self, task_id: str) -> EdgeSet:
        deps = self.client.get_task_dependencies(task_id)
        edge_set = EdgeSet(
            depends_on=[t.id for t in deps["depends_on"]],
            enables=[t.id for t in deps["enables"]],
        )
        self.edges[task_id] = edge_set
        return edge_set

    def save_dependencies(self, task_id: str, depends_on: list[str], enables: list[str]) -> ActionResult:
        edge_set = EdgeSet(depends_on=list(depends_on), enables=list(enables))
        overlap = find_overlap(edge_set)
        if overlap:
            err = DependencyOverlapError(task_id, overlap)
            return ActionResult(ok=False, reason=err.message, conflicts=overlap)

        previous = self.edges.get(task_id)
        self.edges[task_id] = edge_set
        try:
            saved = self.client.update_task_dependencies(task_id, edge_set.depends_on, edge_set.enables)
        except GuardViolation as exc:
            self._restore_edges(task_id, previous)
            return ActionResult(ok=False, reason=exc.message, conflicts=list(getattr(exc, "conflicts", [])))
        except BoardError as exc:
            logger.warning("Saving dependencies of %s failed, reloading: %s", task_id, exc)
            self._restore_edges(task_id, previous)
            try:
                self.load_dependencies(task_id)
            except BoardError as reload_exc:
                logger.warning("Reloading dependencies of %s failed: %s", task_id, reload_exc)
            return ActionResult(ok=False, reason=exc.message)
        self.edges[task_id] = saved
        return ActionResult(ok=True, task=self.find(task_id))

    def _restore_edges(self, task_id: str, previous: Optional[EdgeSet]) -> None:
        if previous is None:
            self.edges.pop(task_id, None)
        else:
            self.edges[task_id] = previous

    def dependency_candidates(self, task_id: str, kind: str | DependencyKind) -> list[Task]:
        """Tasks offered in the dependency picker for *kind*."""
        current = self.edges.get(task_id)
        if current is None:
            current = self.load_dependencies(task_id)
        return selectable_candidates(task_id, kind, self.all_tasks(), current)
