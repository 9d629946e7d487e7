"""Task engine: the task store operations the board is built on.

This is the primary entry-point for all task manipulation.  It wraps
:class:`TaskStore` with the board rules (evidence gate, waiting side effect,
fractional ordering and rebalancing, dependency validation) and records every
mutation in an append-only event log.
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from ..config import BoardSettings
from ..io_utils import _append_jsonl, _read_jsonl_tail
from .dependencies import (
    EdgeSet,
    drop_task,
    edges_for,
    replace_edges,
    selectable_candidates,
    validate_edge_set,
)
from .errors import (
    EvidenceRequiredError,
    InvalidScoreError,
    ReasonRequiredError,
    TaskNotFoundError,
    VersionConflictError,
)
from .model import (
    Complexity,
    Deliverable,
    DeliverableKind,
    DependencyKind,
    Task,
    TaskStatus,
    infer_deliverable_kind,
)
from .ordering import ReorderPlan, plan_reorder, rebalance, sort_column, top_score
from .status import StatusChange, plan_transition, plan_waiting_toggle
from .store import TaskStore, _TaskTx

logger = logging.getLogger(__name__)

EVENTS_FILENAME = "task_events.jsonl"
REPRIORITIZE_EVENT = "task.reprioritized"


class TaskEngine:
    """Manage tasks, their column order and their dependencies.

    Parameters
    ----------
    state_dir:
        Path to the ``.okr_board/`` directory.
    settings:
        Ordering / validation tunables; defaults when omitted.
    """

    def __init__(self, state_dir: Path, settings: Optional[BoardSettings] = None) -> None:
        self.store = TaskStore(state_dir)
        self.settings = settings or BoardSettings()
        self._state_dir = state_dir
        self._events_path = state_dir / "artifacts" / EVENTS_FILENAME

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def _emit_event(self, event_type: str, task_id: Optional[str], **details: Any) -> None:
        """Append a task event; a failing log write never fails the mutation."""
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "type": event_type,
            "task_id": task_id,
        }
        if details:
            payload["details"] = details
        try:
            _append_jsonl(self._events_path, payload)
        except OSError:
            logger.exception("Failed to append task event %s for %s", event_type, task_id)

    @contextmanager
    def _transaction(self) -> Iterator[_TaskTx]:
        """Store transaction whose queued events are logged only after it is saved."""
        with self.store.transaction() as tx:
            yield tx
        for event_type, task_id, details in tx.events:
            self._emit_event(event_type, task_id, **details)

    @staticmethod
    def _queue_event(tx: _TaskTx, event_type: str, task_id: Optional[str], **details: Any) -> None:
        tx.events.append((event_type, task_id, details))

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        return _read_jsonl_tail(self._events_path, limit)

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        events = self.get_recent_events(limit=max(limit * 5, limit))
        filtered = [e for e in events if str(e.get("task_id")) == task_id]
        return filtered[-limit:]

    def get_audit_log(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """Reprioritisation history of one task, oldest first."""
        return [e for e in self.get_task_events(task_id, limit) if e.get("type") == REPRIORITIZE_EVENT]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require(tx: _TaskTx, task_id: str, expected_version: Optional[int] = None) -> Task:
        task = tx.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if expected_version is not None and task.version != expected_version:
            raise VersionConflictError(task_id, expected_version, task.version)
        return task

    def _apply_change(self, tx: _TaskTx, task: Task, change: StatusChange) -> Task:
        change.apply(task)
        tx.dirty = True
        if change.status_changed:
            self._queue_event(
                tx,
                "task.transitioned",
                task.id,
                from_status=change.from_status.value,
                to_status=change.status.value,
                forced=change.forced,
            )
        return task

    def _write_scores(self, tx: _TaskTx, changes: dict[str, float], reason: str) -> None:
        for task_id, score in changes.items():
            task = tx.get(task_id)
            if task is None:
                continue
            old = task.priority_score
            task.priority_score = score
            task.touch()
            self._queue_event(tx, REPRIORITIZE_EVENT, task_id, old_score=old, new_score=score, reason=reason)
        if changes:
            tx.dirty = True

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(
        self,
        title: str,
        description: str = "",
        status: str = "backlog",
        priority_score: Optional[float] = None,
        project_id: Optional[str] = None,
        objective_id: Optional[str] = None,
        complexity: Optional[str] = None,
        evidence_url: Optional[str] = None,
    ) -> Task:
        """Create and persist a new task, returning it.

        Without an explicit score the task lands on top of its column.
        """
        task = Task(
            title=title,
            description=description,
            status=TaskStatus.parse(status or TaskStatus.BACKLOG),
            project_id=project_id,
            objective_id=objective_id,
            complexity=Complexity(complexity.lower()) if complexity else None,
            evidence_url=evidence_url or None,
        )
        with self._transaction() as tx:
            if task.status == TaskStatus.DONE and not task.has_evidence:
                raise EvidenceRequiredError(task.id)
            if priority_score is None:
                task.priority_score = top_score(
                    tx.column(task.status), step=self.settings.step, base=self.settings.base
                )
            else:
                task.priority_score = _finite_score(priority_score)
            tx.add(task)
            self._queue_event(
                tx, "task.created", task.id, status=task.status.value, priority_score=task.priority_score
            )

        logger.info("Created task %s: %s", task.id, title)
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.get_one(task_id)

    def list_all_tasks(self) -> list[Task]:
        return self.store.read_snapshot()

    def list_tasks(
        self,
        *,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        objective_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        with self.store.transaction() as tx:
            return tx.find(status=status, project_id=project_id, objective_id=objective_id, search=search)

    def delete_task(self, task_id: str) -> bool:
        """Remove a task together with every edge that touches it."""
        with self._transaction() as tx:
            if not tx.hard_remove(task_id):
                return False
            tx.set_edges(drop_task(task_id, tx.edges))
            self._queue_event(tx, "task.deleted", task_id)
            return True

    # ------------------------------------------------------------------
    # Priority
    # ------------------------------------------------------------------

    def update_task_priority(
        self,
        task_id: str,
        new_score: float,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Persist one score.  *reason* is an audit tag and must not be blank."""
        if not reason or not reason.strip():
            raise ReasonRequiredError()
        score = _finite_score(new_score)
        with self._transaction() as tx:
            task = self._require(tx, task_id, expected_version)
            self._write_scores(tx, {task_id: score}, reason.strip())
            return task

    def get_column(self, status: str | TaskStatus) -> list[Task]:
        target = TaskStatus.parse(status)
        return sort_column(t for t in self.store.read_snapshot() if t.status == target)

    def get_board(self) -> dict[str, list[dict[str, Any]]]:
        """Return tasks grouped by status column, highest priority first."""
        tasks = self.store.read_snapshot()
        return {
            status.value: [t.to_dict() for t in sort_column(t for t in tasks if t.status == status)]
            for status in TaskStatus
        }

    def plan_move(self, task_id: str, target_index: int) -> ReorderPlan:
        """Dry-run of a same-column reorder."""
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return self._plan(task, self.get_column(task.status), target_index)

    def _plan(self, task: Task, column: list[Task], target_index: int) -> ReorderPlan:
        return plan_reorder(
            task,
            column,
            target_index,
            step=self.settings.step,
            base=self.settings.base,
            resolution=self.settings.resolution,
        )

    def move_task(
        self,
        task_id: str,
        status: str | TaskStatus,
        target_index: int,
        *,
        reason: str = "manual reorder",
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> tuple[Task, Optional[ReorderPlan]]:
        """Apply a drag end in one transaction.

        Dropping into another column only changes the status; dropping inside
        the same column reorders it.  Returns the task and the reorder plan
        (``None`` for a cross-column move).
        """
        target = TaskStatus.parse(status)
        with self._transaction() as tx:
            task = self._require(tx, task_id, expected_version)
            if task.status != target:
                change = plan_transition(
                    task,
                    target,
                    evidence_url=evidence_url,
                    attachment=attachment,
                    uploads_prefix=self.settings.uploads_prefix,
                )
                return self._apply_change(tx, task, change), None

            plan = self._plan(task, sort_column(tx.column(target)), target_index)
            self._write_scores(tx, plan.changes, reason)
            if plan.rebalanced:
                self._queue_event(tx, "column.rebalanced", task_id, status=target.value, changed=len(plan.changes))
            return task, plan

    def rebalance_column(self, status: str | TaskStatus, *, force: bool = False) -> dict[str, float]:
        """Re-space a column in its current order; no-op when already spaced."""
        target = TaskStatus.parse(status)
        with self._transaction() as tx:
            changes = rebalance(
                sort_column(tx.column(target)),
                step=self.settings.step,
                base=self.settings.base,
                force=force,
            )
            self._write_scores(tx, changes, "rebalance")
            if changes:
                self._queue_event(tx, "column.rebalanced", None, status=target.value, changed=len(changes))
                logger.info("Rebalanced %s column: %d scores changed", target.value, len(changes))
            return changes

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def update_task_status(
        self,
        task_id: str,
        new_status: str | TaskStatus,
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        """Move a task to *new_status*, enforcing the evidence gate."""
        with self._transaction() as tx:
            task = self._require(tx, task_id, expected_version)
            change = plan_transition(
                task,
                new_status,
                evidence_url=evidence_url,
                attachment=attachment,
                uploads_prefix=self.settings.uploads_prefix,
            )
            return self._apply_change(tx, task, change)

    def set_waiting_third_party(
        self,
        task_id: str,
        waiting: bool,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Task:
        with self._transaction() as tx:
            task = self._require(tx, task_id, expected_version)
            was_waiting = task.is_waiting_third_party
            change = plan_waiting_toggle(task, waiting, reason=reason)
            self._apply_change(tx, task, change)
            if was_waiting != task.is_waiting_third_party:
                self._queue_event(tx, "task.waiting_toggled", task.id, waiting=task.is_waiting_third_party)
            return task

    def add_deliverable(
        self,
        task_id: str,
        url: str,
        title: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> Task:
        url = url.strip()
        if not url:
            raise ValueError("Deliverable URL is required")
        deliverable = Deliverable(
            url=url,
            title=title or url,
            kind=DeliverableKind(kind) if kind else infer_deliverable_kind(url),
        )
        with self._transaction() as tx:
            task = self._require(tx, task_id)
            task.deliverables.append(deliverable)
            task.touch()
            tx.dirty = True
            self._queue_event(tx, "task.deliverable_added", task.id, kind=deliverable.kind.value, url=url)
            return task

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def get_edges(self, task_id: str) -> EdgeSet:
        with self.store.transaction() as tx:
            self._require(tx, task_id)
            return edges_for(task_id, tx.edges)

    def get_task_dependencies(self, task_id: str) -> dict[str, list[Task]]:
        """Edge sets of *task_id* resolved to task objects.

        Edges pointing at tasks that no longer exist are skipped.
        """
        with self.store.transaction() as tx:
            self._require(tx, task_id)
            edge_set = edges_for(task_id, tx.edges)
            return {
                "depends_on": [t for t in (tx.get(i) for i in edge_set.depends_on) if t is not None],
                "enables": [t for t in (tx.get(i) for i in edge_set.enables) if t is not None],
            }

    def update_task_dependencies(
        self,
        task_id: str,
        depends_on: list[str],
        enables: list[str],
        expected_version: Optional[int] = None,
    ) -> EdgeSet:
        """Replace both edge sets of *task_id* in one write."""
        edge_set = EdgeSet(depends_on=list(depends_on), enables=list(enables))
        with self._transaction() as tx:
            task = self._require(tx, task_id, expected_version)
            validate_edge_set(
                task_id,
                edge_set,
                known_ids=tx.ids(),
                edges=tx.edges,
                detect_cycles=self.settings.detect_cycles,
            )
            previous = edges_for(task_id, tx.edges)
            tx.set_edges(replace_edges(task_id, edge_set, tx.edges))
            task.touch()
            self._queue_event(
                tx,
                "task.dependencies_replaced",
                task_id,
                before=previous.to_dict(),
                after=edge_set.to_dict(),
            )
            return edge_set

    def dependency_candidates(self, task_id: str, kind: str | DependencyKind) -> list[Task]:
        with self.store.transaction() as tx:
            self._require(tx, task_id)
            current = edges_for(task_id, tx.edges)
            return selectable_candidates(task_id, kind, tx.list_all(), current)


def _finite_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise InvalidScoreError(value) from None
    if not math.isfinite(score):
        raise InvalidScoreError(value)
    return score
