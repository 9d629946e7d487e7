"""Status transition machine.

The status graph is free: any status may move to any other.  Two rules sit on
top of it:

* entering ``done`` requires evidence (already on the task or supplied with the
  request);
* switching ``is_waiting_third_party`` on while the task is in ``backlog``,
  ``todo`` or ``done`` moves it to ``doing`` in the same update.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .errors import EvidenceRequiredError
from .model import Task, TaskStatus, _now_iso

DEFAULT_UPLOADS_PREFIX = "/uploads"

# Statuses that are pulled into DOING when the waiting flag is switched on.
_FORCED_TO_DOING = frozenset({TaskStatus.BACKLOG, TaskStatus.TODO, TaskStatus.DONE})

_UNSET: Any = object()


@dataclass
class StatusChange:
    """Fields to write for one status update; ``_UNSET`` fields are left alone."""

    task_id: str
    from_status: TaskStatus
    status: TaskStatus
    evidence_url: Any = _UNSET
    is_waiting_third_party: Any = _UNSET
    blocking_reason: Any = _UNSET

    @property
    def status_changed(self) -> bool:
        return self.status != self.from_status

    @property
    def forced(self) -> bool:
        """True when the status moved as a side effect of the waiting flag."""
        return self.status_changed and self.is_waiting_third_party is True

    def apply(self, task: Task) -> Task:
        if self.evidence_url is not _UNSET:
            task.evidence_url = self.evidence_url
        if self.is_waiting_third_party is not _UNSET:
            task.is_waiting_third_party = bool(self.is_waiting_third_party)
        if self.blocking_reason is not _UNSET:
            task.blocking_reason = self.blocking_reason
        if self.status_changed:
            task.status = self.status
            task.completed_at = _now_iso() if self.status == TaskStatus.DONE else None
        task.touch()
        return task


def resolve_evidence(
    evidence_url: Optional[str] = None,
    attachment: Optional[str] = None,
    uploads_prefix: str = DEFAULT_UPLOADS_PREFIX,
) -> Optional[str]:
    """Return the evidence URL a request supplies, if any.

    An attachment reference wins over a URL, matching an upload that replaces
    the typed link.
    """
    if attachment and attachment.strip():
        return f"{uploads_prefix.rstrip('/')}/{attachment.strip().lstrip('/')}"
    if evidence_url and evidence_url.strip():
        return evidence_url.strip()
    return None


def plan_transition(
    task: Task,
    target: TaskStatus | str,
    *,
    evidence_url: Optional[str] = None,
    attachment: Optional[str] = None,
    uploads_prefix: str = DEFAULT_UPLOADS_PREFIX,
) -> StatusChange:
    """Validate a status change and describe the resulting writes.

    Raises :class:`EvidenceRequiredError` when moving into ``done`` without
    evidence.
    """
    target = TaskStatus.parse(target)
    supplied = resolve_evidence(evidence_url, attachment, uploads_prefix)
    if target == TaskStatus.DONE and not (supplied or task.has_evidence):
        raise EvidenceRequiredError(task.id)
    change = StatusChange(task_id=task.id, from_status=task.status, status=target)
    if supplied:
        change.evidence_url = supplied
    return change


def plan_waiting_toggle(task: Task, waiting: bool, *, reason: Optional[str] = None) -> StatusChange:
    change = StatusChange(
        task_id=task.id,
        from_status=task.status,
        status=task.status,
        is_waiting_third_party=bool(waiting),
    )
    if waiting:
        if reason is not None:
            change.blocking_reason = reason
        if not task.is_waiting_third_party and task.status in _FORCED_TO_DOING:
            change.status = TaskStatus.DOING
    else:
        change.blocking_reason = None
    return change


def describe_machine() -> dict[str, Any]:
    states = [s.value for s in TaskStatus]
    return {
        "states": states,
        "transitions": {s: [t for t in states if t != s] for s in states},
        "guards": {
            TaskStatus.DONE.value: "Evidence (URL, attachment or deliverable) is required to mark a task as done.",
        },
        "side_effects": {
            "is_waiting_third_party": (
                "Switching the flag on while the task is backlog, todo or done moves it to doing."
            ),
        },
    }
