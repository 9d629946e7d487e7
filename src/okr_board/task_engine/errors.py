"""Error taxonomy for the task board engine.

Guard violations also subclass :class:`ValueError`; the HTTP layer maps them to
``400`` responses carrying :attr:`BoardError.code`.
"""

from __future__ import annotations

from typing import Any, Optional


class BoardError(Exception):
    """Base class for every error raised by the board engine."""

    code = "board_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class GuardViolation(BoardError, ValueError):
    """A mutation was rejected before anything was written."""

    code = "guard_violation"


class EvidenceRequiredError(GuardViolation):
    code = "evidence_required"

    def __init__(self, task_id: str, message: str = "evidence required") -> None:
        super().__init__(message)
        self.task_id = task_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["task_id"] = self.task_id
        return data


class ReasonRequiredError(GuardViolation):
    code = "reason_required"

    def __init__(self, message: str = "Reason for change is required for reprioritization") -> None:
        super().__init__(message)


class InvalidScoreError(GuardViolation):
    """Priority scores must be finite numbers."""

    code = "invalid_score"

    def __init__(self, value: Any, message: Optional[str] = None) -> None:
        super().__init__(message or f"Priority score must be a finite number, got {value!r}")


class DependencyError(GuardViolation):
    code = "invalid_dependencies"


class DependencyOverlapError(DependencyError):
    """A task may not both depend on and enable the same peer."""

    code = "dependency_overlap"

    def __init__(self, task_id: str, conflicts: list[str]) -> None:
        super().__init__(
            f"Task {task_id} cannot both depend on and enable the same task: {', '.join(conflicts)}"
        )
        self.task_id = task_id
        self.conflicts = list(conflicts)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["task_id"] = self.task_id
        data["conflicts"] = self.conflicts
        return data


class DependencyCycleError(DependencyError):
    code = "dependency_cycle"

    def __init__(self, task_id: str, cycle: list[str]) -> None:
        super().__init__(f"Dependencies of {task_id} would create a cycle: {' -> '.join(cycle)}")
        self.task_id = task_id
        self.cycle = list(cycle)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["task_id"] = self.task_id
        data["cycle"] = self.cycle
        return data


class TaskNotFoundError(BoardError, LookupError):
    code = "task_not_found"

    def __init__(self, task_ids: list[str] | str) -> None:
        ids = [task_ids] if isinstance(task_ids, str) else list(task_ids)
        noun = "Task" if len(ids) == 1 else "Tasks"
        super().__init__(f"{noun} {', '.join(ids)} not found")
        self.task_ids = ids

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["task_ids"] = self.task_ids
        return data


class VersionConflictError(BoardError):
    """The caller's version token is stale; reload and resubmit."""

    code = "version_conflict"

    def __init__(self, task_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Task {task_id} was modified concurrently (expected version {expected}, found {actual})"
        )
        self.task_id = task_id
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"task_id": self.task_id, "expected": self.expected, "actual": self.actual})
        return data


class StoreUnavailableError(BoardError):
    """Transient failure talking to the task store (network, 5xx, I/O)."""

    code = "store_unavailable"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def error_from_payload(payload: dict[str, Any]) -> BoardError:
    """Rebuild a structured error returned by the HTTP API."""
    code = str(payload.get("error") or "")
    message = str(payload.get("message") or "")
    task_id = str(payload.get("task_id") or "")
    if code == EvidenceRequiredError.code:
        return EvidenceRequiredError(task_id, message or "evidence required")
    if code == DependencyOverlapError.code:
        return DependencyOverlapError(task_id, list(payload.get("conflicts") or []))
    if code == DependencyCycleError.code:
        return DependencyCycleError(task_id, list(payload.get("cycle") or []))
    if code == DependencyError.code:
        return DependencyError(message)
    if code == ReasonRequiredError.code:
        return ReasonRequiredError(message) if message else ReasonRequiredError()
    if code == InvalidScoreError.code:
        return InvalidScoreError(None, message or None)
    if code == TaskNotFoundError.code:
        return TaskNotFoundError(list(payload.get("task_ids") or [task_id]))
    if code == VersionConflictError.code:
        return VersionConflictError(
            task_id, int(payload.get("expected") or 0), int(payload.get("actual") or 0)
        )
    if code == GuardViolation.code:
        return GuardViolation(message)
    return BoardError(message or code or "unknown error")
