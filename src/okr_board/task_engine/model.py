"""Task model for the OKR execution board.

Tasks live in one of five status columns and carry a real-valued
``priority_score`` that orders them inside their column.  Dependency edges are
kept outside the task record (see :class:`DependencyEdge`) so that a task's edge
set can be replaced as a whole.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Board-level status used for the columns."""

    BACKLOG = "backlog"
    TODO = "todo"
    DOING = "doing"
    WAITING = "waiting"
    DONE = "done"

    @classmethod
    def parse(cls, raw: "str | TaskStatus") -> "TaskStatus":
        """Accept ``"Done"``, ``"done"`` or a member; raise ValueError otherwise."""
        if isinstance(raw, cls):
            return raw
        value = str(raw).strip().lower()
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown status '{raw}'. Valid statuses: {[s.value for s in cls]}"
            ) from None


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DependencyKind(str, Enum):
    """Relation kinds between two tasks."""

    DEPENDS_ON = "depends_on"  # the owner cannot finish before the peer
    ENABLES = "enables"  # the owner unblocks the peer


class DeliverableKind(str, Enum):
    LINK = "link"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    """Short human-friendly task ID: ``task-<8hex>``."""
    return f"task-{uuid.uuid4().hex[:8]}"


_IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif", ".webp")
_VIDEO_SUFFIXES = (".mp4", ".webm", ".mov")


def infer_deliverable_kind(url: str) -> DeliverableKind:
    lower = url.lower()
    if lower.endswith(_IMAGE_SUFFIXES):
        return DeliverableKind.IMAGE
    if lower.endswith(_VIDEO_SUFFIXES) or "youtube" in lower:
        return DeliverableKind.VIDEO
    return DeliverableKind.LINK


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass
class Deliverable:
    """A piece of proof attached to a task (link, image, video or file)."""

    url: str
    title: str = ""
    kind: DeliverableKind = DeliverableKind.LINK
    added_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "kind": self.kind.value, "added_at": self.added_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Deliverable":
        url = str(data.get("url", ""))
        try:
            kind = DeliverableKind(str(data.get("kind") or ""))
        except ValueError:
            kind = infer_deliverable_kind(url)
        return cls(
            url=url,
            title=str(data.get("title") or url),
            kind=kind,
            added_at=str(data.get("added_at") or _now_iso()),
        )


@dataclass(frozen=True)
class DependencyEdge:
    """Directed edge owned by ``from_task_id``."""

    from_task_id: str
    to_task_id: str
    kind: DependencyKind

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_task_id, "to": self.to_task_id, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DependencyEdge":
        return cls(
            from_task_id=str(data["from"]),
            to_task_id=str(data["to"]),
            kind=DependencyKind(str(data["kind"])),
        )


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A work item on the board.

    Only ``status``, ``priority_score``, ``evidence_url``, ``deliverables`` and
    the waiting flag are mutated by the board engine; the remaining fields are
    carried through untouched.
    """

    # Identity
    id: str = field(default_factory=_generate_id)
    title: str = ""
    description: str = ""

    # Board position
    status: TaskStatus = TaskStatus.BACKLOG
    priority_score: float = 0.0

    # Opaque references
    project_id: Optional[str] = None
    objective_id: Optional[str] = None

    # Completion evidence
    evidence_url: Optional[str] = None
    deliverables: list[Deliverable] = field(default_factory=list)

    # Waiting on a third party
    is_waiting_third_party: bool = False
    blocking_reason: Optional[str] = None

    complexity: Optional[Complexity] = None

    # Optimistic-concurrency token
    version: int = 1

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            if isinstance(v, Enum):
                data[k] = v.value
            else:
                data[k] = v
        data["deliverables"] = [d.to_dict() for d in self.deliverables]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)  # shallow copy

        try:
            status = TaskStatus.parse(d.pop("status", None) or TaskStatus.BACKLOG)
        except ValueError:
            status = TaskStatus.BACKLOG
        complexity_raw = d.pop("complexity", None)
        complexity: Optional[Complexity] = None
        if complexity_raw:
            try:
                complexity = Complexity(str(complexity_raw).lower())
            except ValueError:
                complexity = None

        return cls(
            id=str(d.pop("id", None) or _generate_id()),
            title=str(d.pop("title", "") or ""),
            description=str(d.pop("description", "") or ""),
            status=status,
            priority_score=float(d.pop("priority_score", 0) or 0),
            project_id=d.pop("project_id", None),
            objective_id=d.pop("objective_id", None),
            evidence_url=d.pop("evidence_url", None) or None,
            deliverables=[Deliverable.from_dict(x) for x in (d.pop("deliverables", []) or [])],
            is_waiting_third_party=bool(d.pop("is_waiting_third_party", False)),
            blocking_reason=d.pop("blocking_reason", None),
            complexity=complexity,
            version=int(d.pop("version", 1) or 1),
            created_at=str(d.pop("created_at", None) or _now_iso()),
            updated_at=str(d.pop("updated_at", None) or _now_iso()),
            completed_at=d.pop("completed_at", None),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` and the version token."""
        self.updated_at = _now_iso()
        self.version += 1

    @property
    def has_evidence(self) -> bool:
        return bool(self.evidence_url) or bool(self.deliverables)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE
