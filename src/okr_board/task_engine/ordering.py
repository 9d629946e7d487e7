"""Fractional priority ordering within a status column.

Columns are rendered by descending ``priority_score``.  Dropping a task between
two neighbours gives it the midpoint of their scores, so a single write is
enough.  When the neighbours are too close to bisect (the midpoint, snapped to
the configured resolution, no longer lies strictly between them) the whole column is
re-spaced as ``base - index * step``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .model import Task

logger = logging.getLogger(__name__)

FIXED_STEP = 10.0
BASE_SCORE = 1000.0
DEFAULT_RESOLUTION = 1.0


# ---------------------------------------------------------------------------
# Order key
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class OrderKey:
    """A position in the column's dense key space (higher sorts first)."""

    value: float

    @staticmethod
    def snap(value: float, resolution: float) -> float:
        """Quantise *value* to the ``resolution`` grid (``0`` disables it)."""
        if resolution <= 0:
            return value
        return round(value / resolution) * resolution

    @classmethod
    def between(cls, prev: "OrderKey", nxt: "OrderKey", resolution: float = DEFAULT_RESOLUTION) -> Optional["OrderKey"]:
        """Bisect two neighbours, or return ``None`` when precision is exhausted."""
        mid = cls.snap((prev.value + nxt.value) / 2, resolution)
        if not nxt.value < mid < prev.value:
            return None
        return cls(mid)

    @classmethod
    def above(cls, nxt: "OrderKey", step: float = FIXED_STEP) -> "OrderKey":
        return cls(nxt.value + step)

    @classmethod
    def below(cls, prev: "OrderKey", step: float = FIXED_STEP) -> "OrderKey":
        return cls(prev.value - step)

    @classmethod
    def of(cls, task: Task) -> "OrderKey":
        return cls(float(task.priority_score))


# ---------------------------------------------------------------------------
# Column helpers
# ---------------------------------------------------------------------------

def sort_column(tasks: Iterable[Task]) -> list[Task]:
    """Canonical render order: score desc, then oldest first, then id."""
    return sorted(tasks, key=lambda t: (-float(t.priority_score), t.created_at, t.id))


def top_score(column: Sequence[Task], *, step: float = FIXED_STEP, base: float = BASE_SCORE) -> float:
    """Score that places a new task on top of *column*."""
    if not column:
        return base
    return max(float(t.priority_score) for t in column) + step


def is_evenly_spaced(scores: Sequence[float], step: float = FIXED_STEP) -> bool:
    return all(a - b >= step for a, b in zip(scores, scores[1:]))


def rebalance(
    column_desc: Sequence[Task],
    *,
    step: float = FIXED_STEP,
    base: float = BASE_SCORE,
    force: bool = False,
) -> dict[str, float]:
    """Re-space *column_desc* (in its given order) and return the changed scores.

    An already evenly spaced column is left alone unless *force* is set.
    """
    if not force and is_evenly_spaced([float(t.priority_score) for t in column_desc], step):
        return {}
    changes: dict[str, float] = {}
    for index, task in enumerate(column_desc):
        score = base - index * step
        if float(task.priority_score) != score:
            changes[task.id] = score
    return changes


# ---------------------------------------------------------------------------
# Reorder
# ---------------------------------------------------------------------------

@dataclass
class ReorderPlan:
    """Outcome of moving one task within its column."""

    task_id: str
    old_score: float
    new_score: float
    order: list[str] = field(default_factory=list)
    changes: dict[str, float] = field(default_factory=dict)
    rebalanced: bool = False

    @property
    def is_noop(self) -> bool:
        return not self.changes


def plan_reorder(
    task: Task,
    column_desc: Sequence[Task],
    target_index: int,
    *,
    step: float = FIXED_STEP,
    base: float = BASE_SCORE,
    resolution: float = DEFAULT_RESOLUTION,
) -> ReorderPlan:
    """Compute the score *task* needs to sit at *target_index* of *column_desc*.

    *column_desc* is the destination column ordered by descending score; it may
    or may not already contain *task*.
    """
    others = [t for t in column_desc if t.id != task.id]
    index = max(0, min(int(target_index), len(others)))
    new_order = others[:index] + [task] + others[index:]
    prev = others[index - 1] if index > 0 else None
    nxt = others[index] if index < len(others) else None

    old_score = float(task.priority_score)
    plan = ReorderPlan(
        task_id=task.id,
        old_score=old_score,
        new_score=old_score,
        order=[t.id for t in new_order],
    )

    if prev is None and nxt is None:
        return plan
    if prev is None:
        key: Optional[OrderKey] = OrderKey.above(OrderKey.of(nxt), step)
    elif nxt is None:
        key = OrderKey.below(OrderKey.of(prev), step)
    else:
        key = OrderKey.between(OrderKey.of(prev), OrderKey.of(nxt), resolution)

    if key is None:
        logger.info(
            "Precision exhausted between %s and %s; rebalancing %d tasks",
            prev.id if prev else None,
            nxt.id if nxt else None,
            len(new_order),
        )
        plan.changes = rebalance(new_order, step=step, base=base, force=True)
        plan.new_score = plan.changes.get(task.id, old_score)
        plan.rebalanced = True
        return plan

    plan.new_score = key.value
    if key.value != old_score:
        plan.changes = {task.id: key.value}
    return plan
