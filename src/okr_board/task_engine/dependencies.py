"""Dependency graph manager.

Each task owns two adjacency lists, ``depends_on`` and ``enables``.  They are
always saved together as a full replacement of the task's edges.  A peer may
never appear in both lists of the same task, and, unless disabled, the combined
graph must stay acyclic.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .errors import (
    DependencyCycleError,
    DependencyError,
    DependencyOverlapError,
    TaskNotFoundError,
)
from .model import DependencyEdge, DependencyKind, Task

logger = logging.getLogger(__name__)


def _dedupe(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for raw in ids:
        tid = str(raw).strip()
        if tid and tid not in seen:
            seen.add(tid)
            out.append(tid)
    return out


@dataclass
class EdgeSet:
    """The two adjacency lists of one task, in insertion order."""

    depends_on: list[str] = field(default_factory=list)
    enables: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.depends_on = _dedupe(self.depends_on)
        self.enables = _dedupe(self.enables)

    def of_kind(self, kind: DependencyKind) -> list[str]:
        return self.depends_on if kind == DependencyKind.DEPENDS_ON else self.enables

    def peers(self) -> set[str]:
        return set(self.depends_on) | set(self.enables)

    def to_dict(self) -> dict[str, list[str]]:
        return {"depends_on": list(self.depends_on), "enables": list(self.enables)}


def find_overlap(edge_set: EdgeSet) -> list[str]:
    enables = set(edge_set.enables)
    return [tid for tid in edge_set.depends_on if tid in enables]


# ---------------------------------------------------------------------------
# Edge list operations
# ---------------------------------------------------------------------------

def edges_for(task_id: str, edges: Iterable[DependencyEdge]) -> EdgeSet:
    depends_on: list[str] = []
    enables: list[str] = []
    for edge in edges:
        if edge.from_task_id != task_id:
            continue
        if edge.kind == DependencyKind.DEPENDS_ON:
            depends_on.append(edge.to_task_id)
        else:
            enables.append(edge.to_task_id)
    return EdgeSet(depends_on=depends_on, enables=enables)


def replace_edges(task_id: str, edge_set: EdgeSet, edges: Iterable[DependencyEdge]) -> list[DependencyEdge]:
    """Drop every edge owned by *task_id* and append *edge_set* in its place."""
    kept = [e for e in edges if e.from_task_id != task_id]
    kept.extend(DependencyEdge(task_id, peer, DependencyKind.DEPENDS_ON) for peer in edge_set.depends_on)
    kept.extend(DependencyEdge(task_id, peer, DependencyKind.ENABLES) for peer in edge_set.enables)
    return kept


def drop_task(task_id: str, edges: Iterable[DependencyEdge]) -> list[DependencyEdge]:
    """Remove every edge that starts or ends at *task_id*."""
    return [e for e in edges if task_id not in (e.from_task_id, e.to_task_id)]


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------

def precedence_graph(edges: Iterable[DependencyEdge]) -> dict[str, list[str]]:
    """Map each task to the tasks that must finish before it.

    ``A depends_on B`` gives ``A -> B``; ``A enables C`` gives ``C -> A``.
    """
    graph: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        if edge.kind == DependencyKind.DEPENDS_ON:
            src, dst = edge.from_task_id, edge.to_task_id
        else:
            src, dst = edge.to_task_id, edge.from_task_id
        if dst not in graph[src]:
            graph[src].append(dst)
    return graph


def find_cycle(graph: dict[str, list[str]], through: Optional[str] = None) -> Optional[list[str]]:
    """Return one cycle as a closed path (``[a, b, a]``), or ``None``.

    Iterative DFS with recursion-stack marking.  With *through* only cycles
    passing through that node are reported; a cycle created by replacing one
    task's edges always does.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color: dict[str, int] = defaultdict(int)
    roots = [through] if through is not None else list(graph)

    for root in roots:
        if color[root] != WHITE:
            continue
        path: list[str] = [root]
        stack: list[tuple[str, int]] = [(root, 0)]
        color[root] = GREY
        while stack:
            node, idx = stack[-1]
            children = graph.get(node, [])
            if idx < len(children):
                stack[-1] = (node, idx + 1)
                child = children[idx]
                if color[child] == GREY and (through is None or child == through):
                    return path[path.index(child):] + [child]
                if color[child] == WHITE:
                    color[child] = GREY
                    path.append(child)
                    stack.append((child, 0))
            else:
                color[node] = BLACK
                path.pop()
                stack.pop()
    return None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_edge_set(
    task_id: str,
    edge_set: EdgeSet,
    *,
    known_ids: Optional[Iterable[str]] = None,
    edges: Sequence[DependencyEdge] = (),
    detect_cycles: bool = True,
) -> None:
    """Raise a :class:`DependencyError` subclass if *edge_set* may not be saved."""
    overlap = find_overlap(edge_set)
    if overlap:
        raise DependencyOverlapError(task_id, overlap)
    if task_id in edge_set.peers():
        raise DependencyError(f"Task {task_id} cannot depend on or enable itself")
    if known_ids is not None:
        known = set(known_ids)
        missing = [tid for tid in edge_set.depends_on + edge_set.enables if tid not in known]
        if missing:
            raise TaskNotFoundError(missing)
    if detect_cycles:
        proposed = replace_edges(task_id, edge_set, edges)
        cycle = find_cycle(precedence_graph(proposed), through=task_id)
        if cycle:
            logger.info("Rejected dependencies for %s: cycle %s", task_id, cycle)
            raise DependencyCycleError(task_id, cycle)


# ---------------------------------------------------------------------------
# Selection rule
# ---------------------------------------------------------------------------

def selectable_candidates(
    task_id: str,
    kind: DependencyKind | str,
    tasks: Iterable[Task],
    current: EdgeSet,
) -> list[Task]:
    """Tasks that may be picked for *kind* given the task's *current* edges.

    Peers already used by the other relation are excluded, as is the task
    itself.
    """
    kind = DependencyKind(kind)
    other = DependencyKind.ENABLES if kind == DependencyKind.DEPENDS_ON else DependencyKind.DEPENDS_ON
    excluded = set(current.of_kind(other)) | {task_id}
    return [t for t in tasks if t.id not in excluded]
