"""Tests for the dependency graph manager (task_engine/dependencies.py)."""

from __future__ import annotations

import pytest

from okr_board.task_engine.dependencies import (
    EdgeSet,
    drop_task,
    edges_for,
    find_cycle,
    find_overlap,
    precedence_graph,
    replace_edges,
    selectable_candidates,
    validate_edge_set,
)
from okr_board.task_engine.errors import (
    DependencyCycleError,
    DependencyError,
    DependencyOverlapError,
    TaskNotFoundError,
)
from okr_board.task_engine.model import DependencyEdge, DependencyKind, Task

DEP = DependencyKind.DEPENDS_ON
ENA = DependencyKind.ENABLES
KNOWN = {"A", "B", "C", "D"}


class TestEdgeSet:
    def test_dedupes_and_strips(self) -> None:
        es = EdgeSet(depends_on=["B", " B", "C", ""], enables=["D", "D"])
        assert es.depends_on == ["B", "C"]
        assert es.enables == ["D"]

    def test_overlap(self) -> None:
        assert find_overlap(EdgeSet(depends_on=["B", "C"], enables=["B"])) == ["B"]
        assert find_overlap(EdgeSet(depends_on=["B"], enables=["C"])) == []


class TestEdgeLists:
    def test_replace_is_full_replacement(self) -> None:
        edges = [DependencyEdge("A", "B", DEP), DependencyEdge("A", "C", ENA), DependencyEdge("D", "A", DEP)]
        new = replace_edges("A", EdgeSet(depends_on=["C"]), edges)
        assert edges_for("A", new) == EdgeSet(depends_on=["C"], enables=[])
        # edges owned by other tasks are untouched
        assert DependencyEdge("D", "A", DEP) in new

    def test_clearing_both_lists(self) -> None:
        edges = [DependencyEdge("A", "B", DEP)]
        assert replace_edges("A", EdgeSet(), edges) == []

    def test_drop_task(self) -> None:
        edges = [DependencyEdge("A", "B", DEP), DependencyEdge("C", "A", ENA), DependencyEdge("C", "D", DEP)]
        assert drop_task("A", edges) == [DependencyEdge("C", "D", DEP)]


class TestCycles:
    def test_precedence_direction(self) -> None:
        graph = precedence_graph([DependencyEdge("A", "B", DEP), DependencyEdge("A", "C", ENA)])
        assert graph["A"] == ["B"]
        assert graph["C"] == ["A"]

    def test_find_cycle(self) -> None:
        graph = {"A": ["B"], "B": ["C"], "C": ["A"]}
        cycle = find_cycle(graph)
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"A", "B", "C"}

    def test_acyclic(self) -> None:
        assert find_cycle({"A": ["B", "C"], "B": ["C"], "C": []}) is None

    def test_through_ignores_unrelated_cycle(self) -> None:
        graph = {"X": ["Y"], "Y": ["X"], "A": ["B"]}
        assert find_cycle(graph, through="A") is None
        assert find_cycle(graph) is not None


class TestValidateEdgeSet:
    def test_overlap_names_conflict(self) -> None:
        with pytest.raises(DependencyOverlapError) as exc_info:
            validate_edge_set("A", EdgeSet(depends_on=["B"], enables=["B"]), known_ids=KNOWN)
        assert exc_info.value.conflicts == ["B"]
        assert "B" in str(exc_info.value)

    def test_self_reference(self) -> None:
        with pytest.raises(DependencyError, match="itself"):
            validate_edge_set("A", EdgeSet(depends_on=["A"]), known_ids=KNOWN)

    def test_unknown_ids(self) -> None:
        with pytest.raises(TaskNotFoundError) as exc_info:
            validate_edge_set("A", EdgeSet(depends_on=["B", "Z"]), known_ids=KNOWN)
        assert exc_info.value.task_ids == ["Z"]

    def test_direct_cycle(self) -> None:
        edges = [DependencyEdge("A", "B", DEP)]
        with pytest.raises(DependencyCycleError) as exc_info:
            validate_edge_set("B", EdgeSet(depends_on=["A"]), known_ids=KNOWN, edges=edges)
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]

    def test_cycle_through_enables(self) -> None:
        # A enables B means B waits on A; B enabling A closes the loop.
        edges = [DependencyEdge("A", "B", ENA)]
        with pytest.raises(DependencyCycleError):
            validate_edge_set("B", EdgeSet(enables=["A"]), known_ids=KNOWN, edges=edges)

    def test_mixed_kinds_cycle(self) -> None:
        # A enabling C means C waits on A, closing A -> B -> C -> A.
        edges = [DependencyEdge("A", "B", DEP), DependencyEdge("B", "C", DEP)]
        with pytest.raises(DependencyCycleError):
            validate_edge_set("A", EdgeSet(depends_on=["B"], enables=["C"]), known_ids=KNOWN, edges=edges)

    def test_cycle_check_can_be_disabled(self) -> None:
        edges = [DependencyEdge("A", "B", DEP)]
        validate_edge_set("B", EdgeSet(depends_on=["A"]), known_ids=KNOWN, edges=edges, detect_cycles=False)

    def test_replacing_own_edges_breaks_old_cycle_path(self) -> None:
        edges = [DependencyEdge("A", "B", DEP), DependencyEdge("B", "C", DEP)]
        # C -> A would close a loop, but A's old edge is being replaced.
        validate_edge_set("A", EdgeSet(), known_ids=KNOWN, edges=edges + [DependencyEdge("C", "A", DEP)])

    def test_existing_unrelated_cycle_does_not_block(self) -> None:
        edges = [DependencyEdge("C", "D", DEP), DependencyEdge("D", "C", DEP)]
        validate_edge_set("A", EdgeSet(depends_on=["B"]), known_ids=KNOWN, edges=edges)

    def test_valid_set(self) -> None:
        validate_edge_set("A", EdgeSet(depends_on=["B"], enables=["C"]), known_ids=KNOWN)


class TestCandidates:
    def test_excludes_self_and_other_relation(self) -> None:
        tasks = [Task(id=i) for i in ("A", "B", "C", "D")]
        current = EdgeSet(depends_on=["B"], enables=["C"])
        dep = selectable_candidates("A", DEP, tasks, current)
        assert [t.id for t in dep] == ["B", "D"]
        ena = selectable_candidates("A", "enables", tasks, current)
        assert [t.id for t in ena] == ["C", "D"]
