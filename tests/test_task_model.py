"""Tests for the board task model (task_engine/model.py)."""

from __future__ import annotations

import pytest

from okr_board.task_engine.model import (
    Complexity,
    Deliverable,
    DeliverableKind,
    DependencyEdge,
    DependencyKind,
    Task,
    TaskStatus,
    infer_deliverable_kind,
)


class TestTaskCreation:
    def test_default_values(self) -> None:
        t = Task(title="Ship onboarding v2")
        assert t.status == TaskStatus.BACKLOG
        assert t.priority_score == 0.0
        assert t.evidence_url is None
        assert t.deliverables == []
        assert t.is_waiting_third_party is False
        assert t.blocking_reason is None
        assert t.version == 1
        assert t.id.startswith("task-")
        assert len(t.id) == 13  # "task-" + 8 hex chars

    def test_id_generation_unique(self) -> None:
        ids = {Task().id for _ in range(100)}
        assert len(ids) == 100

    def test_has_evidence(self) -> None:
        assert not Task().has_evidence
        assert Task(evidence_url="https://x").has_evidence
        assert Task(deliverables=[Deliverable(url="https://x")]).has_evidence

    def test_touch_bumps_version(self) -> None:
        t = Task(updated_at="2020-01-01T00:00:00+00:00")
        t.touch()
        assert t.version == 2
        assert t.updated_at != "2020-01-01T00:00:00+00:00"


class TestStatusParse:
    def test_case_insensitive(self) -> None:
        assert TaskStatus.parse("Done") == TaskStatus.DONE
        assert TaskStatus.parse(" todo ") == TaskStatus.TODO
        assert TaskStatus.parse(TaskStatus.WAITING) == TaskStatus.WAITING

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            TaskStatus.parse("archived")


class TestTaskSerialization:
    def test_to_dict(self) -> None:
        t = Task(
            title="Launch pricing page",
            status=TaskStatus.DOING,
            priority_score=990.0,
            objective_id="okr-1",
            complexity=Complexity.HIGH,
            deliverables=[Deliverable(url="https://cdn.example.com/a.png", kind=DeliverableKind.IMAGE)],
        )
        d = t.to_dict()
        assert d["status"] == "doing"
        assert d["complexity"] == "high"
        assert d["priority_score"] == 990.0
        assert d["deliverables"][0]["kind"] == "image"

        restored = Task.from_dict(d)
        assert restored.status == TaskStatus.DOING
        assert restored.complexity == Complexity.HIGH
        assert restored.deliverables[0].kind == DeliverableKind.IMAGE
        assert restored.objective_id == "okr-1"

    def test_from_dict_tolerates_bad_values(self) -> None:
        t = Task.from_dict({"id": "t1", "status": "Archived", "complexity": "huge", "priority_score": None})
        assert t.status == TaskStatus.BACKLOG
        assert t.complexity is None
        assert t.priority_score == 0.0

    def test_from_dict_capitalised_status(self) -> None:
        assert Task.from_dict({"id": "t1", "status": "Done"}).status == TaskStatus.DONE


class TestDeliverables:
    @pytest.mark.parametrize(
        "url, kind",
        [
            ("https://cdn.example.com/shot.PNG", DeliverableKind.IMAGE),
            ("https://cdn.example.com/demo.mp4", DeliverableKind.VIDEO),
            ("https://www.youtube.com/watch?v=abc", DeliverableKind.VIDEO),
            ("https://github.com/org/repo/pull/1", DeliverableKind.LINK),
        ],
    )
    def test_infer_kind(self, url: str, kind: DeliverableKind) -> None:
        assert infer_deliverable_kind(url) == kind

    def test_from_dict_infers_missing_kind(self) -> None:
        d = Deliverable.from_dict({"url": "https://x/y.gif"})
        assert d.kind == DeliverableKind.IMAGE
        assert d.title == "https://x/y.gif"


class TestDependencyEdge:
    def test_dict_shape(self) -> None:
        edge = DependencyEdge("A", "B", DependencyKind.ENABLES)
        assert edge.to_dict() == {"from": "A", "to": "B", "kind": "enables"}
        assert DependencyEdge.from_dict(edge.to_dict()) == edge
