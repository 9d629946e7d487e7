"""Tests for the task board API endpoints."""

from __future__ import annotations

from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from okr_board.server.api import create_app


@pytest.fixture
def app(tmp_path: Path):
    """Create a test app with a temp project directory."""
    project_dir = tmp_path / "test_project"
    project_dir.mkdir()
    return create_app(project_dir=project_dir, enable_cors=False)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _create(client: AsyncClient, title: str, **fields) -> dict:
    resp = await client.post("/api/tasks", json={"title": title, **fields})
    assert resp.status_code == 201, resp.text
    return resp.json()["task"]


@pytest.mark.anyio
class TestTaskCRUD:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.json() == {"status": "ok"}

    async def test_list_empty(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks")
        assert resp.status_code == 200
        assert resp.json() == {"tasks": [], "total": 0}

    async def test_create_and_get(self, client: AsyncClient) -> None:
        task = await _create(client, "Launch referral program", status="todo", objective_id="okr-growth")
        assert task["priority_score"] == 1000.0
        assert task["status"] == "todo"

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json()["task"]["objective_id"] == "okr-growth"

    async def test_create_validation(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"title": ""})
        assert resp.status_code == 422

    async def test_create_bad_status(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks", json={"title": "x", "status": "archived"})
        assert resp.status_code == 400

    async def test_get_nonexistent(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "task_not_found"

    async def test_list_with_filters(self, client: AsyncClient) -> None:
        await _create(client, "Todo task", status="todo")
        await _create(client, "Doing task", status="doing")
        resp = await client.get("/api/tasks?status=doing")
        assert resp.json()["total"] == 1
        assert resp.json()["tasks"][0]["title"] == "Doing task"

    async def test_delete(self, client: AsyncClient) -> None:
        task = await _create(client, "Temp")
        resp = await client.delete(f"/api/tasks/{task['id']}")
        assert resp.json() == {"status": "deleted"}
        resp = await client.delete(f"/api/tasks/{task['id']}")
        assert resp.status_code == 404


@pytest.mark.anyio
class TestPriorityAndBoard:
    async def test_update_priority(self, client: AsyncClient) -> None:
        task = await _create(client, "A")
        resp = await client.patch(
            f"/api/tasks/{task['id']}/priority",
            json={"new_priority_score": 995.5, "reason": "manual reorder"},
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["priority_score"] == 995.5

        resp = await client.get(f"/api/tasks/{task['id']}/audit")
        events = resp.json()["events"]
        assert events[-1]["details"]["reason"] == "manual reorder"

    async def test_priority_requires_reason(self, client: AsyncClient) -> None:
        task = await _create(client, "A")
        resp = await client.patch(f"/api/tasks/{task['id']}/priority", json={"new_priority_score": 1})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "reason_required"

    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity", "1e400"])
    async def test_priority_rejects_non_finite(self, client: AsyncClient, raw: str) -> None:
        task = await _create(client, "A", status="todo", priority_score=10)
        resp = await client.patch(
            f"/api/tasks/{task['id']}/priority",
            content='{"new_priority_score": %s, "reason": "bump"}' % raw,
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_score"
        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.json()["task"]["priority_score"] == 10.0

    async def test_create_rejects_non_finite(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/tasks",
            content='{"title": "A", "priority_score": NaN}',
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_score"
        resp = await client.get("/api/tasks")
        assert resp.json()["tasks"] == []

    async def test_version_conflict(self, client: AsyncClient) -> None:
        task = await _create(client, "A")
        url = f"/api/tasks/{task['id']}/priority"
        first = await client.patch(url, json={"new_priority_score": 1, "reason": "r", "expected_version": 1})
        assert first.status_code == 200
        stale = await client.patch(url, json={"new_priority_score": 2, "reason": "r", "expected_version": 1})
        assert stale.status_code == 409
        detail = stale.json()["detail"]
        assert detail["error"] == "version_conflict"
        assert detail["actual"] == 2

    async def test_move_and_board(self, client: AsyncClient) -> None:
        a = await _create(client, "A", status="todo", priority_score=10)
        b = await _create(client, "B", status="todo", priority_score=9)
        c = await _create(client, "C", status="todo", priority_score=5)

        resp = await client.post(f"/api/tasks/{c['id']}/move", json={"status": "todo", "index": 1})
        assert resp.status_code == 200
        data = resp.json()
        assert data["rebalanced"] is True
        assert data["order"] == [a["id"], c["id"], b["id"]]

        board = (await client.get("/api/tasks/board")).json()["columns"]
        assert [t["priority_score"] for t in board["todo"]] == [1000.0, 990.0, 980.0]
        assert board["done"] == []

    async def test_move_across_columns(self, client: AsyncClient) -> None:
        a = await _create(client, "A", status="todo")
        resp = await client.post(f"/api/tasks/{a['id']}/move", json={"status": "doing", "index": 3})
        data = resp.json()
        assert data["task"]["status"] == "doing"
        assert data["task"]["priority_score"] == a["priority_score"]
        assert data["changes"] == {}

    async def test_rebalance_endpoint(self, client: AsyncClient) -> None:
        await _create(client, "A", status="todo", priority_score=3)
        await _create(client, "B", status="todo", priority_score=2)
        resp = await client.post("/api/tasks/columns/todo/rebalance")
        assert sorted(resp.json()["changes"].values()) == [990.0, 1000.0]

    async def test_state_machine(self, client: AsyncClient) -> None:
        data = (await client.get("/api/tasks/meta/state-machine")).json()
        assert "done" in data["transitions"]["backlog"]
        assert data["settings"]["ordering"]["step"] == 10.0


@pytest.mark.anyio
class TestStatus:
    async def test_done_requires_evidence(self, client: AsyncClient) -> None:
        task = await _create(client, "A", status="doing")
        resp = await client.patch(f"/api/tasks/{task['id']}/status", json={"status": "done"})
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["error"] == "evidence_required"
        assert detail["message"] == "evidence required"

        resp = await client.get(f"/api/tasks/{task['id']}")
        assert resp.json()["task"]["status"] == "doing"

    async def test_done_with_evidence(self, client: AsyncClient) -> None:
        task = await _create(client, "A", status="doing")
        resp = await client.patch(
            f"/api/tasks/{task['id']}/status",
            json={"status": "done", "evidence_url": "https://github.com/org/repo/pull/9"},
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["evidence_url"] == "https://github.com/org/repo/pull/9"

    async def test_deliverable_then_done(self, client: AsyncClient) -> None:
        task = await _create(client, "A", status="doing")
        resp = await client.post(f"/api/tasks/{task['id']}/deliverables", json={"url": "https://x/y.png"})
        assert resp.status_code == 201
        assert resp.json()["task"]["deliverables"][0]["kind"] == "image"
        resp = await client.patch(f"/api/tasks/{task['id']}/status", json={"status": "done"})
        assert resp.status_code == 200

    async def test_waiting_forces_doing(self, client: AsyncClient) -> None:
        task = await _create(client, "A", status="backlog")
        resp = await client.patch(
            f"/api/tasks/{task['id']}/waiting",
            json={"is_waiting_third_party": True, "blocking_reason": "Awaiting legal"},
        )
        data = resp.json()["task"]
        assert data["status"] == "doing"
        assert data["is_waiting_third_party"] is True
        assert data["blocking_reason"] == "Awaiting legal"

    async def test_status_unknown_task(self, client: AsyncClient) -> None:
        resp = await client.patch("/api/tasks/nope/status", json={"status": "todo"})
        assert resp.status_code == 404


@pytest.mark.anyio
class TestDependencies:
    async def test_put_and_get(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B")
        c = await _create(client, "C")
        resp = await client.put(
            f"/api/tasks/{a['id']}/dependencies",
            json={"depends_on": [b["id"]], "enables": [c["id"]]},
        )
        assert resp.status_code == 200
        assert resp.json() == {"task_id": a["id"], "depends_on": [b["id"]], "enables": [c["id"]]}

        deps = (await client.get(f"/api/tasks/{a['id']}/dependencies")).json()
        assert [t["title"] for t in deps["depends_on"]] == ["B"]
        assert [t["title"] for t in deps["enables"]] == ["C"]

    async def test_overlap(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B")
        resp = await client.put(
            f"/api/tasks/{a['id']}/dependencies",
            json={"depends_on": [b["id"]], "enables": [b["id"]]},
        )
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["error"] == "dependency_overlap"
        assert detail["conflicts"] == [b["id"]]

    async def test_cycle(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B")
        await client.put(f"/api/tasks/{a['id']}/dependencies", json={"depends_on": [b["id"]]})
        resp = await client.put(f"/api/tasks/{b['id']}/dependencies", json={"depends_on": [a["id"]]})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "dependency_cycle"

    async def test_unknown_peer(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        resp = await client.put(f"/api/tasks/{a['id']}/dependencies", json={"depends_on": ["ghost"]})
        assert resp.status_code == 404
        assert resp.json()["detail"]["task_ids"] == ["ghost"]

    async def test_candidates(self, client: AsyncClient) -> None:
        a = await _create(client, "A")
        b = await _create(client, "B")
        c = await _create(client, "C")
        await client.put(f"/api/tasks/{a['id']}/dependencies", json={"enables": [b["id"]]})
        resp = await client.get(f"/api/tasks/{a['id']}/dependencies/candidates?kind=depends_on")
        ids = {t["id"] for t in resp.json()["tasks"]}
        assert ids == {c["id"]}
