"""Task store clients used by the board controller.

The controller only talks to the :class:`TaskStoreClient` interface, so the
same reconciliation logic runs against an in-process engine or a remote board
server.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import httpx
from filelock import Timeout

from ..task_engine.dependencies import EdgeSet
from ..task_engine.engine import TaskEngine
from ..task_engine.errors import (
    BoardError,
    GuardViolation,
    StoreUnavailableError,
    TaskNotFoundError,
    error_from_payload,
)
from ..task_engine.model import Task, TaskStatus


class TaskStoreClient(ABC):
    @abstractmethod
    def list_all_tasks(self) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    def update_task_priority(self, task_id: str, new_score: float, reason: str) -> Task:
        raise NotImplementedError

    @abstractmethod
    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
    ) -> Task:
        raise NotImplementedError

    @abstractmethod
    def set_waiting_third_party(self, task_id: str, waiting: bool, reason: Optional[str] = None) -> Task:
        raise NotImplementedError

    @abstractmethod
    def get_task_dependencies(self, task_id: str) -> dict[str, list[Task]]:
        raise NotImplementedError

    @abstractmethod
    def update_task_dependencies(self, task_id: str, depends_on: list[str], enables: list[str]) -> EdgeSet:
        raise NotImplementedError


class EngineTaskStoreClient(TaskStoreClient):
    """In-process client backed directly by a :class:`TaskEngine`.

    Lock timeouts and file I/O failures surface as :class:`StoreUnavailableError`
    so the controller treats them like a network failure of the HTTP client.
    """

    def __init__(self, engine: TaskEngine) -> None:
        self.engine = engine

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except Timeout as exc:
            raise StoreUnavailableError(f"{action} failed: task store is locked ({exc})") from exc
        except OSError as exc:
            raise StoreUnavailableError(f"{action} failed: {exc}") from exc

    def list_all_tasks(self) -> list[Task]:
        with self._store_errors("list tasks"):
            return self.engine.list_all_tasks()

    def update_task_priority(self, task_id: str, new_score: float, reason: str) -> Task:
        with self._store_errors(f"reprioritize {task_id}"):
            return self.engine.update_task_priority(task_id, new_score, reason)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
    ) -> Task:
        with self._store_errors(f"update status of {task_id}"):
            return self.engine.update_task_status(task_id, status, evidence_url=evidence_url, attachment=attachment)

    def set_waiting_third_party(self, task_id: str, waiting: bool, reason: Optional[str] = None) -> Task:
        with self._store_errors(f"toggle waiting on {task_id}"):
            return self.engine.set_waiting_third_party(task_id, waiting, reason=reason)

    def get_task_dependencies(self, task_id: str) -> dict[str, list[Task]]:
        with self._store_errors(f"load dependencies of {task_id}"):
            return self.engine.get_task_dependencies(task_id)

    def update_task_dependencies(self, task_id: str, depends_on: list[str], enables: list[str]) -> EdgeSet:
        with self._store_errors(f"save dependencies of {task_id}"):
            return self.engine.update_task_dependencies(task_id, depends_on, enables)


class HttpTaskStoreClient(TaskStoreClient):
    """Client for the ``/api/tasks`` REST API.

    Parameters
    ----------
    base_url:
        Server root, e.g. ``http://127.0.0.1:8000``.  Ignored when *client* is given.
    client:
        A preconfigured :class:`httpx.Client` (a FastAPI ``TestClient`` works too).
    project_dir:
        Optional project directory forwarded as the ``project_dir`` query parameter.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        *,
        client: Optional[httpx.Client] = None,
        project_dir: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._params = {"project_dir": project_dir} if project_dir else {}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpTaskStoreClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _request(self, method: str, path: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            resp = self._client.request(method, path, json=payload, params=self._params)
        except httpx.HTTPError as exc:
            raise StoreUnavailableError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 500:
            raise StoreUnavailableError(
                f"{method} {path} returned {resp.status_code}", status_code=resp.status_code
            )
        if resp.status_code >= 400:
            raise self._error_for(resp)
        return resp.json()

    @staticmethod
    def _error_for(resp: httpx.Response) -> BoardError:
        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = resp.text
        if isinstance(detail, dict):
            return error_from_payload(detail)
        if resp.status_code == 404:
            return TaskNotFoundError(str(detail or "unknown"))
        # plain-string details and pydantic 422 validation errors
        return GuardViolation(str(detail))

    def list_all_tasks(self) -> list[Task]:
        data = self._request("GET", "/api/tasks")
        return [Task.from_dict(t) for t in data.get("tasks", [])]

    def update_task_priority(self, task_id: str, new_score: float, reason: str) -> Task:
        data = self._request(
            "PATCH",
            f"/api/tasks/{task_id}/priority",
            {"new_priority_score": new_score, "reason": reason},
        )
        return Task.from_dict(data["task"])

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        evidence_url: Optional[str] = None,
        attachment: Optional[str] = None,
    ) -> Task:
        body: dict[str, Any] = {"status": TaskStatus.parse(status).value}
        if evidence_url:
            body["evidence_url"] = evidence_url
        if attachment:
            body["attachment"] = attachment
        data = self._request("PATCH", f"/api/tasks/{task_id}/status", body)
        return Task.from_dict(data["task"])

    def set_waiting_third_party(self, task_id: str, waiting: bool, reason: Optional[str] = None) -> Task:
        data = self._request(
            "PATCH",
            f"/api/tasks/{task_id}/waiting",
            {"is_waiting_third_party": waiting, "blocking_reason": reason},
        )
        return Task.from_dict(data["task"])

    def get_task_dependencies(self, task_id: str) -> dict[str, list[Task]]:
        data = self._request("GET", f"/api/tasks/{task_id}/dependencies")
        return {
            "depends_on": [Task.from_dict(t) for t in data.get("depends_on", [])],
            "enables": [Task.from_dict(t) for t in data.get("enables", [])],
        }

    def update_task_dependencies(self, task_id: str, depends_on: list[str], enables: list[str]) -> EdgeSet:
        data = self._request(
            "PUT",
            f"/api/tasks/{task_id}/dependencies",
            {"depends_on": list(depends_on), "enables": list(enables)},
        )
        return EdgeSet(depends_on=data.get("depends_on", []), enables=data.get("enables", []))
