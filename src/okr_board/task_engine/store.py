"""File-based task store with inter-process locking.

Stores tasks and dependency edges in a single YAML file (``tasks.yaml``) inside
the project's ``.okr_board/`` directory.  All reads and writes go through
:func:`TaskStore.transaction`, which holds an exclusive file lock for the whole
load-modify-save cycle.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import yaml
from filelock import FileLock

from .model import DependencyEdge, Task, TaskStatus

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STORE_FILENAME = "tasks.yaml"
LOCK_FILENAME = "tasks.lock"
LOCK_TIMEOUT = 30  # seconds
STORE_VERSION = 1


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Load the raw task and edge lists from *path*, returning empties if missing."""
    if not path.exists():
        return [], []
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        return [], []
    tasks = data.get("tasks")
    edges = data.get("dependencies")
    return (
        list(tasks) if isinstance(tasks, list) else [],
        list(edges) if isinstance(edges, list) else [],
    )


def _save_raw(path: Path, tasks: list[dict[str, Any]], edges: list[dict[str, Any]]) -> None:
    """Atomically write the store to *path* (write-tmp-then-rename)."""
    payload = {"version": STORE_VERSION, "tasks": tasks, "dependencies": edges}
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yaml.safe_dump(payload, fh, default_flow_style=False, sort_keys=False)
        shutil.move(tmp, str(path))
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """File-backed store for tasks and dependency edges, safe across processes.

    Parameters
    ----------
    state_dir:
        The project's ``.okr_board/`` directory; created when missing.
    """

    def __init__(self, state_dir: Path) -> None:
        state_dir.mkdir(parents=True, exist_ok=True)
        self._path = state_dir / STORE_FILENAME
        self._lock = FileLock(str(state_dir / LOCK_FILENAME), timeout=LOCK_TIMEOUT)

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> _TaskTx:
        raw_tasks, raw_edges = _load_raw(self._path)
        return _TaskTx(
            [Task.from_dict(d) for d in raw_tasks],
            [DependencyEdge.from_dict(d) for d in raw_edges],
        )

    @contextmanager
    def transaction(self) -> Iterator[_TaskTx]:
        """Hold the store lock for a whole load-modify-save cycle.

        The file is rewritten only when the block marked the transaction dirty
        and finished without raising::

            with store.transaction() as tx:
                tx.get(task_id).priority_score = 995.0
                tx.dirty = True
        """
        with self._lock:
            tx = self._load()
            yield tx
            if tx.dirty:
                _save_raw(
                    self._path,
                    [t.to_dict() for t in tx.tasks],
                    [e.to_dict() for e in tx.edges],
                )

    def read_snapshot(self) -> list[Task]:
        with self._lock:
            return self._load().tasks

    def read_edges(self) -> list[DependencyEdge]:
        with self._lock:
            return self._load().edges

    def get_one(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._load().get(task_id)


class _TaskTx:
    """Working copy of the store contents inside one transaction."""

    def __init__(self, tasks: list[Task], edges: list[DependencyEdge]) -> None:
        self._by_id: dict[str, Task] = {t.id: t for t in tasks}
        self.edges = edges
        self.dirty = False
        # (event_type, task_id, details) to publish once the transaction is saved
        self.events: list[tuple[str, Optional[str], dict[str, Any]]] = []

    @property
    def tasks(self) -> list[Task]:
        return list(self._by_id.values())

    def get(self, task_id: str) -> Optional[Task]:
        return self._by_id.get(task_id)

    def list_all(self) -> list[Task]:
        return self.tasks

    def ids(self) -> set[str]:
        return set(self._by_id)

    def column(self, status: TaskStatus) -> list[Task]:
        return [t for t in self._by_id.values() if t.status == status]

    def find(
        self,
        *,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
        objective_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[Task]:
        """Tasks matching every given filter; *search* is a case-insensitive substring."""
        checks: list[Callable[[Task], bool]] = []
        if status:
            wanted = TaskStatus.parse(status)
            checks.append(lambda t: t.status == wanted)
        if project_id:
            checks.append(lambda t: t.project_id == project_id)
        if objective_id:
            checks.append(lambda t: t.objective_id == objective_id)
        if search:
            needle = search.lower()
            checks.append(lambda t: any(needle in s.lower() for s in (t.id, t.title, t.description)))
        return [t for t in self._by_id.values() if all(check(t) for check in checks)]

    def add(self, task: Task) -> Task:
        if task.id in self._by_id:
            raise ValueError(f"Duplicate task id {task.id}")
        self._by_id[task.id] = task
        self.dirty = True
        return task

    def hard_remove(self, task_id: str) -> bool:
        if self._by_id.pop(task_id, None) is None:
            return False
        self.dirty = True
        return True

    def set_edges(self, edges: list[DependencyEdge]) -> None:
        self.edges = list(edges)
        self.dirty = True
