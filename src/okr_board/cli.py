from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .config import STATE_DIR_NAME, BoardSettings
from .server import create_app
from .task_engine.engine import TaskEngine
from .task_engine.errors import BoardError


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(project_dir: Optional[str]) -> TaskEngine:
    proj = _resolve_project_dir(project_dir)
    return TaskEngine(proj / STATE_DIR_NAME, settings=BoardSettings.for_project(proj))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _fail(exc: Exception) -> int:
    if isinstance(exc, BoardError):
        sys.stderr.write(json.dumps(exc.to_dict()) + '\n')
    else:
        sys.stderr.write(str(exc) + '\n')
    return 1


def _task_create(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    task = engine.create_task(
        title=args.title,
        description=args.description or '',
        status=args.status,
        priority_score=args.priority_score,
        project_id=args.project_id,
        objective_id=args.objective_id,
        complexity=args.complexity,
        evidence_url=args.evidence_url,
    )
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    tasks = engine.list_tasks(
        status=args.status,
        project_id=args.project_id,
        objective_id=args.objective_id,
        search=args.search,
    )
    return _emit({'tasks': [task.to_dict() for task in tasks], 'total': len(tasks)})


def _task_move(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    task, plan = engine.move_task(
        args.task_id,
        args.status,
        args.index,
        reason=args.reason,
        evidence_url=args.evidence_url,
        attachment=args.attachment,
    )
    payload: dict[str, Any] = {'task': task.to_dict(), 'rebalanced': False, 'changes': {}}
    if plan is not None:
        payload.update(rebalanced=plan.rebalanced, changes=plan.changes, order=plan.order)
    return _emit(payload)


def _task_status(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    task = engine.update_task_status(
        args.task_id,
        args.status,
        evidence_url=args.evidence_url,
        attachment=args.attachment,
    )
    return _emit({'task': task.to_dict()})


def _task_waiting(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    task = engine.set_waiting_third_party(args.task_id, args.state == 'on', reason=args.reason)
    return _emit({'task': task.to_dict()})


def _board_show(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    return _emit({'columns': engine.get_board()})


def _board_rebalance(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    changes = engine.rebalance_column(args.status, force=args.force)
    return _emit({'status': args.status.lower(), 'changes': changes})


def _deps_show(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    edge_set = engine.get_edges(args.task_id)
    return _emit({'task_id': args.task_id, **edge_set.to_dict()})


def _deps_set(args: argparse.Namespace) -> int:
    engine = _engine(args.project_dir)
    edge_set = engine.update_task_dependencies(args.task_id, args.depends_on, args.enables)
    return _emit({'task_id': args.task_id, **edge_set.to_dict()})


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'okr-board[server]'\n")
        return 1

    project_dir = _resolve_project_dir(args.project_dir)
    app = create_app(project_dir=project_dir)
    logger.info("Serving task board for {} on {}:{}", project_dir, args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='OKR task board CLI')
    parser.add_argument('--project-dir', default=None, help='Target project directory (default: current working directory)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the board API server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.set_defaults(func=_server)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task')
    tcreate.add_argument('title')
    tcreate.add_argument('--description', default='')
    tcreate.add_argument('--status', default='backlog')
    tcreate.add_argument('--priority-score', default=None, type=float)
    tcreate.add_argument('--project-id', default=None)
    tcreate.add_argument('--objective-id', default=None)
    tcreate.add_argument('--complexity', default=None, choices=['low', 'medium', 'high'])
    tcreate.add_argument('--evidence-url', default=None)
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser('list', help='List tasks')
    tlist.add_argument('--status', default=None)
    tlist.add_argument('--project-id', default=None)
    tlist.add_argument('--objective-id', default=None)
    tlist.add_argument('--search', default=None)
    tlist.set_defaults(func=_task_list)
    tmove = task_sub.add_parser('move', help='Drop a task at a column position')
    tmove.add_argument('task_id')
    tmove.add_argument('status')
    tmove.add_argument('index', type=int)
    tmove.add_argument('--reason', default='manual reorder')
    tmove.add_argument('--evidence-url', default=None)
    tmove.add_argument('--attachment', default=None)
    tmove.set_defaults(func=_task_move)
    tstatus = task_sub.add_parser('status', help='Change task status')
    tstatus.add_argument('task_id')
    tstatus.add_argument('status')
    tstatus.add_argument('--evidence-url', default=None)
    tstatus.add_argument('--attachment', default=None)
    tstatus.set_defaults(func=_task_status)
    twaiting = task_sub.add_parser('waiting', help='Toggle the waiting-on-third-party flag')
    twaiting.add_argument('task_id')
    twaiting.add_argument('state', choices=['on', 'off'])
    twaiting.add_argument('--reason', default=None)
    twaiting.set_defaults(func=_task_waiting)

    board = subparsers.add_parser('board', help='Inspect or maintain the board')
    board_sub = board.add_subparsers(dest='board_cmd', required=True)
    bshow = board_sub.add_parser('show', help='Show all columns in render order')
    bshow.set_defaults(func=_board_show)
    brebalance = board_sub.add_parser('rebalance', help='Re-space the scores of one column')
    brebalance.add_argument('status')
    brebalance.add_argument('--force', action='store_true')
    brebalance.set_defaults(func=_board_rebalance)

    deps = subparsers.add_parser('deps', help='Manage task dependencies')
    deps_sub = deps.add_subparsers(dest='deps_cmd', required=True)
    dshow = deps_sub.add_parser('show', help='Show the edge sets of a task')
    dshow.add_argument('task_id')
    dshow.set_defaults(func=_deps_show)
    dset = deps_sub.add_parser('set', help='Replace both edge sets of a task')
    dset.add_argument('task_id')
    dset.add_argument('--depends-on', nargs='*', default=[])
    dset.add_argument('--enables', nargs='*', default=[])
    dset.set_defaults(func=_deps_set)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except (BoardError, ValueError) as exc:
        return _fail(exc)


if __name__ == '__main__':
    raise SystemExit(main())
