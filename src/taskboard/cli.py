from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from .config import get_log_level, load_config
from .engine.engine import TaskEngine
from .engine.model import TaskPriority, TaskStatus
from .errors import EngineError
from .logging_utils import configure_logging, pretty


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(args: argparse.Namespace) -> TaskEngine:
    return TaskEngine.for_project_dir(_resolve_project_dir(args.project_dir))


def _emit(payload: Any) -> int:
    sys.stdout.write(pretty(payload) + '\n')
    return 0


# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------

def _project_create(args: argparse.Namespace) -> int:
    project = _engine(args).create_project(args.name, args.description or '')
    return _emit({'project': project.to_dict()})


def _project_list(args: argparse.Namespace) -> int:
    page = _engine(args).list_projects(archived=args.archived, page_id=args.page, page_size=args.page_size)
    return _emit(page.to_dict())


def _project_update(args: argparse.Namespace) -> int:
    project = _engine(args).update_project(args.project_id, name=args.name, description=args.description)
    return _emit({'project': project.to_dict()})


def _project_archive(args: argparse.Namespace) -> int:
    return _emit(_engine(args).archive_project(args.project_id).to_dict())


def _project_board(args: argparse.Namespace) -> int:
    return _emit({'columns': _engine(args).get_board(args.project_id)})


# ---------------------------------------------------------------------------
# task
# ---------------------------------------------------------------------------

def _task_create(args: argparse.Namespace) -> int:
    task = _engine(args).create_task(
        args.project_id,
        args.title,
        description=args.description or '',
        priority=args.priority,
    )
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    tasks = _engine(args).list_tasks(args.project_id)
    if args.status:
        tasks = [task for task in tasks if task.status.value == args.status]
    return _emit({'tasks': [task.to_dict() for task in tasks]})


def _task_assign(args: argparse.Namespace) -> int:
    task = _engine(args).assign_task(args.task_id, args.engineer_id, actor=args.actor)
    return _emit({'task': task.to_dict()})


def _task_unassign(args: argparse.Namespace) -> int:
    task = _engine(args).unassign_task(args.task_id, actor=args.actor)
    return _emit({'task': task.to_dict()})


def _task_complete(args: argparse.Namespace) -> int:
    task = _engine(args).complete_task(args.task_id, actor=args.actor)
    return _emit({'task': task.to_dict()})


def _task_move(args: argparse.Namespace) -> int:
    task = _engine(args).move_task(args.task_id, args.source, args.destination, actor=args.actor)
    return _emit({'task': task.to_dict() if task else None})


def _task_recommend(args: argparse.Namespace) -> int:
    recs = _engine(args).get_recommendations(args.task_id, args.limit)
    return _emit({'recommendations': [r.to_dict() for r in recs]})


# ---------------------------------------------------------------------------
# engineer
# ---------------------------------------------------------------------------

def _engineer_add(args: argparse.Namespace) -> int:
    engineer = _engine(args).add_engineer(args.name, args.email or '', engineer_id=args.engineer_id)
    return _emit({'engineer': engineer.to_dict()})


def _engineer_list(args: argparse.Namespace) -> int:
    return _emit({'engineers': _engine(args).team_members()})


def _engineer_current(args: argparse.Namespace) -> int:
    task = _engine(args).current_task(args.engineer_id)
    return _emit({'task': task.to_dict() if task else None})


def _engineer_history(args: argparse.Namespace) -> int:
    page = _engine(args).task_history(
        args.engineer_id,
        search=args.search or '',
        page_id=args.page,
        page_size=args.page_size,
    )
    return _emit(page.to_dict())


def _stats(args: argparse.Namespace) -> int:
    return _emit(_engine(args).dashboard_stats())


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskboard[server]'\n")
        return 1
    from .server import create_app

    app = create_app(project_dir=_resolve_project_dir(args.project_dir))
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Task lifecycle and assignment engine CLI')
    parser.add_argument('--project-dir', default=None, help='Directory holding .taskboard/ (default: current working directory)')
    parser.add_argument('--log-level', default=None, help='Log level (default: from config, else INFO)')
    parser.add_argument('--actor', default=None, help='Who is performing the mutation (recorded in events)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the web server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    stats = subparsers.add_parser('stats', help='Show dashboard statistics')
    stats.set_defaults(func=_stats)

    project = subparsers.add_parser('project', help='Manage projects')
    project_sub = project.add_subparsers(dest='project_cmd', required=True)
    pcreate = project_sub.add_parser('create', help='Create a project')
    pcreate.add_argument('name')
    pcreate.add_argument('--description', default='')
    pcreate.set_defaults(func=_project_create)
    plist = project_sub.add_parser('list', help='List projects')
    plist.add_argument('--archived', action='store_true')
    plist.add_argument('--page', default=1, type=int)
    plist.add_argument('--page-size', default=10, type=int)
    plist.set_defaults(func=_project_list)
    pupdate = project_sub.add_parser('update', help='Rename or re-describe a project')
    pupdate.add_argument('project_id')
    pupdate.add_argument('--name', default=None)
    pupdate.add_argument('--description', default=None)
    pupdate.set_defaults(func=_project_update)
    parchive = project_sub.add_parser('archive', help='Archive a project and freeze its tasks')
    parchive.add_argument('project_id')
    parchive.set_defaults(func=_project_archive)
    pboard = project_sub.add_parser('board', help='Show the project board')
    pboard.add_argument('project_id')
    pboard.set_defaults(func=_project_board)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tcreate = task_sub.add_parser('create', help='Create a task')
    tcreate.add_argument('project_id')
    tcreate.add_argument('title')
    tcreate.add_argument('--description', default='')
    tcreate.add_argument('--priority', default='medium', choices=[p.value for p in TaskPriority])
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser('list', help='List tasks of a project')
    tlist.add_argument('project_id')
    tlist.add_argument('--status', default=None, choices=[s.value for s in TaskStatus])
    tlist.set_defaults(func=_task_list)
    tassign = task_sub.add_parser('assign', help='Assign a task to an engineer')
    tassign.add_argument('task_id')
    tassign.add_argument('engineer_id')
    tassign.set_defaults(func=_task_assign)
    tunassign = task_sub.add_parser('unassign', help='Return an in-progress task to open')
    tunassign.add_argument('task_id')
    tunassign.set_defaults(func=_task_unassign)
    tcomplete = task_sub.add_parser('complete', help='Mark an in-progress task done')
    tcomplete.add_argument('task_id')
    tcomplete.set_defaults(func=_task_complete)
    tmove = task_sub.add_parser('move', help='Move a task between board columns')
    tmove.add_argument('task_id')
    tmove.add_argument('source', choices=[s.value for s in TaskStatus])
    tmove.add_argument('destination', choices=[s.value for s in TaskStatus])
    tmove.set_defaults(func=_task_move)
    trecommend = task_sub.add_parser('recommend', help='Rank engineers for a task')
    trecommend.add_argument('task_id')
    trecommend.add_argument('--limit', default=None, type=int)
    trecommend.set_defaults(func=_task_recommend)

    engineer = subparsers.add_parser('engineer', help='Manage engineers')
    eng_sub = engineer.add_subparsers(dest='engineer_cmd', required=True)
    eadd = eng_sub.add_parser('add', help='Register an engineer')
    eadd.add_argument('name')
    eadd.add_argument('--email', default='')
    eadd.add_argument('--engineer-id', default=None)
    eadd.set_defaults(func=_engineer_add)
    elist = eng_sub.add_parser('list', help='List engineers and their availability')
    elist.set_defaults(func=_engineer_list)
    ecurrent = eng_sub.add_parser('current', help="Show an engineer's in-progress task")
    ecurrent.add_argument('engineer_id')
    ecurrent.set_defaults(func=_engineer_current)
    ehistory = eng_sub.add_parser('history', help="Show an engineer's completed tasks")
    ehistory.add_argument('engineer_id')
    ehistory.add_argument('--search', default='')
    ehistory.add_argument('--page', default=1, type=int)
    ehistory.add_argument('--page-size', default=10, type=int)
    ehistory.set_defaults(func=_engineer_history)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config, _ = load_config(_resolve_project_dir(args.project_dir))
    configure_logging(args.log_level or get_log_level(config))
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except EngineError as exc:
        sys.stderr.write(json.dumps(exc.to_dict()) + '\n')
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
