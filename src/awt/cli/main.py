"""Typer command-line interface for awt."""

import json
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from ..handoff import HandoffOptions, HandoffOrchestrator
from ..lifecycle import TaskService
from ..models import Task, TaskState
from ..repo import check_git_version
from ..utils.jsonl_logger import setup_logger
from ..utils.problem_details import format_error
from ..utils.status_codes import AwtError, exit_code_for

app = typer.Typer(help="Manage isolated git worktrees for concurrent agents.", no_args_is_help=True)
task_app = typer.Typer(help="Create, update and hand off tasks.", no_args_is_help=True)
app.add_typer(task_app, name="task")


@dataclass
class CliState:
    repo: Optional[Path] = None
    json_output: bool = False
    verbose: bool = False


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _service(state: CliState) -> TaskService:
    service = TaskService.from_path(state.repo)
    check_git_version(service.git)
    settings = service.settings
    level = "DEBUG" if state.verbose or settings.verbose_git else settings.log_level
    setup_logger(level, log_dir=service.repo.paths.logs_dir)
    return service


def _run(state: CliState, action):
    """Run action(service), rendering awt errors and exiting with their code."""
    try:
        return action(_service(state))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        raise typer.Exit(code=130)
    except Exception as e:
        if not isinstance(e, AwtError):
            logger.opt(exception=e).debug("Unexpected error")
        print(format_error(e, state.json_output), file=sys.stderr)
        raise typer.Exit(code=exit_code_for(e))


def _emit(state: CliState, data, lines) -> None:
    if state.json_output:
        print(json.dumps(data, indent=2))
    else:
        for line in lines:
            print(line)


def _task_lines(verb: str, task: Task):
    yield f"{verb} task {task.id}"
    yield f"  Branch:   {task.branch}"
    yield f"  Base:     {task.base}"
    yield f"  State:    {task.state.value}"
    if task.worktree_path:
        yield f"  Worktree: {task.worktree_path}"


@app.callback()
def main(
    ctx: typer.Context,
    repo: Optional[Path] = typer.Option(None, "--repo", help="Path inside the repository (default: current directory)"),
    json_output: bool = typer.Option(False, "--json", help="Print results and errors as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """awt keeps agent worktrees, branches and task records consistent."""
    setup_logger("DEBUG" if verbose else "WARNING")
    ctx.obj = CliState(repo=repo, json_output=json_output, verbose=verbose)


@task_app.command("start")
def start_task(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Task title"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent name (default: configured default_agent)"),
    base: Optional[str] = typer.Option(None, "--base", help="Base branch (default: auto-detected)"),
    task_id: Optional[str] = typer.Option(None, "--id", help="Task ID (default: generated)"),
    no_fetch: bool = typer.Option(False, "--no-fetch", help="Do not fetch before creating the branch"),
):
    """Create a branch and worktree for a new task."""
    state = _state(ctx)
    task = _run(state, lambda s: s.start_task(title, agent=agent, base=base, task_id=task_id, fetch=not no_fetch))
    _emit(state, task.to_record(), _task_lines("Started", task))


@task_app.command("adopt")
def adopt_task(
    ctx: typer.Context,
    branch: str = typer.Option(..., "--branch", help="Existing branch to adopt"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent name"),
    base: Optional[str] = typer.Option(None, "--base", help="Base branch (default: auto-detected)"),
    title: Optional[str] = typer.Option(None, "--title", help="Task title (default: derived from the branch)"),
    task_id: Optional[str] = typer.Option(None, "--id", help="Task ID (default: generated)"),
):
    """Track an existing branch as a task."""
    state = _state(ctx)
    task = _run(state, lambda s: s.adopt_task(branch, agent=agent, base=base, title=title, task_id=task_id))
    _emit(state, task.to_record(), _task_lines("Adopted", task))


@task_app.command("checkout")
def checkout_task(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    path: Optional[Path] = typer.Option(None, "--path", help="Worktree location (default: configured worktree dir)"),
    submodules: bool = typer.Option(False, "--submodules", help="Initialize submodules in the new worktree"),
):
    """Create a worktree for an adopted task."""
    state = _state(ctx)
    task = _run(state, lambda s: s.checkout_task(task_id, path=path, submodules=submodules))
    _emit(state, task.to_record(), _task_lines("Checked out", task))


@task_app.command("commit")
def commit_task(
    ctx: typer.Context,
    task_id: Optional[str] = typer.Argument(None, help="Task ID (default: inferred from the current directory)"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Commit message (default: generated)"),
    stage_all: bool = typer.Option(False, "--all", "-a", help="Stage all changes before committing"),
    signoff: bool = typer.Option(False, "--signoff", help="Add a Signed-off-by trailer"),
):
    """Commit work in a task's worktree."""
    state = _state(ctx)

    def action(service: TaskService):
        resolved = service.resolve_task_id(task_id)
        return resolved, service.commit_task(resolved, message=message, stage_all=stage_all, signoff=signoff)

    resolved, sha = _run(state, action)
    _emit(state, {"task_id": resolved, "commit": sha}, [f"Committed {sha} for task {resolved}"])


@task_app.command("sync")
def sync_task(
    ctx: typer.Context,
    task_id: Optional[str] = typer.Argument(None, help="Task ID (default: inferred from the current directory)"),
    merge: Optional[bool] = typer.Option(None, "--merge/--rebase", help="Merge instead of rebasing onto the base"),
):
    """Bring a task branch up to date with its base."""
    state = _state(ctx)

    def action(service: TaskService):
        resolved = service.resolve_task_id(task_id)
        return resolved, service.sync_task(resolved, merge=merge)

    resolved, outcome = _run(state, action)
    _emit(state, {"task_id": resolved, "outcome": outcome.value}, [f"Synced task {resolved}: {outcome.value}"])


@task_app.command("handoff")
def handoff_task(
    ctx: typer.Context,
    task_id: Optional[str] = typer.Argument(None, help="Task ID (default: inferred from the current directory)"),
    no_commit: bool = typer.Option(False, "--no-commit", help="Do not commit outstanding changes"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Commit message for outstanding changes"),
    no_sync: bool = typer.Option(False, "--no-sync", help="Do not rebase or merge onto the base"),
    merge: Optional[bool] = typer.Option(None, "--merge/--rebase", help="Merge instead of rebasing onto the base"),
    push: Optional[bool] = typer.Option(None, "--push/--no-push", help="Push the branch (default: config auto_push)"),
    pr: Optional[bool] = typer.Option(None, "--pr/--no-pr", help="Open a review request (default: config auto_pr)"),
    pr_title: Optional[str] = typer.Option(None, "--pr-title", help="Review request title (default: task title)"),
    keep_worktree: bool = typer.Option(False, "--keep-worktree", help="Leave the worktree in place"),
    force_remove: bool = typer.Option(False, "--force-remove", help="Remove the worktree even if the shell is inside it"),
):
    """Commit, sync, push and release a task's worktree."""
    state = _state(ctx)
    options = HandoffOptions(
        commit=not no_commit,
        message=message,
        sync=not no_sync,
        merge=merge,
        push=push,
        create_pr=pr,
        pr_title=pr_title,
        keep_worktree=keep_worktree,
        force_remove=force_remove,
    )

    def action(service: TaskService):
        resolved = service.resolve_task_id(task_id)
        return HandoffOrchestrator(service).run(resolved, options)

    result = _run(state, action)
    lines = [f"Task {result.task_id} is {result.state.value}"]
    if result.already_complete:
        lines = [f"Task {result.task_id} was already handed off"]
    lines += [f"  {step.value}: {outcome.value}" for step, outcome in result.steps]
    if result.pr_url:
        lines.append(f"  Review request: {result.pr_url}")
    if result.worktree_kept:
        lines.append("  Worktree kept")
    lines += [f"  Warning: {warning}" for warning in result.warnings]
    _emit(state, result.to_dict(), lines)


@task_app.command("unlock")
def unlock_task(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    remove: bool = typer.Option(False, "--remove", help="Also remove the worktrees that held the branch"),
):
    """Detach a task's branch from every worktree holding it."""
    state = _state(ctx)
    paths = _run(state, lambda s: s.unlock_task(task_id, remove=remove))
    _emit(
        state,
        {"task_id": task_id, "detached": [str(p) for p in paths]},
        [f"Detached {task_id} in {p}" for p in paths] or [f"Branch of task {task_id} is not checked out anywhere"],
    )


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    state_filter: Optional[TaskState] = typer.Option(None, "--state", help="Only show tasks in this state"),
):
    """List tasks."""
    state = _state(ctx)
    tasks = _run(state, lambda s: s.list_tasks(state_filter))
    lines = [f"{t.id}  {t.state.value:<13}  {t.agent:<12}  {t.branch}  {t.title}" for t in tasks] or ["No tasks"]
    _emit(state, [t.to_record() for t in tasks], lines)


@app.command("prune")
def prune(
    ctx: typer.Context,
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be pruned without changing anything"),
):
    """Remove records and locks left behind by deleted worktrees."""
    state = _state(ctx)
    report = _run(state, lambda s: s.prune(dry_run=dry_run))
    verb = "Would prune" if dry_run else "Pruned"
    _emit(
        state,
        {"pruned_tasks": report.pruned_tasks, "removed_locks": report.removed_locks, "warnings": report.warnings},
        [f"{verb} task {task_id}" for task_id in report.pruned_tasks]
        + [f"Removed stale lock {name}" for name in report.removed_locks]
        or ["Nothing to prune"],
    )


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def run() -> None:
    """Console entry point."""
    signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        app()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
