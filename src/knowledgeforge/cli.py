"""KnowledgeForge CLI — track progress through learning roadmaps.

Installed as the ``knowledgeforge`` console_script.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from knowledgeforge import __version__
from knowledgeforge.config import Config, resolve_project_root
from knowledgeforge.errors import RoadmapShapeError, StateWriteError
from knowledgeforge.generator import JsonFileGenerator
from knowledgeforge.roadmap.model import Phase, ProjectState, active_instance
from knowledgeforge.roadmap.progress import (
    CompletionResult,
    get_current_task,
    get_progress,
    is_complete,
    project_summary,
)
from knowledgeforge.stats import level_for_xp, update_stats, xp_to_next_level
from knowledgeforge.store import StateStore

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _store(ctx: click.Context) -> StateStore:
    return ctx.find_root().obj


def _fail(msg: str) -> None:
    from knowledgeforge import log

    log.error(msg)
    sys.exit(1)


def _load_phases(path: str) -> list[Phase]:
    try:
        return JsonFileGenerator(path).generate()
    except RoadmapShapeError as exc:
        _fail(f"Invalid roadmap file {path}: {exc}")
    except OSError as exc:
        _fail(f"Cannot read {path}: {exc}")
    return []


def _require_state(store: StateStore) -> ProjectState:
    state = store.load()
    if state is None:
        _fail("No KnowledgeForge project here. Run 'knowledgeforge init <phases.json>' first.")
    return state


def _report_completion(store: StateStore, result: CompletionResult) -> None:
    from knowledgeforge import log
    from knowledgeforge.notify import badge_label, notify_badge

    for key in result.unlocked_badges:
        log.badge(badge_label(key))
        if store.config.notify:
            notify_badge(key)

    if result.has_next:
        current = store.current_task()
        if current is not None:
            log.info(f"Next: {current.task}")
    else:
        log.success("No tasks left in this roadmap.")


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--project",
    "project",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory (default: git root or cwd)",
)
@click.option("--no-notify", is_flag=True, help="Disable desktop notifications")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="knowledgeforge")
@click.pass_context
def main(ctx: click.Context, project: Path | None, no_notify: bool, verbose: bool) -> None:
    """KnowledgeForge — personalized learning roadmaps with XP and badges.

    \b
    EXAMPLES:
      knowledgeforge init phases.json          # Start a project from generated phases
      knowledgeforge status                    # Where am I?
      knowledgeforge complete --xp 50          # Finish the current task
      knowledgeforge roadmaps list             # All learning paths in this project
    """
    from knowledgeforge import log as klog

    klog.set_verbose(verbose)
    cfg = Config(verbose=verbose)
    if no_notify:
        cfg.notify = False
    root = project if project is not None else resolve_project_root()
    klog.debug(f"Project root: {root}")
    ctx.obj = StateStore(root, config=cfg)


# ── project ──────────────────────────────────────────────────────────


@main.command()
@click.argument("phases_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def init(ctx: click.Context, phases_file: str) -> None:
    """Initialize the project from a JSON list of phases."""
    from knowledgeforge import log

    store = _store(ctx)
    phases = _load_phases(phases_file)
    if store.load() is not None:
        _fail("Project already initialized. Use 'knowledgeforge roadmaps create' to add a roadmap.")
    try:
        store.initialize_project(phases, store.project_root)
    except StateWriteError as exc:
        _fail(str(exc))
    total = sum(len(p.tasks) for p in phases)
    log.success(f"Roadmap ready: {len(phases)} phase(s), {total} task(s)")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the active roadmap and overall progress."""
    from knowledgeforge import log

    store = _store(ctx)
    state = _require_state(store)
    instance = active_instance(state)
    if instance is not None:
        log.console.print(f"[bold]{instance.title or instance.id}[/bold]")
    log.console.print(project_summary(state))
    log.console.print(f"XP: {instance.total_xp if instance else state.total_xp}")


@main.command("next")
@click.pass_context
def next_task(ctx: click.Context) -> None:
    """Show the current task."""
    from knowledgeforge import log

    store = _store(ctx)
    state = _require_state(store)
    current = get_current_task(active_instance(state))
    if current is None or is_complete(state):
        log.success("Roadmap complete. Nothing left to do.")
        return
    log.console.print(f"[bold]Phase {current.phase_index + 1}:[/bold] {current.phase.title}")
    if current.phase.description:
        log.console.print(f"[dim]{current.phase.description}[/dim]")
    log.console.print(f"Task {current.task_index + 1}: {current.task}")


@main.command()
@click.option("--feedback", default=None, help="Notes to keep with the task")
@click.option("--xp", type=click.IntRange(min=0), default=0, help="XP earned for the task")
@click.pass_context
def complete(ctx: click.Context, feedback: str | None, xp: int) -> None:
    """Mark the current task complete and move on."""
    from knowledgeforge import log

    store = _store(ctx)
    state = _require_state(store)
    if is_complete(state):
        log.success("No tasks left in this roadmap.")
        return
    instance = active_instance(state)
    current = get_current_task(instance)
    if current is not None:
        task_state = instance.find_task(current.phase_index, current.task_index)
        if task_state is not None and task_state.completed:
            log.warn(f"Already completed: {current.task}")
            return
    result = store.complete_current_task(feedback=feedback, xp=xp)
    if current is not None:
        log.success(f"Completed: {current.task}" + (f" (+{xp} XP)" if xp else ""))
    _report_completion(store, result)


@main.command()
@click.pass_context
def skip(ctx: click.Context) -> None:
    """Move to the next task without completing the current one."""
    from knowledgeforge import log

    store = _store(ctx)
    _require_state(store)
    if not store.move_to_next_task():
        log.warn("Already at the last task.")
        return
    current = store.current_task()
    if current is not None:
        log.info(f"Now on: {current.task}")


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show learner statistics for this project."""
    from knowledgeforge import log

    store = _store(ctx)
    state = _require_state(store)
    progress = get_progress(state)
    s = store.stats()
    if s.last_active_date is None:
        s = update_stats(s, state)
    xp = s.total_xp or state.total_xp
    log.console.print(f"Tasks: {progress.completed}/{progress.total} ({progress.percentage}%)")
    log.console.print(f"XP: {xp} (level {level_for_xp(xp)}, {xp_to_next_level(xp)} to next)")
    log.console.print(f"Streak: {s.current_streak} day(s), longest {s.longest_streak}")
    for index, pc in sorted(s.phase_completion.items()):
        log.console.print(f"  Phase {index + 1}: {pc.completed}/{pc.total}")


@main.command()
@click.option("--hard", is_flag=True, help="Also delete .knowledgeforge/state.json and stats.json")
@click.confirmation_option(prompt="Reset project progress?")
@click.pass_context
def reset(ctx: click.Context, hard: bool) -> None:
    """Forget the cached project state."""
    from knowledgeforge import log

    store = _store(ctx)
    store.reset(delete_file=hard)
    if hard:
        store.reset_stats()
    log.success("Project state reset")


# ── roadmaps ─────────────────────────────────────────────────────────


@main.group()
def roadmaps() -> None:
    """Manage the roadmaps of this project."""


@roadmaps.command("list")
@click.pass_context
def list_cmd(ctx: click.Context) -> None:
    """List roadmaps; the active one is marked with '*'."""
    from knowledgeforge import log

    store = _store(ctx)
    state = _require_state(store)
    active = active_instance(state)
    items = store.list_roadmaps()
    if not items:
        log.info("No roadmaps yet.")
        return
    for instance in items:
        marker = "*" if active is not None and instance.id == active.id else " "
        progress = get_progress(instance)
        log.console.print(
            f"{marker} {instance.id}  {instance.title or '(untitled)'}  "
            f"{progress.completed}/{progress.total} ({progress.percentage}%)  {instance.total_xp} XP"
        )


@roadmaps.command("create")
@click.argument("title")
@click.argument("phases_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def create_cmd(ctx: click.Context, title: str, phases_file: str) -> None:
    """Add a roadmap from a JSON list of phases and make it active."""
    from knowledgeforge import log

    store = _store(ctx)
    phases = _load_phases(phases_file)
    _require_state(store)
    instance = store.create_roadmap(title, phases)
    if instance is None:
        _fail("Could not create roadmap")
    log.success(f"Created {instance.id}: {title}")


@roadmaps.command("rename")
@click.argument("roadmap_id")
@click.argument("title")
@click.pass_context
def rename_cmd(ctx: click.Context, roadmap_id: str, title: str) -> None:
    """Rename a roadmap."""
    from knowledgeforge import log

    if not _store(ctx).rename_roadmap(roadmap_id, title):
        _fail(f"Unknown roadmap: {roadmap_id}")
    log.success(f"Renamed {roadmap_id} to {title}")


@roadmaps.command("clone")
@click.argument("roadmap_id")
@click.option("--title", default=None, help="Title of the copy")
@click.pass_context
def clone_cmd(ctx: click.Context, roadmap_id: str, title: str | None) -> None:
    """Start a fresh attempt at an existing roadmap."""
    from knowledgeforge import log

    instance = _store(ctx).clone_roadmap(roadmap_id, title)
    if instance is None:
        _fail(f"Unknown roadmap: {roadmap_id}")
    log.success(f"Cloned {roadmap_id} as {instance.id}: {instance.title}")


@roadmaps.command("delete")
@click.argument("roadmap_id")
@click.pass_context
def delete_cmd(ctx: click.Context, roadmap_id: str) -> None:
    """Delete a roadmap."""
    from knowledgeforge import log

    store = _store(ctx)
    if not store.delete_roadmap(roadmap_id):
        _fail(f"Unknown roadmap: {roadmap_id}")
    active = store.active_roadmap()
    log.success(f"Deleted {roadmap_id}")
    if active is not None:
        log.info(f"Active roadmap: {active.id}")


@roadmaps.command("use")
@click.argument("roadmap_id")
@click.pass_context
def use_cmd(ctx: click.Context, roadmap_id: str) -> None:
    """Make a roadmap the active one."""
    from knowledgeforge import log

    if not _store(ctx).set_active_roadmap(roadmap_id):
        _fail(f"Unknown roadmap: {roadmap_id}")
    log.success(f"Active roadmap: {roadmap_id}")


@roadmaps.command("append")
@click.argument("roadmap_id")
@click.argument("phases_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def append_cmd(ctx: click.Context, roadmap_id: str, phases_file: str) -> None:
    """Append phases from a JSON file to a roadmap."""
    from knowledgeforge import log

    store = _store(ctx)
    phases = _load_phases(phases_file)
    if not store.append_phases(roadmap_id, phases):
        _fail(f"Unknown roadmap: {roadmap_id}")
    log.success(f"Appended {len(phases)} phase(s) to {roadmap_id}")
