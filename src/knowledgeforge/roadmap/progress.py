"""Cursor movement, task completion and progress over roadmap instances.

Everything here is synchronous and in-memory; persistence is the caller's
job (see :class:`knowledgeforge.store.StateStore`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from knowledgeforge import log
from knowledgeforge.roadmap.model import (
    Phase,
    ProjectState,
    RoadmapInstance,
    TaskState,
    active_instance,
    utcnow,
)

ROADMAP_COMPLETE_BADGE = "roadmap_complete"


def phase_badge_key(phase_index: int) -> str:
    """Badge key for finishing the phase at zero-based *phase_index*."""
    return f"phase_{phase_index + 1}_complete"


@dataclass(frozen=True)
class CurrentTask:
    phase: Phase
    task: str
    phase_index: int
    task_index: int


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int
    percentage: int


@dataclass
class CompletionResult:
    """Outcome of :func:`complete_current_task`.

    ``unlocked_badges`` lists every key newly unlocked by the call, in unlock
    order. ``unlocked_badge`` is the single headline key: ``roadmap_complete``
    wins over a phase badge unlocked in the same call.
    """

    has_next: bool = False
    unlocked_badges: list[str] = field(default_factory=list)

    @property
    def unlocked_badge(self) -> str | None:
        if ROADMAP_COMPLETE_BADGE in self.unlocked_badges:
            return ROADMAP_COMPLETE_BADGE
        return self.unlocked_badges[-1] if self.unlocked_badges else None


# ── cursor ───────────────────────────────────────────────────────────


def get_current_task(instance: RoadmapInstance | None) -> CurrentTask | None:
    """Task under the cursor, or ``None`` once the cursor is past the end."""
    if instance is None:
        return None
    p, t = instance.current_phase_index, instance.current_task_index
    if p < 0 or p >= len(instance.roadmap):
        return None
    phase = instance.roadmap[p]
    if t < 0 or t >= len(phase.tasks):
        return None
    return CurrentTask(phase=phase, task=phase.tasks[t], phase_index=p, task_index=t)


def advance_cursor(instance: RoadmapInstance) -> bool:
    """Move the cursor to the next task in traversal order.

    Next task in the current phase, else first task of the next phase. With
    no next task the cursor is left alone and ``False`` is returned.
    """
    p, t = instance.current_phase_index, instance.current_task_index
    if p < 0 or p >= len(instance.roadmap):
        return False

    if t + 1 < len(instance.roadmap[p].tasks):
        instance.current_task_index = t + 1
        return True

    if p + 1 < len(instance.roadmap):
        instance.current_phase_index = p + 1
        instance.current_task_index = 0
        return True

    return False


def skip_current_task(instance: RoadmapInstance, when: datetime | None = None) -> bool:
    """Advance past the current task without completing it."""
    moved = advance_cursor(instance)
    if moved:
        instance.touch(when)
        log.debug(f"Roadmap {instance.id}: skipped to {instance.cursor}")
    return moved


def complete_current_task(
    instance: RoadmapInstance,
    feedback: str | None = None,
    xp: int = 0,
    project: ProjectState | None = None,
    when: datetime | None = None,
) -> CompletionResult:
    """Complete the task under the cursor, advance, and unlock badges.

    Completing an already completed task awards no XP. *project* receives the
    XP in its aggregate total when given.
    """
    when = when or utcnow()
    xp = max(0, int(xp or 0))
    old_phase = instance.current_phase_index

    task_state = instance.find_task(old_phase, instance.current_task_index)
    if task_state is not None and task_state.mark_complete(feedback, xp, when):
        instance.total_xp += xp
        if project is not None:
            project.total_xp += xp
        log.debug(f"Roadmap {instance.id}: completed task {task_state.key} (+{xp} XP)")

    has_next = advance_cursor(instance)
    result = CompletionResult(has_next=has_next)

    if instance.current_phase_index > old_phase or not has_next:
        finished_phase = old_phase if has_next else len(instance.roadmap) - 1
        if finished_phase >= 0 and instance.unlock(phase_badge_key(finished_phase)):
            result.unlocked_badges.append(phase_badge_key(finished_phase))
        if not has_next and instance.unlock(ROADMAP_COMPLETE_BADGE):
            result.unlocked_badges.append(ROADMAP_COMPLETE_BADGE)

    instance.touch(when)
    return result


# ── progress ─────────────────────────────────────────────────────────


def _task_states(target: ProjectState | RoadmapInstance | None) -> list[TaskState]:
    if target is None:
        return []
    if isinstance(target, RoadmapInstance):
        return target.tasks
    instance = active_instance(target)
    return instance.tasks if instance is not None else []


def get_progress(target: ProjectState | RoadmapInstance | None) -> Progress:
    """Completed / total task counts of the active (or given) instance."""
    tasks = _task_states(target)
    completed = sum(1 for t in tasks if t.completed)
    total = len(tasks)
    percentage = round(completed / total * 100) if total > 0 else 0
    return Progress(completed=completed, total=total, percentage=percentage)


def is_complete(target: ProjectState | RoadmapInstance | None) -> bool:
    """``True`` when every task is completed; vacuously true with no tasks."""
    return all(t.completed for t in _task_states(target))


def project_summary(state: ProjectState) -> str:
    """Short human-readable summary of where the learner stands."""
    progress = get_progress(state)
    counts = f"{progress.completed}/{progress.total} tasks"

    if is_complete(state):
        return f"Project complete! {counts}"

    current = get_current_task(active_instance(state))
    if current is None:
        return f"Progress: {counts} ({progress.percentage}%)"

    return (
        f"Phase {current.phase_index + 1}: {current.phase.title}\n"
        f"Current task: {current.task}\n"
        f"Progress: {counts} ({progress.percentage}%)"
    )
