"""Learner statistics derived from project state: streaks, activity, levels."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any

from knowledgeforge.roadmap.model import ProjectState, active_instance


def _empty_week() -> dict[str, int]:
    # "0" is Sunday
    return {str(day): 0 for day in range(7)}


@dataclass
class PhaseCompletion:
    total: int = 0
    completed: int = 0


@dataclass
class UserStats:
    total_tasks: int = 0
    completed_tasks: int = 0
    total_xp: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_active_date: str | None = None
    weekly_activity: dict[str, int] = field(default_factory=_empty_week)
    phase_completion: dict[int, PhaseCompletion] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase_completion"] = {str(k): v for k, v in data["phase_completion"].items()}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserStats:
        week = _empty_week()
        week.update({str(k): int(v) for k, v in (data.get("weekly_activity") or {}).items()})
        return cls(
            total_tasks=int(data.get("total_tasks", 0)),
            completed_tasks=int(data.get("completed_tasks", 0)),
            total_xp=int(data.get("total_xp", 0)),
            current_streak=int(data.get("current_streak", 0)),
            longest_streak=int(data.get("longest_streak", 0)),
            last_active_date=data.get("last_active_date"),
            weekly_activity=week,
            phase_completion={
                int(k): PhaseCompletion(**v)
                for k, v in (data.get("phase_completion") or {}).items()
            },
        )


def _sunday_based_weekday(day: date) -> str:
    return str((day.weekday() + 1) % 7)


def update_stats(stats: UserStats, state: ProjectState, today: date | None = None) -> UserStats:
    """Refresh *stats* in place from *state* and return it.

    Task counts and per-phase completion are recomputed from the active
    instance. The streak grows on consecutive active days and restarts at 1
    after a gap; weekly activity counts saves on days with completed work.
    """
    today = today or date.today()

    instance = active_instance(state)
    if instance is not None:
        tasks = instance.tasks
        phases = instance.roadmap
        stats.total_xp = instance.total_xp if state.roadmaps else state.total_xp
    else:
        tasks, phases = [], []
        stats.total_xp = state.total_xp

    stats.total_tasks = len(tasks)
    stats.completed_tasks = sum(1 for t in tasks if t.completed)

    today_iso = today.isoformat()
    if stats.last_active_date != today_iso:
        if stats.last_active_date:
            gap = (today - date.fromisoformat(stats.last_active_date)).days
            if gap == 1:
                stats.current_streak += 1
            elif gap > 1:
                stats.current_streak = 1
        else:
            stats.current_streak = 1
        stats.longest_streak = max(stats.longest_streak, stats.current_streak)
        stats.last_active_date = today_iso

    if stats.completed_tasks > 0:
        weekday = _sunday_based_weekday(today)
        stats.weekly_activity[weekday] = stats.weekly_activity.get(weekday, 0) + 1

    stats.phase_completion = {}
    for index in range(len(phases)):
        phase_tasks = [t for t in tasks if t.phase_index == index]
        stats.phase_completion[index] = PhaseCompletion(
            total=len(phase_tasks),
            completed=sum(1 for t in phase_tasks if t.completed),
        )
    return stats


# ── levels ───────────────────────────────────────────────────────────


def level_for_xp(xp: int) -> int:
    return math.floor(math.sqrt(max(0, xp) / 100)) + 1


def xp_to_next_level(xp: int) -> int:
    return level_for_xp(xp) ** 2 * 100 - xp


def level_progress(xp: int) -> float:
    """Percentage (0-100) of the way through the current level."""
    level = level_for_xp(xp)
    floor_xp = (level - 1) ** 2 * 100
    ceil_xp = level**2 * 100
    progress = (xp - floor_xp) / (ceil_xp - floor_xp) * 100
    return min(100.0, max(0.0, progress))
