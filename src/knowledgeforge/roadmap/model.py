"""Roadmap, task-state and project-state data models.

A :class:`ProjectState` is stored in one of two shapes:

* **multi-roadmap**: ``roadmaps`` holds one :class:`RoadmapInstance` per
  learning path and ``active_roadmap_id`` selects the one being worked on;
* **legacy**: written before multiple roadmaps were supported, a single
  flattened roadmap lives in :attr:`ProjectState.legacy`.

Read paths never rewrite a legacy record. :func:`active_instance` and
:func:`legacy_view` expose a legacy record as a transient instance, and
:func:`to_multi_roadmap` returns the migrated copy that write paths persist.

Serialization uses the camelCase keys of ``.knowledgeforge/state.json``.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

LEGACY_ROADMAP_ID = "legacy_roadmap_0"
LEGACY_ROADMAP_TITLE = "Migrated Roadmap"


# ── timestamps ───────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Re-hydrate an ISO-8601 string (``Z`` suffix accepted) into a datetime.

    Naive values are assumed to be UTC. Raises ``ValueError`` on garbage.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def new_roadmap_id(prefix: str = "roadmap") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    return int(value)


def _object(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _badges(value: Any) -> list[str]:
    seen: list[str] = []
    for key in value or []:
        key = str(key)
        if key not in seen:
            seen.append(key)
    return seen


# ── roadmap content ──────────────────────────────────────────────────


@dataclass
class Phase:
    """One phase of a roadmap: an ordered list of task descriptions."""

    title: str
    description: str = ""
    tasks: list[str] = field(default_factory=list)
    duration: str | None = None
    # Optional generator extras (objectives, resources, ...) kept verbatim
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extras)
        data["title"] = self.title
        data["description"] = self.description
        data["tasks"] = list(self.tasks)
        if self.duration is not None:
            data["duration"] = self.duration
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Phase:
        data = _object(data, "phase")
        known = {"title", "description", "tasks", "duration"}
        duration = data.get("duration")
        return cls(
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            tasks=[str(t) for t in data.get("tasks") or []],
            duration=str(duration) if duration is not None else None,
            extras={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class TaskState:
    """Progress record for the task at (phase_index, task_index)."""

    phase_index: int
    task_index: int
    completed: bool = False
    completed_at: datetime | None = None
    feedback: str | None = None
    xp: int = 0

    @property
    def key(self) -> tuple[int, int]:
        return (self.phase_index, self.task_index)

    def mark_complete(
        self,
        feedback: str | None = None,
        xp: int = 0,
        when: datetime | None = None,
    ) -> bool:
        """Complete the task once. Returns ``False`` if it was already done."""
        if self.completed:
            return False
        self.completed = True
        self.completed_at = when or utcnow()
        self.feedback = feedback
        self.xp = max(0, xp)
        return True

    def reset(self) -> None:
        self.completed = False
        self.completed_at = None
        self.feedback = None
        self.xp = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "phaseIndex": self.phase_index,
            "taskIndex": self.task_index,
            "completed": self.completed,
            "xp": self.xp,
        }
        if self.completed_at is not None:
            data["completedAt"] = format_timestamp(self.completed_at)
        if self.feedback is not None:
            data["feedback"] = self.feedback
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskState:
        data = _object(data, "task state")
        return cls(
            phase_index=_int(data["phaseIndex"]),
            task_index=_int(data["taskIndex"]),
            completed=bool(data.get("completed", False)),
            completed_at=parse_timestamp(data.get("completedAt")),
            feedback=data.get("feedback"),
            xp=max(0, _int(data.get("xp"))),
        )


def build_task_states(roadmap: Iterable[Phase], start_phase: int = 0) -> list[TaskState]:
    """One uncompleted TaskState per task, phase indices starting at *start_phase*."""
    states: list[TaskState] = []
    for offset, phase in enumerate(roadmap):
        for task_index in range(len(phase.tasks)):
            states.append(TaskState(phase_index=start_phase + offset, task_index=task_index))
    return states


# ── roadmap instances ────────────────────────────────────────────────


@dataclass
class RoadmapInstance:
    """One stateful attempt at a roadmap."""

    id: str
    title: str = ""
    roadmap: list[Phase] = field(default_factory=list)
    current_phase_index: int = 0
    current_task_index: int = 0
    tasks: list[TaskState] = field(default_factory=list)
    total_xp: int = 0
    unlocked_badges: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def cursor(self) -> tuple[int, int]:
        return (self.current_phase_index, self.current_task_index)

    @property
    def task_count(self) -> int:
        return sum(len(p.tasks) for p in self.roadmap)

    def find_task(self, phase_index: int, task_index: int) -> TaskState | None:
        for ts in self.tasks:
            if ts.phase_index == phase_index and ts.task_index == task_index:
                return ts
        return None

    def unlock(self, badge_key: str) -> bool:
        """Add *badge_key* if new. Returns ``True`` when it was just unlocked."""
        if badge_key in self.unlocked_badges:
            return False
        self.unlocked_badges.append(badge_key)
        return True

    def touch(self, when: datetime | None = None) -> None:
        self.last_updated = when or utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "roadmap": [p.to_dict() for p in self.roadmap],
            "currentPhaseIndex": self.current_phase_index,
            "currentTaskIndex": self.current_task_index,
            "tasks": [t.to_dict() for t in self.tasks],
            "totalXp": self.total_xp,
            "unlockedBadges": list(self.unlocked_badges),
            "createdAt": format_timestamp(self.created_at),
            "lastUpdated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoadmapInstance:
        data = _object(data, "roadmap instance")
        roadmap = [Phase.from_dict(p) for p in data.get("roadmap") or []]
        raw_tasks = data.get("tasks")
        tasks = (
            [TaskState.from_dict(t) for t in raw_tasks]
            if raw_tasks is not None
            else build_task_states(roadmap)
        )
        created = parse_timestamp(data.get("createdAt")) or utcnow()
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            roadmap=roadmap,
            current_phase_index=_int(data.get("currentPhaseIndex")),
            current_task_index=_int(data.get("currentTaskIndex")),
            tasks=tasks,
            total_xp=max(0, _int(data.get("totalXp"))),
            unlocked_badges=_badges(data.get("unlockedBadges")),
            created_at=created,
            last_updated=parse_timestamp(data.get("lastUpdated")) or created,
        )


@dataclass
class LegacyRoadmap:
    """Single-roadmap fields of records written before multi-roadmap support."""

    roadmap: list[Phase] = field(default_factory=list)
    current_phase_index: int = 0
    current_task_index: int = 0
    tasks: list[TaskState] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "roadmap": [p.to_dict() for p in self.roadmap],
            "currentPhaseIndex": self.current_phase_index,
            "currentTaskIndex": self.current_task_index,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LegacyRoadmap:
        roadmap = [Phase.from_dict(p) for p in data.get("roadmap") or []]
        raw_tasks = data.get("tasks")
        return cls(
            roadmap=roadmap,
            current_phase_index=_int(data.get("currentPhaseIndex")),
            current_task_index=_int(data.get("currentTaskIndex")),
            tasks=(
                [TaskState.from_dict(t) for t in raw_tasks]
                if raw_tasks is not None
                else build_task_states(roadmap)
            ),
        )


# ── project state ────────────────────────────────────────────────────


@dataclass
class ProjectState:
    """Root aggregate persisted per project."""

    project_initialized: bool = False
    project_path: str | None = None
    roadmaps: list[RoadmapInstance] = field(default_factory=list)
    active_roadmap_id: str | None = None
    # Project-wide aggregates, kept for display; instances are authoritative
    total_xp: int = 0
    unlocked_badges: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_updated: datetime = field(default_factory=utcnow)
    legacy: LegacyRoadmap | None = None

    @property
    def is_legacy(self) -> bool:
        """``True`` for the legacy member of the legacy/multi-roadmap union."""
        return not self.roadmaps and self.legacy is not None

    def get_roadmap(self, roadmap_id: str) -> RoadmapInstance | None:
        for instance in self.roadmaps:
            if instance.id == roadmap_id:
                return instance
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "projectInitialized": self.project_initialized,
            "roadmaps": [r.to_dict() for r in self.roadmaps],
            "totalXp": self.total_xp,
            "unlockedBadges": list(self.unlocked_badges),
            "createdAt": format_timestamp(self.created_at),
            "lastUpdated": format_timestamp(self.last_updated),
        }
        if self.project_path is not None:
            data["projectPath"] = self.project_path
        if self.active_roadmap_id is not None:
            data["activeRoadmapId"] = self.active_roadmap_id
        if self.legacy is not None:
            data.update(self.legacy.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectState:
        """Parse a decoded state document. Raises on structurally bad input."""
        data = _object(data, "state document")
        legacy = LegacyRoadmap.from_dict(data) if isinstance(data.get("roadmap"), list) else None
        created = parse_timestamp(data.get("createdAt")) or utcnow()
        active = data.get("activeRoadmapId")
        project_path = data.get("projectPath")
        return cls(
            project_initialized=bool(data.get("projectInitialized", False)),
            project_path=str(project_path) if project_path is not None else None,
            roadmaps=[RoadmapInstance.from_dict(r) for r in data.get("roadmaps") or []],
            active_roadmap_id=str(active) if active else None,
            total_xp=max(0, _int(data.get("totalXp"))),
            unlocked_badges=_badges(data.get("unlockedBadges")),
            created_at=created,
            last_updated=parse_timestamp(data.get("lastUpdated")) or created,
            legacy=legacy,
        )


# ── legacy migration ─────────────────────────────────────────────────


def _instance_from_legacy(state: ProjectState) -> RoadmapInstance:
    legacy = state.legacy or LegacyRoadmap()
    return RoadmapInstance(
        id=LEGACY_ROADMAP_ID,
        title=LEGACY_ROADMAP_TITLE,
        roadmap=copy.deepcopy(legacy.roadmap),
        current_phase_index=legacy.current_phase_index,
        current_task_index=legacy.current_task_index,
        tasks=copy.deepcopy(legacy.tasks),
        total_xp=state.total_xp,
        unlocked_badges=list(state.unlocked_badges),
        created_at=state.created_at,
        last_updated=state.last_updated,
    )


def legacy_view(state: ProjectState) -> RoadmapInstance | None:
    """Transient instance over a legacy record; mutating it changes nothing stored."""
    if state.legacy is None:
        return None
    return _instance_from_legacy(state)


def to_multi_roadmap(state: ProjectState) -> ProjectState:
    """Return a multi-roadmap copy of *state*; *state* itself is not modified.

    A legacy record becomes one instance with id ``legacy_roadmap_0`` (the
    same id the transient view uses) and the legacy fields are dropped.
    Multi-roadmap states come back as a deep copy.
    """
    migrated = copy.deepcopy(state)
    if not state.is_legacy:
        return migrated
    instance = _instance_from_legacy(state)
    migrated.roadmaps = [instance]
    migrated.active_roadmap_id = instance.id
    migrated.legacy = None
    return migrated


def active_instance(state: ProjectState | None) -> RoadmapInstance | None:
    """Instance selected by ``active_roadmap_id``.

    Falls back to the first instance for a dangling pointer and to the
    transient legacy view for legacy records.
    """
    if state is None:
        return None
    if state.roadmaps:
        if state.active_roadmap_id:
            found = state.get_roadmap(state.active_roadmap_id)
            if found is not None:
                return found
        return state.roadmaps[0]
    return legacy_view(state)
