"""Create, rename, clone, delete and activate roadmap instances.

These functions mutate a multi-roadmap :class:`ProjectState` in memory.
Callers holding a legacy record migrate it with
:func:`~knowledgeforge.roadmap.model.to_multi_roadmap` first;
:class:`~knowledgeforge.store.StateStore` does that and persists the result.

After every call ``active_roadmap_id`` is either ``None`` or the id of a
member of ``roadmaps``.
"""

from __future__ import annotations

import copy
from typing import Sequence

from knowledgeforge import log
from knowledgeforge.roadmap.model import (
    Phase,
    ProjectState,
    RoadmapInstance,
    build_task_states,
    legacy_view,
    new_roadmap_id,
    utcnow,
)


def _require_multi(state: ProjectState) -> None:
    if state.is_legacy:
        raise ValueError("legacy project state must be migrated with to_multi_roadmap() first")


def list_roadmaps(state: ProjectState | None) -> list[RoadmapInstance]:
    """All instances; a legacy record yields its transient view."""
    if state is None:
        return []
    if state.roadmaps:
        return list(state.roadmaps)
    view = legacy_view(state)
    return [view] if view is not None else []


def create(state: ProjectState, title: str, phases: Sequence[Phase]) -> RoadmapInstance:
    _require_multi(state)
    roadmap = copy.deepcopy(list(phases))
    instance = RoadmapInstance(
        id=new_roadmap_id(),
        title=title,
        roadmap=roadmap,
        tasks=build_task_states(roadmap),
    )
    state.roadmaps.append(instance)
    state.active_roadmap_id = instance.id
    log.debug(f"Created roadmap {instance.id} ({len(roadmap)} phases)")
    return instance


def rename(state: ProjectState, roadmap_id: str, new_title: str) -> bool:
    _require_multi(state)
    instance = state.get_roadmap(roadmap_id)
    if instance is None:
        return False
    instance.title = new_title
    instance.touch()
    return True


def clone(state: ProjectState, roadmap_id: str, new_title: str | None = None) -> RoadmapInstance | None:
    """Copy a roadmap's curriculum into a fresh attempt.

    The clone shares no objects with the source. Its cursor, XP, badges and
    task completion start over.
    """
    _require_multi(state)
    source = state.get_roadmap(roadmap_id)
    if source is None:
        return None

    tasks = copy.deepcopy(source.tasks)
    for ts in tasks:
        ts.reset()

    now = utcnow()
    instance = RoadmapInstance(
        id=new_roadmap_id("roadmap_clone"),
        title=new_title or f"{source.title} (copy)",
        roadmap=copy.deepcopy(source.roadmap),
        tasks=tasks,
        created_at=now,
        last_updated=now,
    )
    state.roadmaps.append(instance)
    state.active_roadmap_id = instance.id
    log.debug(f"Cloned roadmap {roadmap_id} -> {instance.id}")
    return instance


def delete(state: ProjectState, roadmap_id: str) -> bool:
    _require_multi(state)
    instance = state.get_roadmap(roadmap_id)
    if instance is None:
        return False
    state.roadmaps.remove(instance)
    if state.active_roadmap_id == roadmap_id or state.get_roadmap(state.active_roadmap_id or "") is None:
        state.active_roadmap_id = state.roadmaps[0].id if state.roadmaps else None
    log.debug(f"Deleted roadmap {roadmap_id}; active is now {state.active_roadmap_id}")
    return True


def set_active(state: ProjectState, roadmap_id: str) -> bool:
    _require_multi(state)
    if state.get_roadmap(roadmap_id) is None:
        return False
    state.active_roadmap_id = roadmap_id
    return True


def append_phases(state: ProjectState, roadmap_id: str, phases: Sequence[Phase]) -> bool:
    """Append *phases* and one pending TaskState per new task.

    New phase indices continue from the instance's existing phase count.
    """
    _require_multi(state)
    instance = state.get_roadmap(roadmap_id)
    if instance is None:
        return False
    new_phases = copy.deepcopy(list(phases))
    start = len(instance.roadmap)
    instance.roadmap.extend(new_phases)
    instance.tasks.extend(build_task_states(new_phases, start_phase=start))
    instance.touch()
    return True
