"""Shared fixtures for knowledgeforge tests.

File handling in tests:
- Use tmp_path as the project root so state files are isolated and cleaned up.
- Use knowledgeforge.io_utils read_json/write_json for state documents.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from knowledgeforge.config import Config
from knowledgeforge.roadmap.model import Phase, RoadmapInstance, build_task_states
from knowledgeforge.store import SessionCache, StateStore


def _make_phases(*task_counts: int) -> list[Phase]:
    """Phases titled P1, P2, ... with tasks t<phase>.<task>."""
    return [
        Phase(
            title=f"P{p + 1}",
            description=f"Phase {p + 1}",
            tasks=[f"t{p + 1}.{t + 1}" for t in range(count)],
        )
        for p, count in enumerate(task_counts)
    ]


def _make_instance(*task_counts: int, id: str = "rm-1", title: str = "Roadmap") -> RoadmapInstance:
    phases = _make_phases(*task_counts)
    return RoadmapInstance(id=id, title=title, roadmap=phases, tasks=build_task_states(phases))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("KNOWLEDGEFORGE_STATE_DIR", "KNOWLEDGEFORGE_PROJECT_ROOT", "KNOWLEDGEFORGE_NO_NOTIFY"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_phases():
    """Factory fixture: make_phases(2, 1) -> two phases with 2 and 1 tasks."""
    return _make_phases


@pytest.fixture
def make_instance():
    """Factory fixture that creates RoadmapInstance objects with fresh task states."""
    return _make_instance


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    """StateStore rooted at tmp_path with notifications off."""
    return StateStore(tmp_path, cache=SessionCache(), config=Config(notify=False))


@pytest.fixture
def legacy_document() -> dict:
    """A state.json written before multi-roadmap support."""
    return {
        "roadmap": [{"title": "P1", "description": "", "tasks": ["t1", "t2"]}],
        "currentPhaseIndex": 0,
        "currentTaskIndex": 1,
        "tasks": [
            {"phaseIndex": 0, "taskIndex": 0, "completed": True,
             "completedAt": "2024-03-01T10:00:00.000Z", "xp": 20},
            {"phaseIndex": 0, "taskIndex": 1, "completed": False},
        ],
        "projectInitialized": True,
        "projectPath": "/home/learner/project",
        "createdAt": "2024-02-28T09:00:00.000Z",
        "lastUpdated": "2024-03-01T10:00:00.000Z",
        "totalXp": 20,
        "unlockedBadges": [],
    }
