"""StateStore: session cache + durable JSON file for one project.

Reads go to the session cache first and fall back to
``<project>/.knowledgeforge/state.json``. Writes update the cache, then the
file, then the learner statistics (cached and kept in ``stats.json``), then
notify subscribers.

Usage::

    store = StateStore(project_root)
    state = store.load()                    # ProjectState | None
    result = store.complete_current_task(feedback="done", xp=50)
    store.create_roadmap("Backend track", phases)
    unsubscribe = store.subscribe(redraw)

Mutating methods hold a per-store lock around load -> mutate -> save, so
two operations issued back to back never overwrite each other's update.
Legacy single-roadmap records are migrated by the first mutating call;
read-only calls leave them untouched.
"""

from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

from knowledgeforge import log
from knowledgeforge.config import Config
from knowledgeforge.errors import StateWriteError
from knowledgeforge.io_utils import read_json, write_json, write_text
from knowledgeforge.roadmap import instances
from knowledgeforge.roadmap.model import (
    LegacyRoadmap,
    Phase,
    ProjectState,
    RoadmapInstance,
    active_instance,
    build_task_states,
    to_multi_roadmap,
    utcnow,
)
from knowledgeforge.roadmap.progress import (
    CompletionResult,
    CurrentTask,
    Progress,
    complete_current_task,
    get_current_task,
    get_progress,
    skip_current_task,
)
from knowledgeforge.stats import UserStats, update_stats

STATE_KEY = "knowledgeforge.projectState"
STATS_KEY = "knowledgeforge.userStats"

Subscriber = Callable[[ProjectState], None]


class SessionCache:
    """Ephemeral key/value storage scoped to one editing session.

    Values are stored as JSON-compatible data so that every read hands out
    fresh objects.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def update(self, key: str, value: Any) -> None:
        """Store *value* under *key*; ``None`` removes the key."""
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = copy.deepcopy(value)


class StateStore:
    """Owns the persisted :class:`ProjectState` of one project."""

    def __init__(
        self,
        project_root: Path | str | None,
        cache: SessionCache | None = None,
        config: Config | None = None,
    ) -> None:
        self.project_root = Path(project_root) if project_root is not None else None
        self.cache = cache if cache is not None else SessionCache()
        self.config = config or Config()
        self._lock = threading.RLock()
        self._subscribers: list[Subscriber] = []

    # ── paths ────────────────────────────────────────────────────

    @property
    def state_path(self) -> Path | None:
        if self.project_root is None:
            return None
        return self.config.state_path(self.project_root)

    def is_project(self) -> bool:
        """``True`` when the project has a state file or a ROADMAP.md."""
        if self.project_root is None:
            return False
        return (
            self.config.state_path(self.project_root).is_file()
            or (self.project_root / self.config.roadmap_file).is_file()
        )

    # ── load / save ──────────────────────────────────────────────

    def load(self) -> ProjectState | None:
        """Return the current state, or ``None`` if there is none (or it is corrupt)."""
        with self._lock:
            cached = self.cache.get(STATE_KEY)
            if cached is not None:
                try:
                    return ProjectState.from_dict(cached)
                except (KeyError, TypeError, ValueError) as exc:
                    log.warn(f"Discarding unreadable cached state: {exc}")
                    self.cache.update(STATE_KEY, None)

            state = self._load_from_file()
            if state is not None:
                self.cache.update(STATE_KEY, state.to_dict())
            return state

    def _load_from_file(self) -> ProjectState | None:
        path = self.state_path
        if path is None or not path.is_file():
            return None
        try:
            state = ProjectState.from_dict(read_json(path))
        except (OSError, json.JSONDecodeError) as exc:
            log.warn(f"Could not read {path}: {exc}")
            return None
        except (KeyError, TypeError, ValueError) as exc:
            log.warn(f"Ignoring malformed state file {path}: {exc}")
            return None
        log.debug(f"Loaded state from {path}")
        return state

    def save(self, state: ProjectState) -> None:
        """Persist *state* to the cache and the state file, then notify.

        A failed file write is logged; the cache stays authoritative for the
        rest of the session.
        """
        with self._lock:
            state.last_updated = utcnow()
            payload = state.to_dict()
            self.cache.update(STATE_KEY, payload)

            if self.project_root is None:
                log.debug("No project root; state kept in session cache only")
            else:
                try:
                    self._write_state_file(self.project_root, payload)
                except OSError as exc:
                    log.error(f"Could not write state file: {exc}")

            self._refresh_stats(state)
            self._publish(state)

    def _write_state_file(self, project_root: Path, payload: dict[str, Any]) -> Path:
        path = self.config.state_path(project_root)
        write_json(path, payload)
        ignore = self.config.ignore_path(project_root)
        if not ignore.exists():
            write_text(ignore, f"{self.config.state_file}\n{self.config.stats_file}\n")
        return path

    def reset(self, delete_file: bool = False) -> None:
        """Forget the cached state; with *delete_file* also remove state.json."""
        with self._lock:
            self.cache.update(STATE_KEY, None)
            path = self.state_path
            if delete_file and path is not None and path.is_file():
                path.unlink()
                log.info(f"Removed {path}")

    # ── initialization ───────────────────────────────────────────

    @staticmethod
    def initialize_new_state(roadmap: Sequence[Phase], project_path: str | Path) -> ProjectState:
        """Fresh legacy-shaped state: cursor at (0, 0), every task pending."""
        phases = copy.deepcopy(list(roadmap))
        now = utcnow()
        return ProjectState(
            project_initialized=True,
            project_path=str(project_path),
            created_at=now,
            last_updated=now,
            legacy=LegacyRoadmap(roadmap=phases, tasks=build_task_states(phases)),
        )

    def initialize_project(self, roadmap: Sequence[Phase], project_path: str | Path) -> ProjectState:
        """Create and write the state file of a new project at *project_path*.

        Raises :class:`StateWriteError` if the file cannot be written. The
        session cache is only primed when *project_path* is this store's root.
        """
        state = self.initialize_new_state(roadmap, project_path)
        target = Path(project_path)
        with self._lock:
            try:
                path = self._write_state_file(target, state.to_dict())
            except OSError as exc:
                raise StateWriteError(f"Could not save project state to {target}: {exc}") from exc
            log.success(f"Project state saved to {path}")
            if self.project_root is not None and target.resolve() == self.project_root.resolve():
                self.cache.update(STATE_KEY, state.to_dict())
        return state

    # ── change notification ──────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call *callback* with the saved state after every save.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self, state: ProjectState) -> None:
        snapshot = copy.deepcopy(state)
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as exc:
                log.error(f"State subscriber {callback!r} failed: {exc}")

    # ── statistics ───────────────────────────────────────────────

    def stats(self) -> UserStats:
        """Learner statistics: session cache first, then ``stats.json``."""
        raw = self.cache.get(STATS_KEY)
        if raw is None and self.project_root is not None:
            raw = self._load_stats_file(self.config.stats_path(self.project_root))
            if raw is not None:
                self.cache.update(STATS_KEY, raw)
        if not raw:
            return UserStats()
        try:
            return UserStats.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            log.warn(f"Discarding unreadable statistics: {exc}")
            self.cache.update(STATS_KEY, None)
            return UserStats()

    def _load_stats_file(self, path: Path) -> dict[str, Any] | None:
        if not path.is_file():
            return None
        try:
            raw = read_json(path)
        except (OSError, json.JSONDecodeError) as exc:
            log.warn(f"Could not read {path}: {exc}")
            return None
        return raw if isinstance(raw, dict) else None

    def _refresh_stats(self, state: ProjectState) -> None:
        payload = update_stats(self.stats(), state).to_dict()
        self.cache.update(STATS_KEY, payload)
        if self.project_root is None:
            return
        try:
            write_json(self.config.stats_path(self.project_root), payload)
        except OSError as exc:
            log.error(f"Could not write statistics file: {exc}")

    def reset_stats(self) -> None:
        """Forget the statistics in the cache and in ``stats.json``."""
        with self._lock:
            self.cache.update(STATS_KEY, None)
            if self.project_root is None:
                return
            path = self.config.stats_path(self.project_root)
            if path.is_file():
                path.unlink()

    # ── read-only queries ────────────────────────────────────────

    def active_roadmap(self) -> RoadmapInstance | None:
        return active_instance(self.load())

    def list_roadmaps(self) -> list[RoadmapInstance]:
        return instances.list_roadmaps(self.load())

    def current_task(self) -> CurrentTask | None:
        return get_current_task(self.active_roadmap())

    def progress(self) -> Progress:
        return get_progress(self.load())

    # ── progress operations ──────────────────────────────────────

    def _load_for_write(self) -> ProjectState | None:
        state = self.load()
        if state is not None and state.is_legacy:
            log.debug("Migrating legacy single-roadmap state")
            state = to_multi_roadmap(state)
        return state

    def complete_current_task(self, feedback: str | None = None, xp: int = 0) -> CompletionResult:
        with self._lock:
            state = self._load_for_write()
            instance = active_instance(state)
            if state is None or instance is None:
                return CompletionResult(has_next=False)
            result = complete_current_task(instance, feedback, xp, project=state)
            self.save(state)
            return result

    def move_to_next_task(self) -> bool:
        """Skip the current task without completing it."""
        with self._lock:
            state = self._load_for_write()
            instance = active_instance(state)
            if state is None or instance is None:
                return False
            if not skip_current_task(instance):
                return False
            self.save(state)
            return True

    def award(self, xp: int = 0, badges: Iterable[str] = ()) -> list[str]:
        """Add XP and badge keys found by an external awarder.

        Both the active instance and the project aggregates are updated.
        Returns the badge keys that were new for the active instance.
        """
        with self._lock:
            state = self._load_for_write()
            instance = active_instance(state)
            if state is None or instance is None:
                return []
            xp = max(0, int(xp))
            instance.total_xp += xp
            state.total_xp += xp
            unlocked = [key for key in badges if instance.unlock(key)]
            for key in unlocked:
                if key not in state.unlocked_badges:
                    state.unlocked_badges.append(key)
            if not xp and not unlocked:
                return []
            instance.touch()
            self.save(state)
            return unlocked

    # ── roadmap CRUD ─────────────────────────────────────────────

    def create_roadmap(self, title: str, phases: Sequence[Phase]) -> RoadmapInstance | None:
        with self._lock:
            state = self._load_for_write()
            if state is None:
                return None
            instance = instances.create(state, title, phases)
            self.save(state)
            return instance

    def rename_roadmap(self, roadmap_id: str, new_title: str) -> bool:
        with self._lock:
            state = self._load_for_write()
            if state is None or not instances.rename(state, roadmap_id, new_title):
                return False
            self.save(state)
            return True

    def clone_roadmap(self, roadmap_id: str, new_title: str | None = None) -> RoadmapInstance | None:
        with self._lock:
            state = self._load_for_write()
            if state is None:
                return None
            instance = instances.clone(state, roadmap_id, new_title)
            if instance is None:
                return None
            self.save(state)
            return instance

    def delete_roadmap(self, roadmap_id: str) -> bool:
        with self._lock:
            state = self._load_for_write()
            if state is None or not instances.delete(state, roadmap_id):
                return False
            self.save(state)
            return True

    def set_active_roadmap(self, roadmap_id: str) -> bool:
        with self._lock:
            state = self._load_for_write()
            if state is None or not instances.set_active(state, roadmap_id):
                return False
            self.save(state)
            return True

    def append_phases(self, roadmap_id: str, phases: Sequence[Phase]) -> bool:
        with self._lock:
            state = self._load_for_write()
            if state is None or not instances.append_phases(state, roadmap_id, phases):
                return False
            self.save(state)
            return True
