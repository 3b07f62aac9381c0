"""Tests for knowledgeforge.store — cache/file persistence, migration, events."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from knowledgeforge.config import Config
from knowledgeforge.errors import StateWriteError
from knowledgeforge.io_utils import read_json, read_text, write_json, write_text
from knowledgeforge.roadmap.model import LEGACY_ROADMAP_ID, ProjectState
from knowledgeforge.roadmap.progress import ROADMAP_COMPLETE_BADGE
from knowledgeforge.store import STATE_KEY, SessionCache, StateStore


def _state_file(root: Path) -> Path:
    return root / ".knowledgeforge" / "state.json"


def _empty_project(store: StateStore) -> None:
    store.save(ProjectState(project_initialized=True, project_path=str(store.project_root)))


# ═══════════════════════════════════════════════════════════════════
#  Load / save
# ═══════════════════════════════════════════════════════════════════


class TestLoadSave:

    def test_nothing_stored(self, store):
        assert store.load() is None
        assert store.progress().total == 0

    def test_save_writes_file_and_ignore_marker(self, store, tmp_path, make_phases):
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        assert _state_file(tmp_path).is_file()
        assert read_text(tmp_path / ".knowledgeforge" / ".gitignore") == "state.json\nstats.json\n"

    def test_existing_ignore_marker_untouched(self, store, tmp_path, make_phases):
        write_text(tmp_path / ".knowledgeforge" / ".gitignore", "custom\n")
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        assert read_text(tmp_path / ".knowledgeforge" / ".gitignore") == "custom\n"

    def test_save_stamps_last_updated(self, store, tmp_path, make_phases):
        state = StateStore.initialize_new_state(make_phases(1), tmp_path)
        before = state.last_updated
        store.save(state)
        assert state.last_updated >= before
        assert store.load().last_updated == state.last_updated

    def test_restart_round_trip(self, store, tmp_path, make_phases):
        _empty_project(store)
        store.create_roadmap("A", make_phases(2, 1))
        store.complete_current_task(feedback="fine", xp=25)
        saved = store.load()

        restarted = StateStore(tmp_path, cache=SessionCache(), config=Config(notify=False))
        loaded = restarted.load()

        assert loaded == saved
        task = loaded.roadmaps[0].tasks[0]
        assert task.completed_at == saved.roadmaps[0].tasks[0].completed_at
        assert task.completed_at.tzinfo is not None

    def test_cache_wins_over_file(self, store, tmp_path, make_phases):
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        doc = read_json(_state_file(tmp_path))
        doc["totalXp"] = 999
        write_json(_state_file(tmp_path), doc)
        assert store.load().total_xp == 0

    def test_file_load_primes_cache(self, tmp_path, legacy_document):
        write_json(_state_file(tmp_path), legacy_document)
        cache = SessionCache()
        StateStore(tmp_path, cache=cache).load()
        assert cache.get(STATE_KEY) is not None

    def test_loaded_state_is_detached(self, store, tmp_path, make_phases):
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        store.load().total_xp = 500
        assert store.load().total_xp == 0

    def test_corrupt_file_is_absent(self, store, tmp_path):
        write_text(_state_file(tmp_path), "{ not json")
        assert store.load() is None

    @pytest.mark.parametrize(
        "document",
        [
            {"roadmaps": [{"title": "no id"}]},
            {"roadmaps": ["x"]},
            {"roadmap": [1, 2]},
            {"roadmaps": [{"id": "a", "roadmap": ["p"]}]},
            {"roadmaps": [{"id": "a", "tasks": ["t"]}]},
            {"roadmap": [], "tasks": [None]},
        ],
    )
    def test_malformed_file_is_absent(self, store, tmp_path, document):
        write_json(_state_file(tmp_path), document)
        assert store.load() is None
        assert store.progress().total == 0

    def test_non_object_file_is_absent(self, store, tmp_path):
        write_json(_state_file(tmp_path), [1, 2, 3])
        assert store.load() is None

    def test_corrupt_file_overwritten_by_next_save(self, store, tmp_path, make_phases):
        write_text(_state_file(tmp_path), "garbage")
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        assert read_json(_state_file(tmp_path))["projectInitialized"] is True

    def test_no_project_root_uses_cache_only(self, make_phases):
        store = StateStore(None)
        state = StateStore.initialize_new_state(make_phases(2), "/nowhere")
        store.save(state)
        assert store.state_path is None
        assert store.load() == state
        assert store.complete_current_task(xp=5).has_next is True
        assert store.progress().completed == 1

    def test_write_failure_keeps_cache(self, store, tmp_path, make_phases, monkeypatch):
        def _boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("knowledgeforge.store.write_json", _boom)
        received = []
        store.subscribe(received.append)

        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))

        assert not _state_file(tmp_path).exists()
        assert store.load() is not None
        assert len(received) == 1

    def test_reset_keeps_file(self, store, tmp_path, make_phases):
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        store.reset()
        assert store.cache.get(STATE_KEY) is None
        assert store.load() is not None

    def test_hard_reset_removes_file(self, store, tmp_path, make_phases):
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        store.reset(delete_file=True)
        assert not _state_file(tmp_path).exists()
        assert store.load() is None

    def test_is_project(self, store, tmp_path, make_phases):
        assert store.is_project() is False
        write_text(tmp_path / "ROADMAP.md", "# Roadmap\n")
        assert store.is_project() is True
        assert StateStore(None).is_project() is False

    def test_custom_state_dir(self, tmp_path, make_phases, monkeypatch):
        monkeypatch.setenv("KNOWLEDGEFORGE_STATE_DIR", ".kf")
        store = StateStore(tmp_path)
        store.save(StateStore.initialize_new_state(make_phases(1), tmp_path))
        assert (tmp_path / ".kf" / "state.json").is_file()


# ═══════════════════════════════════════════════════════════════════
#  Initialization
# ═══════════════════════════════════════════════════════════════════


class TestInitialization:

    def test_initialize_new_state(self, tmp_path, make_phases):
        state = StateStore.initialize_new_state(make_phases(2, 1), tmp_path)
        assert state.project_initialized is True
        assert state.project_path == str(tmp_path)
        assert state.is_legacy
        assert (state.legacy.current_phase_index, state.legacy.current_task_index) == (0, 0)
        assert [t.key for t in state.legacy.tasks] == [(0, 0), (0, 1), (1, 0)]
        assert not any(t.completed for t in state.legacy.tasks)

    def test_initialize_project_writes_and_caches(self, store, tmp_path, make_phases):
        store.initialize_project(make_phases(1), tmp_path)
        assert _state_file(tmp_path).is_file()
        assert store.cache.get(STATE_KEY) is not None

    def test_initialize_project_elsewhere(self, store, tmp_path, make_phases):
        other = tmp_path / "other"
        store.initialize_project(make_phases(1), other)
        assert _state_file(other).is_file()
        assert store.load() is None

    def test_initialize_project_failure_raises(self, store, tmp_path, make_phases):
        blocker = tmp_path / "not-a-dir"
        write_text(blocker, "x")
        with pytest.raises(StateWriteError):
            store.initialize_project(make_phases(1), blocker)


# ═══════════════════════════════════════════════════════════════════
#  Legacy records
# ═══════════════════════════════════════════════════════════════════


class TestLegacyRecords:

    @pytest.fixture
    def legacy_store(self, store, tmp_path, legacy_document) -> StateStore:
        write_json(_state_file(tmp_path), legacy_document)
        return store

    def test_reads_do_not_rewrite(self, legacy_store, tmp_path, legacy_document):
        progress = legacy_store.progress()
        assert (progress.completed, progress.total, progress.percentage) == (1, 2, 50)
        assert legacy_store.current_task().task == "t2"
        assert [r.id for r in legacy_store.list_roadmaps()] == [LEGACY_ROADMAP_ID]
        assert read_json(_state_file(tmp_path)) == legacy_document
        assert legacy_store.load().is_legacy

    def test_completion_migrates(self, legacy_store, tmp_path):
        result = legacy_store.complete_current_task(xp=10)

        assert result.has_next is False
        assert result.unlocked_badges == ["phase_1_complete", ROADMAP_COMPLETE_BADGE]
        doc = read_json(_state_file(tmp_path))
        assert "roadmap" not in doc
        assert doc["activeRoadmapId"] == LEGACY_ROADMAP_ID
        assert doc["roadmaps"][0]["totalXp"] == 30
        assert doc["totalXp"] == 30
        assert legacy_store.progress().percentage == 100

    def test_rename_legacy_id_migrates(self, legacy_store):
        assert legacy_store.rename_roadmap(LEGACY_ROADMAP_ID, "My path") is True
        state = legacy_store.load()
        assert not state.is_legacy
        assert state.roadmaps[0].title == "My path"

    def test_failed_write_op_leaves_legacy_alone(self, legacy_store, tmp_path, legacy_document):
        assert legacy_store.rename_roadmap("unknown", "x") is False
        assert read_json(_state_file(tmp_path)) == legacy_document

    def test_create_keeps_legacy_progress(self, legacy_store, make_phases):
        legacy_store.create_roadmap("Second", make_phases(1))
        state = legacy_store.load()
        assert [r.id for r in state.roadmaps][0] == LEGACY_ROADMAP_ID
        assert state.roadmaps[0].tasks[0].completed is True
        assert state.active_roadmap_id == state.roadmaps[1].id


# ═══════════════════════════════════════════════════════════════════
#  Progress and CRUD through the store
# ═══════════════════════════════════════════════════════════════════


class TestStoreOperations:

    def test_operations_without_state(self, store, make_phases):
        assert store.complete_current_task().has_next is False
        assert store.move_to_next_task() is False
        assert store.create_roadmap("x", make_phases(1)) is None
        assert store.rename_roadmap("x", "y") is False
        assert store.clone_roadmap("x") is None
        assert store.delete_roadmap("x") is False
        assert store.set_active_roadmap("x") is False
        assert store.append_phases("x", make_phases(1)) is False
        assert store.award(xp=5) == []
        assert store.current_task() is None

    def test_badges_through_store(self, store, make_phases):
        _empty_project(store)
        store.create_roadmap("two phases", make_phases(1, 1))
        first = store.complete_current_task()
        second = store.complete_current_task()
        assert (first.has_next, first.unlocked_badge) == (True, "phase_1_complete")
        assert (second.has_next, second.unlocked_badge) == (False, ROADMAP_COMPLETE_BADGE)

    def test_double_completion_awards_once(self, store, make_phases):
        _empty_project(store)
        store.create_roadmap("one task", make_phases(1))
        store.complete_current_task(xp=50)
        store.complete_current_task(xp=50)
        state = store.load()
        assert state.total_xp == 50
        assert state.roadmaps[0].total_xp == 50

    def test_skip(self, store, make_phases):
        _empty_project(store)
        store.create_roadmap("r", make_phases(2))
        assert store.move_to_next_task() is True
        assert store.current_task().task == "t1.2"
        assert store.move_to_next_task() is False
        assert store.progress().completed == 0

    def test_delete_active_of_three(self, store, make_phases):
        _empty_project(store)
        ids = [store.create_roadmap(f"r{i}", make_phases(1)).id for i in range(3)]
        active = store.load().active_roadmap_id

        assert store.delete_roadmap(active) is True
        state = store.load()
        assert state.active_roadmap_id in set(ids) - {active}
        assert len(state.roadmaps) == 2

        for instance in list(state.roadmaps):
            assert store.delete_roadmap(instance.id) is True
        state = store.load()
        assert state.roadmaps == []
        assert state.active_roadmap_id is None

    def test_crud_round(self, store, make_phases):
        _empty_project(store)
        a = store.create_roadmap("A", make_phases(2))
        b = store.clone_roadmap(a.id, "B")
        assert store.load().active_roadmap_id == b.id
        assert store.set_active_roadmap(a.id) is True
        assert store.rename_roadmap(b.id, "B2") is True
        assert store.append_phases(a.id, make_phases(1, 1)) is True
        state = store.load()
        assert state.active_roadmap_id == a.id
        assert state.get_roadmap(b.id).title == "B2"
        assert [t.phase_index for t in state.get_roadmap(a.id).tasks[-2:]] == [1, 2]

    def test_award(self, store, make_phases):
        _empty_project(store)
        store.create_roadmap("r", make_phases(1))
        assert store.award(xp=15, badges=["frontend_master"]) == ["frontend_master"]
        assert store.award(badges=["frontend_master"]) == []
        state = store.load()
        assert state.total_xp == 15
        assert state.roadmaps[0].unlocked_badges == ["frontend_master"]
        assert state.unlocked_badges == ["frontend_master"]

    def test_concurrent_creates_are_not_lost(self, store, make_phases):
        _empty_project(store)

        def _create(n: int) -> None:
            store.create_roadmap(f"r{n}", make_phases(1))

        threads = [threading.Thread(target=_create, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.load().roadmaps) == 8


# ═══════════════════════════════════════════════════════════════════
#  Change notification and statistics
# ═══════════════════════════════════════════════════════════════════


class TestSubscribers:

    def test_called_after_save(self, store, make_phases):
        received: list[ProjectState] = []
        store.subscribe(received.append)
        _empty_project(store)
        store.create_roadmap("r", make_phases(1))
        assert len(received) == 2
        assert received[-1].roadmaps[0].title == "r"

    def test_payload_is_a_snapshot(self, store, make_phases):
        store.subscribe(lambda state: setattr(state, "total_xp", 1000))
        _empty_project(store)
        assert store.load().total_xp == 0

    def test_unsubscribe(self, store):
        received = []
        unsubscribe = store.subscribe(received.append)
        unsubscribe()
        unsubscribe()
        _empty_project(store)
        assert received == []

    def test_failing_subscriber_does_not_block_others(self, store):
        def _broken(state):
            raise RuntimeError("renderer crashed")

        received = []
        store.subscribe(_broken)
        store.subscribe(received.append)
        _empty_project(store)
        assert len(received) == 1

    def test_subscriber_may_award(self, store, make_phases):
        def _awarder(state):
            if state.roadmaps and "first_save" not in state.roadmaps[0].unlocked_badges:
                store.award(badges=["first_save"])

        store.subscribe(_awarder)
        _empty_project(store)
        store.create_roadmap("r", make_phases(1))
        assert store.load().roadmaps[0].unlocked_badges == ["first_save"]


class TestStatsRefresh:

    def test_stats_follow_saves(self, store, make_phases):
        _empty_project(store)
        store.create_roadmap("r", make_phases(2, 1))
        store.complete_current_task(xp=20)
        stats = store.stats()
        assert stats.total_tasks == 3
        assert stats.completed_tasks == 1
        assert stats.total_xp == 20
        assert stats.current_streak == 1
        assert stats.phase_completion[0].completed == 1
        assert stats.phase_completion[1].total == 1

    def test_reset_stats(self, store):
        _empty_project(store)
        store.reset_stats()
        assert store.stats().total_tasks == 0
        assert store.stats().last_active_date is None

    def test_stats_survive_restart(self, store, tmp_path, make_phases):
        _empty_project(store)
        store.create_roadmap("r", make_phases(2, 1))
        store.complete_current_task(xp=20)
        assert (tmp_path / ".knowledgeforge" / "stats.json").is_file()

        restarted = StateStore(tmp_path, cache=SessionCache(), config=Config(notify=False))
        stats = restarted.stats()
        assert stats.current_streak == 1
        assert stats.last_active_date is not None
        assert stats.completed_tasks == 1
        assert stats.total_xp == 20

    def test_streak_carries_over_between_sessions(self, store, tmp_path, make_phases):
        _empty_project(store)
        doc = read_json(tmp_path / ".knowledgeforge" / "stats.json")
        doc["last_active_date"] = "2000-01-01"
        doc["current_streak"] = 4
        doc["longest_streak"] = 9
        write_json(tmp_path / ".knowledgeforge" / "stats.json", doc)

        restarted = StateStore(tmp_path, cache=SessionCache(), config=Config(notify=False))
        restarted.create_roadmap("r", make_phases(1))
        stats = restarted.stats()
        assert stats.current_streak == 1
        assert stats.longest_streak == 9

    def test_unreadable_stats_file(self, tmp_path):
        write_text(tmp_path / ".knowledgeforge" / "stats.json", "{ nope")
        assert StateStore(tmp_path).stats().total_tasks == 0
        write_json(tmp_path / ".knowledgeforge" / "stats.json", {"weekly_activity": ["x"]})
        assert StateStore(tmp_path).stats().current_streak == 0

    def test_reset_stats_removes_file(self, store, tmp_path):
        _empty_project(store)
        store.reset_stats()
        assert not (tmp_path / ".knowledgeforge" / "stats.json").exists()
