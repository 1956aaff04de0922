"""Tests for project creation, edits and archival."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from taskboard.engine.engine import TaskEngine
from taskboard.engine.model import TaskStatus
from taskboard.errors import (
    AlreadyArchived,
    EngineerUnavailable,
    InvalidPatch,
    MutationInProgress,
    ProjectArchived,
    ProjectNotFound,
)


@pytest.fixture
def engine(tmp_path: Path) -> TaskEngine:
    return TaskEngine(tmp_path / ".taskboard", config={"archive": {"drain_timeout": 0.1}})


class TestProjects:
    def test_create_requires_name(self, engine: TaskEngine) -> None:
        with pytest.raises(InvalidPatch):
            engine.create_project("   ")

    def test_update(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo", "Moon")
        updated = engine.update_project(project.id, name="Artemis")
        assert updated.name == "Artemis"
        assert updated.description == "Moon"
        assert engine.get_project(project.id).name == "Artemis"

    def test_update_needs_a_field(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo")
        with pytest.raises(InvalidPatch):
            engine.update_project(project.id)


class TestArchive:
    def test_archive_freezes_project(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo")
        ada = engine.add_engineer("Ada")
        t1 = engine.create_task(project.id, "One")
        engine.create_task(project.id, "Two")
        engine.create_task(project.id, "Three")
        engine.assign_task(t1.id, ada.id)

        result = engine.archive_project(project.id)
        assert result.to_dict() == {"project_id": project.id, "archived_task_count": 3}
        assert engine.get_project(project.id).archived
        assert engine.get_project(project.id).archived_at is not None
        assert all(t.archived for t in engine.list_tasks(project.id))

        with pytest.raises(AlreadyArchived):
            engine.archive_project(project.id)

    def test_archived_project_refuses_mutations(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo")
        ada = engine.add_engineer("Ada")
        task = engine.create_task(project.id, "One")
        engine.archive_project(project.id)

        with pytest.raises(ProjectArchived):
            engine.assign_task(task.id, ada.id)
        with pytest.raises(ProjectArchived):
            engine.update_task(task.id, {"title": "Renamed"})
        with pytest.raises(ProjectArchived):
            engine.create_task(project.id, "Late")
        with pytest.raises(ProjectArchived):
            engine.update_project(project.id, name="Renamed")
        assert engine.get_task(task.id).status == TaskStatus.OPEN

    def test_archived_in_progress_task_keeps_engineer_busy(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo")
        other = engine.create_project("Gemini")
        ada = engine.add_engineer("Ada")
        task = engine.create_task(project.id, "One")
        engine.assign_task(task.id, ada.id)
        engine.archive_project(project.id)

        assert engine.current_task(ada.id).id == task.id
        later = engine.create_task(other.id, "Two")
        with pytest.raises(EngineerUnavailable):
            engine.assign_task(later.id, ada.id)

    def test_archive_unknown_project(self, engine: TaskEngine) -> None:
        with pytest.raises(ProjectNotFound):
            engine.archive_project("proj-missing")

    def test_archive_empty_project(self, engine: TaskEngine) -> None:
        project = engine.create_project("Empty")
        assert engine.archive_project(project.id).archived_task_count == 0

    def test_archive_times_out_on_inflight_mutation(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo")
        task = engine.create_task(project.id, "One")
        with engine.store.inflight.claim(task.id, project.id):
            with pytest.raises(MutationInProgress):
                engine.archive_project(project.id)
        assert not engine.get_project(project.id).archived
        assert engine.archive_project(project.id).archived_task_count == 1

    def test_archive_waits_for_inflight_mutation(self, engine: TaskEngine) -> None:
        engine.lifecycle.drain_timeout = 5
        project = engine.create_project("Apollo")
        task = engine.create_task(project.id, "One")
        claimed = threading.Event()

        def slow_mutation() -> None:
            with engine.store.inflight.claim(task.id, project.id):
                claimed.set()
                threading.Event().wait(0.1)

        worker = threading.Thread(target=slow_mutation)
        worker.start()
        claimed.wait(timeout=5)
        assert engine.archive_project(project.id).archived_task_count == 1
        worker.join(timeout=5)

    def test_archive_emits_event(self, engine: TaskEngine) -> None:
        project = engine.create_project("Apollo")
        engine.create_task(project.id, "One")
        engine.archive_project(project.id)
        last = engine.get_recent_events()[-1]
        assert last["type"] == "project.archived"
        assert last["archived_task_count"] == 1
