"""Tests for the task engine facade."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from taskboard.engine.engine import TaskEngine
from taskboard.engine.model import Availability, Task, TaskPriority, TaskStatus
from taskboard.errors import (
    EngineerUnavailable,
    GatewayUnavailable,
    InvalidPatch,
    InvalidTransition,
    ProjectNotFound,
)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".taskboard"
    d.mkdir()
    return d


@pytest.fixture
def engine(state_dir: Path) -> TaskEngine:
    return TaskEngine(state_dir)


@pytest.fixture
def seeded(engine: TaskEngine) -> dict[str, Any]:
    project = engine.create_project("Apollo")
    return {
        "project": project,
        "ada": engine.add_engineer("Ada", "ada@example.com", engineer_id="eng-ada"),
        "grace": engine.add_engineer("Grace", engineer_id="eng-grace"),
        "task": engine.create_task(project.id, "Build the thing", priority="high"),
        "other": engine.create_task(project.id, "Test the thing"),
    }


class TestCreate:
    def test_create_task(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        task = seeded["task"]
        assert task.status == TaskStatus.OPEN
        assert task.assignee is None
        assert task.priority == TaskPriority.HIGH
        assert engine.get_task(task.id) == task

    def test_create_task_validation(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        with pytest.raises(InvalidPatch):
            engine.create_task(seeded["project"].id, "")
        with pytest.raises(InvalidPatch):
            engine.create_task(seeded["project"].id, "x", priority="P0")

    def test_create_task_unknown_project(self, engine: TaskEngine) -> None:
        with pytest.raises(ProjectNotFound):
            engine.create_task("proj-missing", "Orphan")

    def test_add_engineer(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        ada = engine.get_engineer("eng-ada")
        assert ada.email == "ada@example.com"
        assert ada.availability == Availability.AVAILABLE
        with pytest.raises(InvalidPatch):
            engine.add_engineer(" ")


class TestUpdateTask:
    def test_assignee_on_open_task_starts_work(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        task = engine.update_task(seeded["task"].id, {"assignee": "eng-ada"})
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.assignee == "eng-ada"

    def test_clearing_assignee_reopens(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        engine.assign_task(seeded["task"].id, "eng-ada")
        task = engine.update_task(seeded["task"].id, {"assignee": None})
        assert task.status == TaskStatus.OPEN
        assert task.assignee is None
        assert engine.get_engineer("eng-ada").availability == Availability.AVAILABLE

    def test_assignee_on_busy_engineer(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        engine.assign_task(seeded["task"].id, "eng-ada")
        with pytest.raises(EngineerUnavailable):
            engine.update_task(seeded["other"].id, {"assignee": "eng-ada"})

    def test_reassign_in_progress_rejected(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        engine.assign_task(seeded["task"].id, "eng-ada")
        with pytest.raises(InvalidTransition):
            engine.update_task(seeded["task"].id, {"assignee": "eng-grace"})

    def test_detail_fields(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        task = engine.update_task(seeded["task"].id, {"title": "Renamed", "description": "More"})
        assert task.title == "Renamed"
        assert task.description == "More"
        assert task.status == TaskStatus.OPEN

    def test_unknown_field(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        with pytest.raises(InvalidPatch):
            engine.update_task(seeded["task"].id, {"created_at": "yesterday"})


class TestMoveTask:
    def test_same_column_is_noop(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        assert engine.move_task(seeded["task"].id, "open", "open") is None
        assert engine.get_recent_events()[-1]["type"] == "task.created"

    def test_move_to_done(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        engine.assign_task(seeded["task"].id, "eng-ada")
        task = engine.move_task(seeded["task"].id, "in_progress", "done")
        assert task is not None
        assert task.status == TaskStatus.DONE

    def test_move_into_in_progress_refused(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        with pytest.raises(InvalidTransition):
            engine.move_task(seeded["task"].id, "open", "in_progress")

    def test_move_with_stale_source(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        with pytest.raises(InvalidTransition, match="stale"):
            engine.move_task(seeded["task"].id, "in_progress", "done")


class TestRecommendations:
    def test_accept_recommendation(self, state_dir: Path) -> None:
        def oracle(task: Task, limit: int) -> list[dict[str, Any]]:
            return [{"user_id": "eng-grace", "score": 0.8}, {"user_id": "eng-ada", "score": 0.3}]

        engine = TaskEngine(state_dir, recommender=oracle)
        project = engine.create_project("Apollo")
        engine.add_engineer("Ada", engineer_id="eng-ada")
        engine.add_engineer("Grace", engineer_id="eng-grace")
        task = engine.create_task(project.id, "Fix login")

        recs = engine.get_recommendations(task.id, 5)
        assert [r.engineer_id for r in recs] == ["eng-grace", "eng-ada"]
        accepted = engine.accept_recommendation(task.id, recs[0].engineer_id, recs[0].score)
        assert accepted.assignee == "eng-grace"

    def test_no_recommender_configured(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        with pytest.raises(GatewayUnavailable):
            engine.get_recommendations(seeded["task"].id)


class TestBoardAndEvents:
    def test_get_board(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        engine.assign_task(seeded["other"].id, "eng-grace")
        board = engine.get_board(seeded["project"].id)
        assert [t["id"] for t in board["open"]] == [seeded["task"].id]
        assert [t["id"] for t in board["in_progress"]] == [seeded["other"].id]
        assert board["done"] == []

    def test_task_events(self, engine: TaskEngine, seeded: dict[str, Any]) -> None:
        task_id = seeded["task"].id
        engine.assign_task(task_id, "eng-ada", actor="manager")
        engine.complete_task(task_id, actor="manager")
        events = engine.get_task_events(task_id)
        assert [e["type"] for e in events] == [
            "task.created",
            "task.assigned",
            "task.transitioned",
            "task.transitioned",
        ]
        assert events[-1]["source"] == "in_progress"
        assert events[-1]["target"] == "done"

    def test_state_machine(self, engine: TaskEngine) -> None:
        assert engine.state_machine()["transitions"]["in_progress"] == ["done", "open"]


class TestConfig:
    def test_for_project_dir_reads_config(self, tmp_path: Path) -> None:
        state = tmp_path / ".taskboard"
        state.mkdir()
        (state / "config.yaml").write_text(yaml.safe_dump({
            "recommendations": {"default_limit": 2, "max_limit": 3},
            "archive": {"drain_timeout": 1.5},
            "pagination": {"max_page_size": 7},
        }))
        engine = TaskEngine.for_project_dir(tmp_path)
        assert engine.gateway.default_limit == 2
        assert engine.gateway.max_limit == 3
        assert engine.lifecycle.drain_timeout == 1.5
        assert engine.max_page_size == 7

    def test_for_project_dir_ignores_broken_config(self, tmp_path: Path) -> None:
        state = tmp_path / ".taskboard"
        state.mkdir()
        (state / "config.yaml").write_text("recommendations: [\n")
        engine = TaskEngine.for_project_dir(tmp_path)
        assert engine.gateway.default_limit == 5
