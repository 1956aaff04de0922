"""Tests for the task board API endpoints."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

import anyio
import pytest
from httpx import ASGITransport, AsyncClient

from taskboard.engine.model import Task
from taskboard.server.api import create_app


def _oracle(task: Task, limit: int) -> list[dict[str, Any]]:
    return [
        {"user_id": "eng-b", "name": "Grace", "score": 0.5},
        {"user_id": "eng-a", "name": "Ada", "score": 0.5},
        {"user_id": "eng-c", "name": "Linus", "score": 1.7},
    ]


@pytest.fixture
def app(tmp_path: Path):
    """Create a test app with a temp project directory."""
    project_dir = tmp_path / "test_project"
    project_dir.mkdir()
    return create_app(project_dir=project_dir, enable_cors=False, recommender=_oracle)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _seed(client: AsyncClient) -> dict[str, str]:
    resp = await client.post("/api/v1/projects", json={"name": "Apollo"})
    project_id = resp.json()["project"]["id"]
    for eid, name in (("eng-a", "Ada"), ("eng-b", "Grace")):
        await client.post("/api/v1/engineers", json={"id": eid, "name": name})
    resp = await client.post("/api/v1/tasks", json={"project_id": project_id, "title": "Land", "priority": "high"})
    t1 = resp.json()["task"]["id"]
    resp = await client.post("/api/v1/tasks", json={"project_id": project_id, "title": "Return"})
    t2 = resp.json()["task"]["id"]
    return {"project": project_id, "t1": t1, "t2": t2}


@pytest.mark.anyio
class TestProjectsAPI:
    async def test_root(self, client: AsyncClient) -> None:
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"

    async def test_create_list_update(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/projects", json={"name": "Apollo", "description": "Moon"})
        assert resp.status_code == 201
        project_id = resp.json()["project"]["id"]

        resp = await client.get("/api/v1/projects")
        assert resp.status_code == 200
        assert resp.json()["total_count"] == 1

        resp = await client.put(f"/api/v1/projects/{project_id}", json={"name": "Artemis"})
        assert resp.status_code == 200
        assert resp.json()["project"]["name"] == "Artemis"

    async def test_create_invalid(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/projects", json={"name": " "})
        assert resp.status_code == 422
        assert resp.json()["error"] == "invalid_patch"

    async def test_get_missing(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/projects/proj-nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "project_not_found"

    async def test_archive_twice(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.post(f"/api/v1/projects/{ids['project']}/archive")
        assert resp.status_code == 200
        assert resp.json() == {"project_id": ids["project"], "archived_task_count": 2}

        resp = await client.post(f"/api/v1/projects/{ids['project']}/archive")
        assert resp.status_code == 409
        assert resp.json()["error"] == "already_archived"

        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "project_archived"

    async def test_project_tasks_and_board(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        await client.post(f"/api/v1/tasks/{ids['t2']}/assign", json={"engineer_id": "eng-b"})

        resp = await client.get(f"/api/v1/projects/{ids['project']}/tasks")
        assert resp.status_code == 200
        rows = {r["id"]: r for r in resp.json()["data"]}
        assert rows[ids["t2"]]["assignee_name"] == "Grace"

        resp = await client.get(f"/api/v1/projects/{ids['project']}/board")
        columns = resp.json()["columns"]
        assert [t["id"] for t in columns["open"]] == [ids["t1"]]
        assert [t["id"] for t in columns["in_progress"]] == [ids["t2"]]


@pytest.mark.anyio
class TestAssignmentAPI:
    async def test_assign_and_busy_engineer(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["status"] == "in_progress"
        assert task["assignee"] == "eng-a"

        resp = await client.post(f"/api/v1/tasks/{ids['t2']}/assign", json={"engineer_id": "eng-a"})
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "engineer_unavailable"
        assert body["retryable"] is False

        resp = await client.get(f"/api/v1/tasks/{ids['t2']}")
        assert resp.json()["task"]["status"] == "open"

    async def test_complete_and_unassign(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/unassign")
        assert resp.json()["task"]["status"] == "open"

        await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/complete", params={"actor": "boss"})
        assert resp.json()["task"]["status"] == "done"
        assert resp.json()["task"]["assignee"] == "eng-a"

        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/complete")
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_transition"

    async def test_patch(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.patch(f"/api/v1/tasks/{ids['t1']}", json={"assignee": "eng-b", "priority": "low"})
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "in_progress"
        assert resp.json()["task"]["priority"] == "low"

        resp = await client.patch(f"/api/v1/tasks/{ids['t1']}", json={"assignee": None})
        assert resp.json()["task"]["status"] == "open"

        resp = await client.patch(f"/api/v1/tasks/{ids['t1']}", json={"project_id": "x"})
        assert resp.status_code == 422

    async def test_move(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/move", json={"source": "open", "destination": "open"})
        assert resp.json() == {"status": "noop", "task": None}

        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/move", json={"source": "open", "destination": "in_progress"})
        assert resp.status_code == 400

        await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/move", json={"source": "in_progress", "destination": "done"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "moved"
        assert resp.json()["task"]["status"] == "done"

        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/move", json={"source": "done", "destination": "open"})
        assert resp.status_code == 400

    async def test_events(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        resp = await client.get(f"/api/v1/tasks/{ids['t1']}/events")
        assert [e["type"] for e in resp.json()["events"]] == ["task.created", "task.assigned", "task.transitioned"]

        resp = await client.get("/api/v1/tasks/task-nope/events")
        assert resp.status_code == 404

    async def test_state_machine(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/meta/state-machine")
        assert resp.status_code == 200
        assert resp.json()["drag_transitions"]["open"] == []


@pytest.mark.anyio
class TestRecommendationsAPI:
    async def test_ranked_and_capped(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.post(f"/api/v1/tasks/{ids['t1']}/recommendations", json={"limit": 2})
        assert resp.status_code == 200
        recs = resp.json()["recommendations"]
        assert [(r["engineer_id"], r["score"]) for r in recs] == [("eng-c", 1.0), ("eng-a", 0.5)]

    async def test_accept(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.post(
            f"/api/v1/tasks/{ids['t1']}/recommendations/accept",
            json={"engineer_id": "eng-b", "score": 0.5},
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["assignee"] == "eng-b"

    async def test_gateway_down(self, tmp_path: Path) -> None:
        def down(task: Task, limit: int) -> list[dict[str, Any]]:
            raise ConnectionError("scorer offline")

        app = create_app(project_dir=tmp_path, enable_cors=False, recommender=down)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            ids = await _seed(c)
            resp = await c.post(f"/api/v1/tasks/{ids['t1']}/recommendations", json={})
        assert resp.status_code == 503
        assert resp.json()["retryable"] is True

    async def test_slow_oracle_does_not_block_other_requests(self, tmp_path: Path) -> None:
        def slow(task: Task, limit: int) -> list[dict[str, Any]]:
            time.sleep(1.0)
            return _oracle(task, limit)

        app = create_app(project_dir=tmp_path, enable_cors=False, recommender=slow)
        results: dict[str, Any] = {}
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            ids = await _seed(c)

            async def recommend() -> None:
                results["recs"] = await c.post(f"/api/v1/tasks/{ids['t1']}/recommendations", json={})

            async with anyio.create_task_group() as tg:
                tg.start_soon(recommend)
                await anyio.sleep(0.1)
                started = time.perf_counter()
                resp = await c.get("/")
                results["latency"] = time.perf_counter() - started

        assert resp.status_code == 200
        assert results["latency"] < 0.5
        assert results["recs"].status_code == 200


@pytest.mark.anyio
class TestWorkspaceAPI:
    async def test_current_task_and_complete_own(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        resp = await client.get("/api/v1/engineers/eng-a/current-task")
        assert resp.json() == {"task": None}

        await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})
        resp = await client.get("/api/v1/engineers/eng-a/current-task")
        assert resp.json()["task"]["id"] == ids["t1"]

        resp = await client.post(f"/api/v1/engineers/eng-b/tasks/{ids['t1']}/complete")
        assert resp.status_code == 400

        resp = await client.post(f"/api/v1/engineers/eng-a/tasks/{ids['t1']}/complete")
        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "done"

        resp = await client.get("/api/v1/engineers/eng-a/history", params={"search": "land"})
        assert resp.json()["total_count"] == 1
        assert resp.json()["data"][0]["project_name"] == "Apollo"

    async def test_team_and_stats(self, client: AsyncClient) -> None:
        ids = await _seed(client)
        await client.post(f"/api/v1/tasks/{ids['t1']}/assign", json={"engineer_id": "eng-a"})

        resp = await client.get("/api/v1/engineers")
        availability = {e["id"]: e["availability"] for e in resp.json()["engineers"]}
        assert availability == {"eng-a": "busy", "eng-b": "available"}

        resp = await client.get("/api/v1/dashboard/stats")
        assert resp.json() == {
            "active_projects": 1,
            "open_tasks": 1,
            "available_engineers": 1,
            "total_engineers": 2,
        }

    async def test_duplicate_engineer_id_conflicts(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/engineers", json={"id": "eng-a", "name": "Ada"})
        assert resp.status_code == 201
        resp = await client.post("/api/v1/engineers", json={"id": "eng-a", "name": "Ada Again"})
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "already_exists"
        assert body["retryable"] is False

        resp = await client.get("/api/v1/engineers")
        assert [e["name"] for e in resp.json()["engineers"]] == ["Ada"]
