"""Integration tests for the HTTP and WebSocket host layer."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from api.websockets.connection_manager import ConnectionManager
from app.config import Settings, get_settings
from app.main import create_app
from workflow.events import RUN_END

API = "/api/v1"
AUTH = {"Authorization": "Bearer test-hook-token"}


async def save(client, **workflow):
    response = await client.put(f"{API}/workflows/", json=workflow)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.integration
class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/health/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Request-ID" in response.headers

    @pytest.mark.asyncio
    async def test_status_reports_engine(self, client):
        response = await client.get(f"{API}/health/status")

        data = response.json()
        assert response.status_code == 200
        assert data["engine"]["running"] is True
        assert data["engine"]["active_runs"] == 0
        assert data["websocket_clients"] == 0

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client):
        response = await client.get("/api/health/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.integration
class TestWorkflowEndpoints:

    @pytest.mark.asyncio
    async def test_save_list_get_delete(self, client):
        saved = await save(client, name="Build", dependsOn=[{"workflow": "lint", "maxAge": "5m"}])

        assert saved["id"].startswith("wf_")
        assert saved["dependsOn"] == [{"workflow": "lint", "max_age": "5m"}]

        listed = (await client.get(f"{API}/workflows/")).json()
        assert listed["total"] == 1

        fetched = await client.get(f"{API}/workflows/{saved['id']}")
        assert fetched.json()["name"] == "Build"

        assert (await client.delete(f"{API}/workflows/{saved['id']}")).status_code == 200
        missing = await client.get(f"{API}/workflows/{saved['id']}")
        assert missing.status_code == 404
        assert missing.json()["error"] == f"Workflow not found: {saved['id']}"

    @pytest.mark.asyncio
    async def test_invalid_definition(self, client):
        response = await client.put(f"{API}/workflows/", json={"id": "bad", "steps": "nope"})

        assert response.status_code == 422
        assert response.json()["error"].startswith("Invalid workflow")

    @pytest.mark.asyncio
    async def test_cycle_rejected(self, client):
        await save(client, id="a", dependsOn=["b"])
        await save(client, id="b")

        response = await client.put(f"{API}/workflows/", json={"id": "b", "dependsOn": ["a"]})

        assert response.status_code == 422
        assert response.json()["error"] == "Circular dependency: b -> a -> b"

    @pytest.mark.asyncio
    async def test_enable_and_migrate(self, client):
        await save(client, id="wf", steps=[{"id": "a", "type": "scripted"}])

        disabled = await client.post(f"{API}/workflows/wf/enable", json={"enabled": False})
        migrated = await client.post(f"{API}/workflows/wf/migrate")

        assert disabled.json()["enabled"] is False
        assert migrated.json()["graph"]["links"] == [[1, 1, 0, 2, 0, -1]]

    @pytest.mark.asyncio
    async def test_dependency_graph(self, client):
        await save(client, id="a", dependsOn=["b"])
        await save(client, id="b")

        graph = (await client.get(f"{API}/workflows/dependency-graph")).json()

        assert {n["id"] for n in graph["nodes"]} == {"a", "b"}
        assert graph["edges"] == [{"from": "a", "to": "b", "maxAge": None}]

    @pytest.mark.asyncio
    async def test_step_types(self, client):
        response = await client.get(f"{API}/workflows/step-types")

        data = response.json()
        types = {entry["step_type"]: entry for entry in data["types"]}
        assert response.status_code == 200
        assert data["total"] == len(data["types"])
        assert {"switch", "subworkflow", "variable", "get_variable", "transform", "log"} <= set(types)
        assert "cases" in types["switch"]["config_schema"]["properties"]

    @pytest.mark.asyncio
    async def test_test_node(self, client):
        response = await client.post(
            f"{API}/workflows/test-node",
            json={"step": {"type": "workflow/condition", "properties": {"expression": "1 < 2"}}},
        )

        data = response.json()
        assert response.status_code == 200
        assert data["success"] is True
        assert data["output"] == {"result": True, "value": "1 < 2"}


@pytest.mark.integration
class TestRunEndpoints:

    @pytest.mark.asyncio
    async def test_trigger_and_fetch_run(self, client, orchestrator):
        await save(client, id="wf", steps=[{"id": "a", "type": "scripted", "output": {"n": "$trigger.n"}}])

        response = await client.post(f"{API}/workflows/wf/trigger", json={"triggerData": {"n": 7}})
        assert response.status_code == 202
        run_id = response.json()["run_id"]
        await orchestrator.wait_for_run(run_id)

        run = (await client.get(f"{API}/runs/{run_id}")).json()
        assert run["status"] == "success"
        assert run["trigger"] == "manual"
        assert run["result"] == {"outputs": {"a": {"n": "7"}}}

        history = (await client.get(f"{API}/runs/", params={"workflowId": "wf"})).json()
        assert history["total"] == 1
        per_workflow = (await client.get(f"{API}/workflows/wf/runs")).json()
        assert per_workflow["runs"][0]["id"] == run_id

    @pytest.mark.asyncio
    async def test_trigger_without_body(self, client, orchestrator):
        await save(client, id="wf", steps=[{"id": "a", "type": "scripted"}])

        response = await client.post(f"{API}/workflows/wf/trigger")

        assert response.status_code == 202
        await orchestrator.wait_for_run(response.json()["run_id"])

    @pytest.mark.asyncio
    async def test_trigger_errors(self, client):
        await save(client, id="off", enabled=False)

        assert (await client.post(f"{API}/workflows/missing/trigger")).status_code == 404
        assert (await client.post(f"{API}/workflows/off/trigger")).status_code == 409

    @pytest.mark.asyncio
    async def test_skipped_trigger(self, client, orchestrator):
        await save(client, id="wf", steps=[{"id": "a", "type": "scripted", "sleep": 0.2}])

        first = (await client.post(f"{API}/workflows/wf/trigger")).json()
        second = (await client.post(f"{API}/workflows/wf/trigger")).json()

        assert second == {"success": False, "run_id": None, "skipped": True, "queued": False,
                          "error": "Workflow already running (concurrency: skip)"}
        await orchestrator.wait_for_run(first["run_id"])

    @pytest.mark.asyncio
    async def test_cancel_active_run(self, client, orchestrator, recorder):
        await save(client, id="wf", steps=[{"id": "a", "type": "scripted", "sleep": 5}])
        run_id = (await client.post(f"{API}/workflows/wf/trigger")).json()["run_id"]

        active = (await client.get(f"{API}/runs/active")).json()
        assert [r["id"] for r in active["runs"]] == [run_id]

        response = await client.post(f"{API}/runs/{run_id}/cancel")
        run = await orchestrator.wait_for_run(run_id)

        assert response.status_code == 200
        assert run.status.value == "cancelled"
        assert recorder.of(RUN_END)[0]["status"] == "cancelled"
        assert (await client.post(f"{API}/runs/{run_id}/cancel")).status_code == 404

    @pytest.mark.asyncio
    async def test_approve_wait_step(self, client, orchestrator):
        await save(client, id="wf", steps=[{"id": "gate", "type": "wait"}])
        run_id = (await client.post(f"{API}/workflows/wf/trigger")).json()["run_id"]
        for _ in range(100):
            if orchestrator.waits.pending():
                break
            await asyncio.sleep(0.01)

        response = await client.post(f"{API}/runs/{run_id}/steps/gate/approve", json={"data": {"ok": True}})
        run = await orchestrator.wait_for_run(run_id)

        assert response.status_code == 200
        assert run.status.value == "success"
        assert (await client.post(f"{API}/runs/{run_id}/steps/gate/approve")).status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_run(self, client):
        assert (await client.get(f"{API}/runs/run_missing")).status_code == 404


@pytest.mark.integration
class TestHookEndpoint:

    @pytest.mark.asyncio
    async def test_matching_hook_workflow_fires(self, client, orchestrator):
        await save(client, id="on_stop", trigger={"type": "hook", "hookType": "Stop"}, steps=[{"id": "a", "type": "scripted"}])

        response = await client.post(f"{API}/hooks/", json={"type": "Stop", "session": "abc"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"received": True, "fired": ["on_stop"]}
        for _ in range(100):
            runs = await orchestrator.get_runs("on_stop")
            if runs:
                break
            await asyncio.sleep(0.01)
        run = await orchestrator.wait_for_run(runs[0].id)
        assert run.trigger == "hook"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer wrong"}, {"Authorization": "test-hook-token"}])
    async def test_rejects_bad_token(self, client, headers):
        response = await client.post(f"{API}/hooks/", json={"type": "Stop"}, headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_bad_bodies(self, client):
        not_json = await client.post(f"{API}/hooks/", content=b"type=Stop", headers=AUTH)
        not_object = await client.post(f"{API}/hooks/", json=["Stop"], headers=AUTH)
        too_large = await client.post(f"{API}/hooks/", json={"type": "Stop", "pad": "x" * 20000}, headers=AUTH)

        assert not_json.status_code == 400
        assert not_object.status_code == 400
        assert too_large.status_code == 413

    @pytest.mark.asyncio
    async def test_disabled_without_token(self, app, client):
        app.dependency_overrides[get_settings] = lambda: Settings(HOOK_TOKEN="")

        response = await client.post(f"{API}/hooks/", json={"type": "Stop"}, headers=AUTH)

        assert response.status_code == 404


class FakeSocket:
    def __init__(self, broken: bool = False):
        self.broken = broken
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


@pytest.mark.unit
class TestConnectionManager:

    @pytest.mark.asyncio
    async def test_engine_events_are_broadcast(self):
        manager = ConnectionManager()
        healthy, broken = FakeSocket(), FakeSocket(broken=True)
        await manager.connect(healthy)
        await manager.connect(broken)

        await manager.on_engine_event("run-end", {"runId": "run_1", "status": "success"})

        assert healthy.accepted
        assert healthy.sent == [{"event": "run-end", "data": {"runId": "run_1", "status": "success"}}]
        assert manager.get_connection_count() == 1


@pytest.mark.integration
class TestWebSocket:

    def test_ping_pong(self):
        app = create_app()
        app.state.connections = ConnectionManager()
        client = TestClient(app)

        with client.websocket_connect("/ws/events") as websocket:
            websocket.send_text(json.dumps({"type": "ping"}))
            assert websocket.receive_json() == {"type": "pong"}
            assert app.state.connections.get_connection_count() == 1
