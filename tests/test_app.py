"""Tests for the HTTP surface."""

import json

import pytest
from fastapi.testclient import TestClient

from coc_keeper.app import create_app
from coc_keeper.config import KeeperConfig, RetrySettings


@pytest.fixture
def app_config(tmp_path) -> KeeperConfig:
    return KeeperConfig(
        data_dir=tmp_path,
        retry=RetrySettings(max_attempts=1, initial_delay=0.0, jitter=False),
    )


@pytest.fixture
def make_client(app_config, catalog, llm_sequence):
    def _make(responses=()):
        llm = llm_sequence(responses)
        return TestClient(create_app(app_config, llm=llm, catalog=catalog)), llm
    return _make


class TestSessions:
    def test_create_with_scene(self, make_client) -> None:
        client, _ = make_client()
        resp = client.post("/api/sessions", json={"session_id": "s1", "scenario_id": "study"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["session_id"] == "s1"
        assert data["current_scenario"]["name"] == "The Study"
        assert data["time_of_day"] == "21:00"

    def test_create_with_characters(self, make_client) -> None:
        client, _ = make_client()
        resp = client.post("/api/sessions", json={
            "session_id": "s2",
            "player": {"id": "pc-1", "name": "Harvey Walters"},
            "npcs": [{"id": "npc-1", "name": "Rita Young"}],
        })
        data = resp.json()
        assert data["player_character"]["name"] == "Harvey Walters"
        assert data["npc_characters"][0]["is_npc"] is True
        assert data["current_scenario"] is None

    def test_generated_id(self, make_client) -> None:
        client, _ = make_client()
        assert client.post("/api/sessions", json={}).json()["session_id"]

    def test_unknown_scenario(self, make_client) -> None:
        client, _ = make_client()
        resp = client.post("/api/sessions", json={"scenario_id": "attic"})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Scenario not found"

    def test_bad_session_id(self, make_client) -> None:
        client, _ = make_client()
        assert client.post("/api/sessions", json={"session_id": "../x"}).status_code == 422

    def test_get_session(self, make_client) -> None:
        client, _ = make_client()
        client.post("/api/sessions", json={"session_id": "s1"})
        assert client.get("/api/sessions/s1").json()["session_id"] == "s1"
        assert client.get("/api/sessions/nope").status_code == 404

    def test_session_survives_restart(self, app_config, catalog, llm_sequence) -> None:
        first = TestClient(create_app(app_config, llm=llm_sequence([]), catalog=catalog))
        first.post("/api/sessions", json={"session_id": "s1", "scenario_id": "cellar"})
        second = TestClient(create_app(app_config, llm=llm_sequence([]), catalog=catalog))
        assert second.get("/api/sessions/s1").json()["current_scenario"]["id"] == "cellar"

    def test_delete_session(self, make_client) -> None:
        client, _ = make_client()
        client.post("/api/sessions", json={"session_id": "s1"})
        assert client.delete("/api/sessions/s1").json() == {"ok": True}
        assert client.get("/api/sessions/s1").status_code == 404
        assert client.delete("/api/sessions/s1").status_code == 404


class TestTurns:
    def test_run_turn_and_log(self, make_client) -> None:
        client, llm = make_client([
            json.dumps({"agents": ["action"]}),
            json.dumps({"result": "The drawer slides open.", "time_consumption": "short"}),
            "Inside lies a brass key.",
        ])
        client.post("/api/sessions", json={"session_id": "s1", "scenario_id": "study"})

        resp = client.post("/api/sessions/s1/turns", json={"text": "I open the drawer"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["turn_id"] == 1
        assert data["narrative"] == "Inside lies a brass key."
        assert [r["agent_id"] for r in data["agent_results"]] == ["action"]
        assert data["game_state"]["time_of_day"] == "21:10"
        assert llm.stages == ["classifier", "resolver", "synthesizer"]

        turns = client.get("/api/sessions/s1/turns").json()
        assert [t["utterance"] for t in turns] == ["I open the drawer"]
        assert client.get("/api/sessions/s1").json()["time_of_day"] == "21:10"

    def test_turn_ids_increase(self, make_client) -> None:
        client, _ = make_client()
        client.post("/api/sessions", json={"session_id": "s1"})
        ids = [client.post("/api/sessions/s1/turns", json={"text": "wait"}).json()["turn_id"] for _ in range(2)]
        assert ids == [1, 2]

    def test_empty_text_rejected(self, make_client) -> None:
        client, _ = make_client()
        client.post("/api/sessions", json={"session_id": "s1"})
        assert client.post("/api/sessions/s1/turns", json={"text": ""}).status_code == 422

    def test_unknown_session(self, make_client) -> None:
        client, _ = make_client()
        assert client.post("/api/sessions/nope/turns", json={"text": "hi"}).status_code == 404
        assert client.get("/api/sessions/nope/turns").status_code == 404
