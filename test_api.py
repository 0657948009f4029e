"""
API tests using FastAPI's TestClient.

Tests:
- Query routes (health, battle, leaderboard, prices)
- Admin commands (start, abort, retry-report)
- Error mapping (404 / 409 / 502)
- Live leaderboard updates over the WebSocket
"""

import time

import pytest
from fastapi.testclient import TestClient

from battle_arena.api import ConnectionManager, ThreadSafeWebSocketBroadcaster, create_app
from battle_arena.battle.battle_registry import BattleRegistry
from battle_arena.battle.broadcast import FanoutBroadcaster
from battle_arena.ledger.in_memory_ledger import InMemoryLedger
from conftest import RecordingBroadcaster, SequenceRandom, StaticPriceSource


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def websocket_broadcaster():
    return ThreadSafeWebSocketBroadcaster(ConnectionManager())


@pytest.fixture
def registry(ledger, battle_settings, clock, websocket_broadcaster):
    return BattleRegistry(
        price_source=StaticPriceSource(clock),
        ledger=ledger,
        broadcaster=FanoutBroadcaster(RecordingBroadcaster(), websocket_broadcaster),
        settings=battle_settings,
        clock=clock,
        rng_factory=lambda battle_id: SequenceRandom()
    )


@pytest.fixture
def app(registry, ledger, websocket_broadcaster):
    return create_app(
        registry,
        ledger,
        websocket_broadcaster=websocket_broadcaster,
        consume_ledger_events=False
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def battle_id(ledger, passive_config):
    battle_id = ledger.open_battle()
    ledger.register_participant(battle_id, "0xA", passive_config)
    ledger.register_participant(battle_id, "0xB", passive_config)
    return battle_id


class TestQueries:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["active_battles"] == []
        assert body["price_cache"]["cached"] is False

    def test_current_battle_before_start(self, client, battle_id):
        response = client.get("/api/battle/current")
        assert response.status_code == 200
        body = response.json()
        assert body["battle_id"] == battle_id
        assert body["ledger"]["participant_count"] == 2
        assert body["ledger_roster"] == ["0xA", "0xB"]
        assert body["local"] is None

    def test_current_battle_without_any_battle(self, client):
        response = client.get("/api/battle/current")
        assert response.status_code == 502
        assert response.json()["kind"] == "LedgerError"

    def test_unknown_leaderboard(self, client):
        response = client.get("/api/battle/42/leaderboard")
        assert response.status_code == 404
        assert response.json()["kind"] == "BattleNotFoundError"

    def test_prices(self, client):
        response = client.get("/api/prices")
        assert response.status_code == 200
        assert response.json()["prices"]["BTC"] == 100.0


class TestCommands:

    def test_start_and_leaderboard(self, client, battle_id):
        response = client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": 60})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["participant_count"] == 2

        leaderboard = client.get(f"/api/battle/{battle_id}/leaderboard").json()
        assert leaderboard["phase"] == "running"
        assert leaderboard["tick"] == 1
        assert [row["participant_id"] for row in leaderboard["rankings"]] == ["0xA", "0xB"]
        assert [row["rank"] for row in leaderboard["rankings"]] == [1, 2]

        battle = client.get(f"/api/battle/{battle_id}").json()
        assert battle["local"]["phase"] == "running"
        assert battle["ledger"]["is_active"] is True

    def test_start_without_body_uses_default_duration(self, client, battle_id):
        response = client.post(f"/api/battle/{battle_id}/start")
        assert response.status_code == 200

    def test_start_twice_conflicts(self, client, battle_id):
        client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": 60})
        response = client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": 60})
        assert response.status_code == 409
        assert response.json()["kind"] == "InvalidPhaseError"

    def test_start_with_one_participant_conflicts(self, client, ledger, passive_config):
        battle_id = ledger.open_battle()
        ledger.register_participant(battle_id, "0xA", passive_config)

        response = client.post(f"/api/battle/{battle_id}/start")
        assert response.status_code == 409
        assert response.json()["kind"] == "InsufficientParticipantsError"

    def test_invalid_duration_rejected(self, client, battle_id):
        response = client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": -5})
        assert response.status_code == 422

    def test_abort(self, client, ledger, battle_id):
        client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": 600})

        response = client.post(f"/api/battle/{battle_id}/abort")
        assert response.status_code == 200
        outcome = response.json()["outcome"]
        assert outcome["winner_id"] == "0xA"
        assert outcome["reported"] is True
        assert ledger.reported_outcomes == [(battle_id, "0xA", 0)]

        again = client.post(f"/api/battle/{battle_id}/abort")
        assert again.status_code == 409

    def test_abort_with_ledger_down_then_retry(self, client, ledger, battle_id):
        client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": 600})
        ledger.set_available(False)

        response = client.post(f"/api/battle/{battle_id}/abort")
        assert response.status_code == 502
        body = response.json()
        assert body["kind"] == "OutcomeReportError"
        assert body["outcome"]["winner_id"] == "0xA"
        assert body["outcome"]["reported"] is False

        ledger.set_available(True)
        retry = client.post(f"/api/battle/{battle_id}/retry-report")
        assert retry.status_code == 200
        assert retry.json()["outcome"]["reported"] is True


class TestWebSocket:

    def test_leaderboard_updates_pushed(self, client, app, battle_id):
        with client.websocket_connect("/ws") as websocket:
            deadline = time.monotonic() + 5
            while not app.state.connections.active_connections and time.monotonic() < deadline:
                time.sleep(0.01)

            client.post(f"/api/battle/{battle_id}/start", json={"duration_seconds": 60})

            message = websocket.receive_json()
            assert message["type"] == "leaderboard_update"
            assert message["battle_id"] == battle_id
            assert message["tick"] == 1
            assert message["final"] is False
            assert len(message["ranking"]) == 2
