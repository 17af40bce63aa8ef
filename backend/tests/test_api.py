import pytest
from fastapi.testclient import TestClient

from engine_bridge import engine
from engine_bridge.engine import EngineManager
from engine_bridge.main import app

from conftest import AFTER_E4, START, ScriptedTransport, fast_settings, started_bridge


def _manager(**transport_kwargs):
    async def factory(config, book):
        return await started_bridge(transport=ScriptedTransport(**transport_kwargs), config=config, book=book)

    return EngineManager(fast_settings(), factory=factory)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(engine, "engine_manager", _manager(bestmoves={AFTER_E4: "c7c5"}))
    with TestClient(app) as test_client:
        yield test_client


def test_healthcheck(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_ping(client):
    assert client.get("/api/v1/engine/ping").json() == "pong"


def test_capabilities(client):
    resp = client.get("/api/v1/engine/capabilities")
    assert resp.status_code == 200
    body = resp.json()
    assert body["engine_id"] == "Stockfish 16"
    assert body["has_elo"] is True


def test_analyze(client):
    resp = client.post("/api/v1/engine/analyze", json={"fen": AFTER_E4, "movetime_ms": 40})
    assert resp.status_code == 200
    body = resp.json()
    assert body["best_move"] == "c7c5"
    assert body["book"] is False


def test_analyze_invalid_fen(client):
    resp = client.post("/api/v1/engine/analyze", json={"fen": "not-a-fen"})
    assert resp.status_code == 422


def test_strength_is_clamped(client):
    resp = client.post("/api/v1/engine/strength", json={"elo": 3200})
    assert resp.status_code == 200
    body = resp.json()
    assert body["elo_applied"] == 2500
    assert body["limit_strength"] is True


def test_review_fast(client):
    resp = client.post(
        "/api/v1/engine/review-fast",
        json={"fens": [START, AFTER_E4], "opts": {"pass1_ms": 120, "pass2_ms": 200}},
    )
    assert resp.status_code == 200
    assert [entry["idx"] for entry in resp.json()] == [0, 1]


def test_opening_lookup(client):
    sicilian = "rnbqkbnr/pp1ppppp/8/2p5/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2"
    resp = client.get("/api/v1/engine/opening", params={"fen": sicilian})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Sicilian Defence"
    assert client.get("/api/v1/engine/opening", params={"fen": START}).json() is None


def test_panic_stops_engine(client):
    client.get("/api/v1/engine/capabilities")
    assert engine.engine_manager.engine is not None
    assert client.post("/api/v1/engine/panic").json() == {"ok": True}
    assert engine.engine_manager.engine is None


def test_start_failure_maps_to_503(monkeypatch):
    monkeypatch.setattr(engine, "engine_manager", _manager(answer_uci=False))
    with TestClient(app) as client:
        resp = client.get("/api/v1/engine/capabilities")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Engine not ready"
