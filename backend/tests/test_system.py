from app import app
from infra import health_service


def test_health_reports_database_and_cache(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    assert body["db"]["ok"] is True
    assert body["db"]["latencyMs"] >= 0
    assert body["cache_ok"] is True
    assert body["uptimeSec"] >= 0


def test_health_returns_503_when_database_is_down(client, monkeypatch):
    def broken():
        raise RuntimeError("connection refused")

    monkeypatch.setattr(health_service.health_repo, "ping_latency_ms", broken)
    resp = client.get("/health")
    assert resp.status_code == 503
    body = resp.get_json()
    assert body["status"] == "error"
    assert body["db"] == {"ok": False, "latencyMs": None}


def test_server_time_reports_frozen_clock(client, frozen_now):
    body = client.get("/time").get_json()
    assert body["serverNow"] == "2026-10-14T12:00:00"
    assert body["weekStart"] == "2026-10-12"
    assert isinstance(body["serverEpochMs"], int)
    assert isinstance(body["tzOffsetMinutes"], int)


def test_health_cli_command(client):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["health"])
    assert result.exit_code == 0
    assert "Status: HEALTHY" in result.output
