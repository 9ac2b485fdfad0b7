from fastapi.testclient import TestClient

from app.services import match_triggers


def test_lifespan_drains_trigger_executors(monkeypatch):
    import main

    calls = []

    class RecordingTriggers:
        def shutdown(self, wait_for_tasks=True):
            calls.append(wait_for_tasks)

    monkeypatch.setattr(match_triggers, "_triggers", RecordingTriggers())

    with TestClient(main.app) as client:
        assert client.get("/healthz").json()["ok"] is True
        assert calls == []

    assert calls == [True]


def test_lifespan_without_triggers(monkeypatch):
    import main

    monkeypatch.setattr(match_triggers, "_triggers", None)
    with TestClient(main.app) as client:
        assert client.get("/").status_code == 200
