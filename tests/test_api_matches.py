import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import deps, matches, triggers
from app.domain.errors import VectorIndexMissingError
from app.services.match_reader import MatchReader, get_reader
from app.services.matcher import get_engine

from conftest import StaticIndex


@pytest.fixture
def engine_holder(make_engine):
    return {"engine": make_engine(index=StaticIndex([("A", 0.2)]))}


@pytest.fixture
def api(store, engine_holder, monkeypatch):
    store.add_request("R", "black backpack", owner="owner-1")
    store.add_found("A", "black Jansport backpack", category="bags")
    store.seed_matches("R", ["A"])

    app = FastAPI()
    app.include_router(matches.router)
    app.include_router(triggers.router)
    app.dependency_overrides[get_reader] = lambda: MatchReader(store)
    app.dependency_overrides[get_engine] = lambda: engine_holder["engine"]

    def fake_verify(token):
        tokens = {
            "owner-token": {"uid": "owner-1"},
            "other-token": {"uid": "user-2"},
            "admin-token": {"uid": "staff-1", "role": "admin"},
        }
        if token not in tokens:
            raise ValueError("invalid token")
        return tokens[token]

    monkeypatch.setattr(deps, "verify_bearer_token", fake_verify)
    return TestClient(app)


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_missing_token_is_401(api):
    assert api.get("/requests/R/matches").status_code == 401


def test_invalid_token_is_401(api):
    assert api.get("/requests/R/matches", headers=_auth("forged")).status_code == 401


def test_non_owner_is_403(api):
    resp = api.get("/requests/R/matches", headers=_auth("other-token"))
    assert resp.status_code == 403
    assert "matches" not in resp.json()


def test_unknown_request_is_404(api):
    assert api.get("/requests/nope/matches", headers=_auth("owner-token")).status_code == 404


def test_owner_gets_camel_case_matches(api):
    resp = api.get("/requests/R/matches", headers=_auth("owner-token"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["requestId"] == "R"
    m = body["matches"][0]
    assert m["matchId"] == "A"
    assert m["rank"] == 0
    assert m["status"] == "pending"
    assert m["foundItem"]["id"] == "A"
    assert m["foundItem"]["category"] == "bags"
    assert "embedding" not in m["foundItem"]


def test_manual_match_requires_admin(api):
    assert api.post("/requests/R/match", headers=_auth("owner-token")).status_code == 403


def test_manual_match_with_options(api):
    resp = api.post("/requests/R/match", headers=_auth("admin-token"),
                    json={"limit": 5, "distanceThreshold": 0.1})
    assert resp.status_code == 200
    assert resp.json() == {"requestId": "R", "matches": []}


def test_manual_match_rejects_zero_limit(api):
    resp = api.post("/requests/R/match", headers=_auth("admin-token"), json={"limit": 0})
    assert resp.status_code == 422


def test_manual_match_without_vector_index_is_503(api, engine_holder, make_engine):
    engine_holder["engine"] = make_engine(index=StaticIndex(error=VectorIndexMissingError("lost")))
    resp = api.post("/requests/R/match", headers=_auth("admin-token"))
    assert resp.status_code == 503


def test_accept_match(api, store):
    resp = api.post("/admin/requests/R/matches/A/accept", headers=_auth("admin-token"))
    assert resp.status_code == 204
    assert store.matches["R"]["A"]["status"] == "accepted"


def test_trigger_requires_key(api, monkeypatch):
    monkeypatch.setattr(deps.settings, "TRIGGER_API_KEY", "secret")
    assert api.post("/triggers/request-created/R").status_code == 401


def test_trigger_accepted(api, monkeypatch):
    calls = []

    class FakeTriggers:
        def dispatch_request_created(self, request_id):
            calls.append(("request", request_id))

        def dispatch_found_item_created(self, found_item_id):
            calls.append(("found", found_item_id))

    monkeypatch.setattr(deps.settings, "TRIGGER_API_KEY", "secret")
    api.app.dependency_overrides[triggers.get_triggers] = lambda: FakeTriggers()

    headers = {"X-Trigger-Key": "secret"}
    assert api.post("/triggers/request-created/R", headers=headers).status_code == 202
    assert api.post("/triggers/found-item-created/A", headers=headers).status_code == 202
    assert calls == [("request", "R"), ("found", "A")]


def test_manual_match_returns_lost_ref_ids(api):
    resp = api.post("/requests/R/match", headers=_auth("admin-token"))
    assert resp.status_code == 200
    assert resp.json()["matches"] == [
        {"lostRefId": "A", "distance": 0.2, "confidence": pytest.approx(0.9), "rank": 0},
    ]
