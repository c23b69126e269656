import time

import jwt
from app import app


def _token(payload):
    return jwt.encode(payload, app.config["JWT_SECRET"], algorithm=app.config["JWT_ALGORITHM"])


def test_missing_token_rejected(client):
    resp = client.get("/activities")
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "unauthorized"


def test_invalid_token_rejected(client):
    resp = client.get(
        "/activities",
        headers={"Authorization": "Bearer invalid-token", "X-CSRF-Token": "whatever"},
    )
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "unauthorized"


def test_expired_token_rejected(client, make_user):
    user_id = make_user()
    token = _token({"sub": str(user_id), "csrf": "abc", "exp": int(time.time()) - 10})
    resp = client.get("/activities", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.get_json()["error"]["code"] == "token_expired"


def test_non_numeric_subject_rejected(client):
    token = _token({"sub": "alice", "csrf": "abc"})
    resp = client.get("/activities", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_csrf_header_required_for_writes(client, make_user):
    user_id = make_user()
    bearer = {"Authorization": f"Bearer {_token({'sub': str(user_id), 'csrf': 'abc'})}"}

    assert client.get("/activities", headers=bearer).status_code == 200

    missing = client.post("/activities", json={"name": "Chess"}, headers=bearer)
    assert missing.status_code == 403
    assert missing.get_json()["error"]["code"] == "invalid_csrf"

    wrong = client.post(
        "/activities", json={"name": "Chess"}, headers={**bearer, "X-CSRF-Token": "nope"}
    )
    assert wrong.status_code == 403

    ok = client.post(
        "/activities", json={"name": "Chess"}, headers={**bearer, "X-CSRF-Token": "abc"}
    )
    assert ok.status_code == 201


def test_token_without_csrf_claim_rejected(client, make_user):
    token = _token({"sub": str(make_user())})
    resp = client.get("/activities", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 403


def test_public_endpoints_need_no_token(client):
    assert client.get("/").status_code == 200
    assert client.get("/health").status_code == 200
    assert client.get("/time").status_code == 200


def test_unknown_route_is_json_404(client):
    resp = client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "not_found"


def test_api_key_enforced_when_configured(client, headers, monkeypatch):
    monkeypatch.setitem(app.config, "API_KEY", "secret-key")

    denied = client.get("/activities", headers=headers)
    assert denied.status_code == 401

    allowed = client.get("/activities", headers={**headers, "X-API-Key": "secret-key"})
    assert allowed.status_code == 200

    assert client.get("/health").status_code == 200


def test_users_only_see_their_own_data(client, auth_headers, make_user):
    alice = auth_headers(make_user("alice"))
    bob = auth_headers(make_user("bob"))
    client.post("/activities", json={"name": "Chess"}, headers=alice)

    assert client.get("/activities", headers=bob).get_json()["activities"] == []
    assert len(client.get("/activities", headers=alice).get_json()["activities"]) == 1
