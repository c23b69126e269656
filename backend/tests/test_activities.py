def _create(client, headers, **overrides):
    payload = {"name": "Deep work", "color": "3B82F6", "weeklyTargetMinutes": 600}
    payload.update(overrides)
    return client.post("/activities", json=payload, headers=headers)


def test_create_and_list_activities(client, headers, frozen_now):
    resp = _create(client, headers)
    assert resp.status_code == 201
    activity = resp.get_json()["activity"]
    assert activity["name"] == "Deep work"
    assert activity["color"] == "#3b82f6"
    assert activity["weeklyTargetMinutes"] == 600
    assert activity["active"] is True
    assert activity["createdAt"] == "2026-10-14T12:00:00"

    _create(client, headers, name="Archive", active=False)
    listed = client.get("/activities", headers=headers).get_json()["activities"]
    assert [item["name"] for item in listed] == ["Archive", "Deep work"]

    active_only = client.get("/activities?activeOnly=1", headers=headers).get_json()
    assert [item["name"] for item in active_only["activities"]] == ["Deep work"]


def test_activity_validation_errors(client, headers):
    too_short = _create(client, headers, name="x")
    assert too_short.status_code == 422
    body = too_short.get_json()["error"]
    assert body["code"] == "validation_error"
    assert body["details"]["fields"] == ["name"]

    bad_color = _create(client, headers, color="blue")
    assert bad_color.status_code == 422

    negative = _create(client, headers, weeklyTargetMinutes=-5)
    assert negative.status_code == 422

    unknown = _create(client, headers, category="Health")
    assert unknown.status_code == 422


def test_invalid_json_body_is_bad_request(client, headers):
    resp = client.post(
        "/activities", data="not json", headers={**headers, "Content-Type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "invalid_json"


def test_duplicate_activity_name_conflicts(client, headers):
    assert _create(client, headers).status_code == 201
    dup = _create(client, headers)
    assert dup.status_code == 409
    assert dup.get_json()["error"]["details"]["fields"] == ["name"]


def test_update_activity(client, headers):
    activity_id = _create(client, headers).get_json()["activity"]["id"]

    resp = client.patch(
        f"/activities/{activity_id}",
        json={"color": None, "weeklyTargetMinutes": 120},
        headers=headers,
    )
    assert resp.status_code == 200
    updated = resp.get_json()["activity"]
    assert updated["color"] is None
    assert updated["weeklyTargetMinutes"] == 120
    assert updated["name"] == "Deep work"

    empty = client.patch(f"/activities/{activity_id}", json={}, headers=headers)
    assert empty.status_code == 422


def test_other_users_activity_is_not_found(client, auth_headers, make_user):
    owner = auth_headers(make_user("owner"))
    intruder = auth_headers(make_user("intruder"))
    activity_id = _create(client, owner).get_json()["activity"]["id"]

    assert client.get(f"/activities/{activity_id}", headers=intruder).status_code == 404
    assert (
        client.patch(f"/activities/{activity_id}", json={"active": False}, headers=intruder).status_code
        == 404
    )
    assert client.delete(f"/activities/{activity_id}", headers=intruder).status_code == 404
    assert client.get(f"/activities/{activity_id}", headers=owner).status_code == 200


def test_delete_activity_detaches_segments_and_logs(client, headers, frozen_now):
    activity_id = _create(client, headers).get_json()["activity"]["id"]
    segment = client.post(
        "/schedule/segments",
        json={"weekday": 1, "start": "09:00", "end": "10:00", "activityId": activity_id},
        headers=headers,
    ).get_json()["segment"]
    log = client.post(
        "/logs",
        json={
            "activityId": activity_id,
            "startedAt": "2026-10-13T08:00:00",
            "endedAt": "2026-10-13T08:30:00",
        },
        headers=headers,
    ).get_json()["log"]

    resp = client.delete(f"/activities/{activity_id}", headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["segmentsDetached"] == 1
    assert body["logsDetached"] == 1

    segments = client.get("/schedule/segments", headers=headers).get_json()["segments"]
    assert segments[0]["id"] == segment["id"]
    assert segments[0]["activityId"] is None
    logs = client.get("/logs", headers=headers).get_json()["logs"]
    assert logs[0]["id"] == log["id"]
    assert logs[0]["activityId"] is None
    assert client.get(f"/activities/{activity_id}", headers=headers).status_code == 404
