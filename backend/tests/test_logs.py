from datetime import timedelta


def _log(client, headers, started, ended, **extra):
    payload = {"startedAt": started, "endedAt": ended, **extra}
    return client.post("/logs", json=payload, headers=headers)


def test_create_log_computes_minutes_and_defaults(client, headers, frozen_now):
    resp = _log(client, headers, "2026-10-13T08:00:00", "2026-10-13T08:45:30", comment="run")
    assert resp.status_code == 201
    log = resp.get_json()["log"]
    assert log["minutes"] == 46
    assert log["date"] == "2026-10-13"
    assert log["source"] == "ADHOC"
    assert log["partial"] is False
    assert log["startedAt"] == "2026-10-13T08:00:00"
    assert log["endedAt"] == "2026-10-13T08:45:30"
    assert log["comment"] == "run"


def test_clock_form_rolls_over_midnight(client, headers, frozen_now):
    resp = client.post(
        "/logs",
        json={"date": "2026-10-13", "startTime": "23:30", "endTime": "00:30"},
        headers=headers,
    )
    assert resp.status_code == 201
    log = resp.get_json()["log"]
    assert log["startedAt"] == "2026-10-13T23:30:00"
    assert log["endedAt"] == "2026-10-14T00:30:00"
    assert log["minutes"] == 60
    assert log["date"] == "2026-10-13"


def test_invalid_intervals_are_rejected(client, headers, frozen_now):
    backwards = _log(client, headers, "2026-10-13T09:00:00", "2026-10-13T08:00:00")
    assert backwards.status_code == 422

    zero_minutes = _log(
        client, headers, "2026-10-13T08:00:00", "2026-10-13T09:00:00", minutes=0
    )
    assert zero_minutes.status_code == 422
    assert zero_minutes.get_json()["error"]["details"]["fields"] == ["minutes"]

    incomplete = client.post("/logs", json={"startedAt": "2026-10-13T08:00:00"}, headers=headers)
    assert incomplete.status_code == 422

    bad_source = _log(
        client, headers, "2026-10-13T08:00:00", "2026-10-13T09:00:00", source="later"
    )
    assert bad_source.status_code == 422


def test_planned_log_cannot_exceed_its_segment(client, headers, frozen_now):
    segment = client.post(
        "/schedule/segments",
        json={"weekday": 1, "start": "09:00", "end": "09:30"},
        headers=headers,
    ).get_json()["segment"]

    planned = _log(
        client,
        headers,
        "2026-10-12T09:00:00",
        "2026-10-12T10:00:00",
        segmentId=segment["id"],
        source="PLANNED",
    )
    assert planned.status_code == 422
    assert planned.get_json()["error"]["details"]["segmentMinutes"] == 30

    adhoc = _log(
        client,
        headers,
        "2026-10-12T09:00:00",
        "2026-10-12T10:00:00",
        segmentId=segment["id"],
        source="ADHOC",
    )
    assert adhoc.status_code == 201
    assert adhoc.get_json()["log"]["minutes"] == 60


def test_overlapping_logs_conflict(client, headers, frozen_now):
    first = _log(client, headers, "2026-10-13T08:00:00", "2026-10-13T09:00:00")
    first_id = first.get_json()["log"]["id"]

    clash = _log(client, headers, "2026-10-13T08:30:00", "2026-10-13T09:30:00")
    assert clash.status_code == 409
    assert clash.get_json()["error"]["details"]["overlappingLogIds"] == [first_id]

    touching = _log(client, headers, "2026-10-13T09:00:00", "2026-10-13T09:30:00")
    assert touching.status_code == 201


def test_unknown_segment_is_not_found(client, headers, frozen_now):
    resp = _log(client, headers, "2026-10-13T08:00:00", "2026-10-13T09:00:00", segmentId=999)
    assert resp.status_code == 404
    assert resp.get_json()["error"]["details"]["fields"] == ["segmentId"]


def test_start_then_second_start_conflicts(client, headers, frozen_now):
    first = client.post("/logs/start", json={"comment": "reading"}, headers=headers)
    assert first.status_code == 201
    log = first.get_json()["log"]
    assert log["endedAt"] is None
    assert log["startedAt"] == "2026-10-14T12:00:00"
    assert log["source"] == "ADHOC"

    second = client.post("/logs/start", headers=headers)
    assert second.status_code == 409
    assert second.get_json()["error"]["code"] == "already_active"


def test_current_and_terminate(client, headers, frozen_now):
    assert client.get("/logs/current", headers=headers).get_json() == {"active": None}

    client.post("/logs/start", headers=headers)
    frozen_now["value"] = frozen_now["value"] + timedelta(minutes=25, seconds=40)

    current = client.get("/logs/current", headers=headers).get_json()["active"]
    assert current["elapsedMinutes"] == 26
    assert current["startedAt"] == "2026-10-14T12:00:00"

    # the running log blocks anything overlapping it up to now
    clash = _log(client, headers, "2026-10-14T12:10:00", "2026-10-14T12:20:00")
    assert clash.status_code == 409

    ended = client.post("/logs/terminate", headers=headers)
    assert ended.status_code == 200
    log = ended.get_json()["log"]
    assert log["minutes"] == 26
    assert log["endedAt"] == "2026-10-14T12:25:40"

    again = client.post("/logs/terminate", headers=headers)
    assert again.status_code == 404
    assert again.get_json()["error"]["code"] == "no_active_activity"


def test_terminate_at_start_instant_is_invalid(client, headers, frozen_now):
    client.post("/logs/start", headers=headers)
    resp = client.post("/logs/terminate", headers=headers)
    assert resp.status_code == 422
    assert resp.get_json()["error"]["message"] == "Invalid time"


def test_start_inside_logged_interval_conflicts(client, headers, frozen_now):
    covering = _log(client, headers, "2026-10-14T11:30:00", "2026-10-14T12:30:00")
    assert covering.status_code == 201
    covering_id = covering.get_json()["log"]["id"]

    resp = client.post("/logs/start", headers=headers)
    assert resp.status_code == 409
    error = resp.get_json()["error"]
    assert error["code"] == "conflict"
    assert error["details"]["overlappingLogIds"] == [covering_id]
    assert client.get("/logs/current", headers=headers).get_json() == {"active": None}

    client.delete(f"/logs/{covering_id}", headers=headers)
    at_now = _log(client, headers, "2026-10-14T12:00:00", "2026-10-14T12:15:00")
    assert at_now.status_code == 201
    assert client.post("/logs/start", headers=headers).status_code == 409


def test_terminate_stops_at_next_logged_interval(client, headers, frozen_now):
    assert client.post("/logs/start", headers=headers).status_code == 201
    ahead = _log(client, headers, "2026-10-14T12:30:00", "2026-10-14T13:00:00")
    assert ahead.status_code == 201

    frozen_now["value"] = frozen_now["value"] + timedelta(minutes=45)
    ended = client.post("/logs/terminate", headers=headers)
    assert ended.status_code == 200
    log = ended.get_json()["log"]
    assert log["endedAt"] == "2026-10-14T12:30:00"
    assert log["minutes"] == 30

    logs = client.get("/logs?order=asc", headers=headers).get_json()["logs"]
    intervals = [(item["startedAt"], item["endedAt"]) for item in logs]
    assert intervals == [
        ("2026-10-14T12:00:00", "2026-10-14T12:30:00"),
        ("2026-10-14T12:30:00", "2026-10-14T13:00:00"),
    ]
    for earlier, later in zip(intervals, intervals[1:]):
        assert earlier[1] <= later[0]


def test_update_log_keeps_minutes_unless_times_change(client, headers, frozen_now):
    log_id = _log(
        client, headers, "2026-10-13T08:00:00", "2026-10-13T09:00:00", minutes=40
    ).get_json()["log"]["id"]

    partial = client.patch(f"/logs/{log_id}", json={"partial": True}, headers=headers)
    assert partial.status_code == 200
    assert partial.get_json()["log"]["partial"] is True
    assert partial.get_json()["log"]["minutes"] == 40

    moved = client.patch(
        f"/logs/{log_id}", json={"endedAt": "2026-10-13T09:30:00"}, headers=headers
    )
    assert moved.status_code == 200
    assert moved.get_json()["log"]["minutes"] == 90

    cleared = client.patch(f"/logs/{log_id}", json={"startedAt": None}, headers=headers)
    assert cleared.status_code == 422


def test_delete_log(client, headers, frozen_now):
    log_id = _log(client, headers, "2026-10-13T08:00:00", "2026-10-13T09:00:00").get_json()[
        "log"
    ]["id"]
    assert client.delete(f"/logs/{log_id}", headers=headers).status_code == 200
    assert client.delete(f"/logs/{log_id}", headers=headers).status_code == 404


def test_list_filters_and_pagination(client, headers, frozen_now):
    segment_id = client.post(
        "/schedule/segments",
        json={"weekday": 2, "start": "07:00", "end": "08:00"},
        headers=headers,
    ).get_json()["segment"]["id"]
    _log(client, headers, "2026-10-06T08:00:00", "2026-10-06T09:00:00")
    _log(client, headers, "2026-10-13T07:00:00", "2026-10-13T07:30:00", segmentId=segment_id)
    _log(client, headers, "2026-10-13T10:00:00", "2026-10-13T11:00:00")
    _log(client, headers, "2026-10-14T08:00:00", "2026-10-14T09:00:00", source="MAKEUP")

    week = client.get("/logs?weekStart=2026-10-12", headers=headers).get_json()
    assert week["total"] == 3
    assert week["order"] == "desc"
    assert [log["startedAt"][:10] for log in week["logs"]] == [
        "2026-10-14",
        "2026-10-13",
        "2026-10-13",
    ]

    page = client.get(
        "/logs?weekStart=2026-10-12&limit=2&offset=2&order=asc", headers=headers
    ).get_json()
    assert page["total"] == 3
    assert page["limit"] == 2
    assert [log["startedAt"] for log in page["logs"]] == ["2026-10-14T08:00:00"]

    free = client.get("/logs?weekStart=2026-10-12&noSegment=1", headers=headers).get_json()
    assert free["total"] == 2

    by_segment = client.get(f"/logs?segmentId={segment_id}", headers=headers).get_json()
    assert [log["source"] for log in by_segment["logs"]] == ["PLANNED"]

    makeup = client.get("/logs?source=makeup", headers=headers).get_json()
    assert makeup["total"] == 1

    one_day = client.get("/logs?date=2026-10-13", headers=headers).get_json()
    assert one_day["total"] == 2

    bad_limit = client.get("/logs?limit=0", headers=headers)
    assert bad_limit.status_code == 400
    assert bad_limit.get_json()["error"]["code"] == "invalid_query"


def test_idempotent_log_create_replays_first_response(client, headers, frozen_now):
    payload = {"startedAt": "2026-10-13T08:00:00", "endedAt": "2026-10-13T09:00:00"}
    idem = {**headers, "X-Idempotency-Key": "log-key-1"}

    first = client.post("/logs", json=payload, headers=idem)
    second = client.post("/logs", json=payload, headers=idem)
    assert first.status_code == second.status_code == 201
    assert first.get_json() == second.get_json()

    listed = client.get("/logs", headers=headers).get_json()
    assert listed["total"] == 1
