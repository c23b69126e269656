import pytest


@pytest.fixture()
def week_data(client, headers, frozen_now):
    def post(path, payload):
        resp = client.post(path, json=payload, headers=headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    writing = post("/activities", {"name": "Writing", "weeklyTargetMinutes": 120})["activity"]
    piano = post("/activities", {"name": "Piano"})["activity"]
    seg_mon = post(
        "/schedule/segments",
        {"weekday": 1, "start": "09:00", "end": "10:00", "activityId": writing["id"]},
    )["segment"]
    seg_tue = post(
        "/schedule/segments",
        {"weekday": 2, "start": "09:00", "end": "10:00", "activityId": piano["id"]},
    )["segment"]
    post(
        "/logs",
        {
            "activityId": writing["id"],
            "segmentId": seg_mon["id"],
            "startedAt": "2026-10-12T09:00:00",
            "endedAt": "2026-10-12T09:40:00",
            "partial": True,
        },
    )
    post(
        "/logs",
        {
            "activityId": writing["id"],
            "startedAt": "2026-10-13T14:00:00",
            "endedAt": "2026-10-13T14:30:00",
        },
    )
    post("/logs", {"startedAt": "2026-10-14T08:00:00", "endedAt": "2026-10-14T08:20:00"})
    return {"writing": writing, "piano": piano, "mon": seg_mon, "tue": seg_tue}


def test_weekly_dashboard(client, headers, week_data):
    resp = client.get("/dashboard?weekStart=2026-10-14", headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["weekStart"] == "2026-10-12"
    assert body["weekEndExclusive"] == "2026-10-19"
    assert body["unassignedMinutes"] == 20

    piano, writing = body["activities"]
    assert writing["name"] == "Writing"
    assert writing["targetMinutes"] == 120
    assert writing["plannedMinutesWeek"] == 60
    assert writing["doneMinutes"] == 70
    assert writing["remainingMinutes"] == 50
    assert writing["overMinutes"] == 0
    assert writing["percent"] == 58.3
    assert writing["plannedCoveragePercent"] == 100.0
    assert writing["plannedRemainingMinutes"] == 0
    assert writing["loggedBySource"] == {"PLANNED": 40, "ADHOC": 30, "MAKEUP": 0}
    assert writing["loggedPartialMinutes"] == 40
    assert writing["loggedFullMinutes"] == 30

    assert piano["doneMinutes"] == 0
    assert piano["percent"] is None
    assert piano["plannedCoveragePercent"] == 0.0
    assert body["totals"] == {"targetMinutes": 120, "plannedMinutes": 120, "doneMinutes": 70}


def test_dashboard_cache_is_invalidated_by_writes(client, headers, week_data):
    first = client.get("/dashboard", headers=headers).get_json()
    assert first["unassignedMinutes"] == 20

    created = client.post(
        "/logs",
        json={"startedAt": "2026-10-14T06:00:00", "endedAt": "2026-10-14T06:10:00"},
        headers=headers,
    )
    assert created.status_code == 201
    second = client.get("/dashboard", headers=headers).get_json()
    assert second["unassignedMinutes"] == 30


def test_segment_usage_report(client, headers, week_data):
    resp = client.get("/segments/usage?weekStart=2026-10-12", headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["template"] == "historical"
    assert body["from"] == "2026-10-12"
    assert body["to"] == "2026-10-19"
    assert body["usage"] == {str(week_data["mon"]["id"]): 40, str(week_data["tue"]["id"]): 0}

    mon = next(item for item in body["segments"] if item["segmentId"] == week_data["mon"]["id"])
    assert mon["plannedMinutes"] == 60
    assert mon["percent"] == 66.7
    assert mon["dominant"]["name"] == "Writing"

    cells = [(c["weekday"], c["start"], c["end"], c["totalMinutes"]) for c in body["freeCells"]]
    assert cells == [(2, 600, 1440, 30), (3, 0, 540, 20)]
    assert body["freeCells"][0]["dominant"]["activityId"] == week_data["writing"]["id"]
    assert body["freeCells"][1]["dominant"]["activityId"] is None
    assert body["utilization"]["freeUsedMinutes"] == 50
    assert body["utilization"]["freeAvailableMinutes"] == 1440 * 7 - 120


def test_segment_usage_can_count_unassigned_segments(client, headers, frozen_now):
    client.post(
        "/schedule/segments",
        json={"weekday": 1, "start": "09:00", "end": "10:00"},
        headers=headers,
    )
    resp = client.get(
        "/segments/usage?weekStart=2026-10-12&template=current&includeUnassigned=true",
        headers=headers,
    )
    body = resp.get_json()
    assert body["template"] == "current"
    assert body["utilization"]["includeUnassigned"] is True
    assert body["utilization"]["freeAvailableMinutes"] == 1440 * 7


def test_week_query_is_validated(client, headers):
    resp = client.get("/dashboard?weekStart=soon", headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()["error"]["code"] == "invalid_query"
