import pytest
from app import app
from audit import is_audit_table_missing_error, log_event, recent_events
from repositories import activities_repo, segments_repo, timelogs_repo, users_repo
from security import ApiError
from services import segments_service
from sqlalchemy.exc import IntegrityError, OperationalError


def _shape(weekday=1, start=540, end=600, activity_id=None):
    return {
        "weekday": weekday,
        "start_minute": start,
        "end_minute": end,
        "activity_id": activity_id,
        "notes": None,
    }


@pytest.mark.usefixtures("client")
def test_ensure_user_is_idempotent():
    with app.app_context():
        first = users_repo.ensure_user("carol")
        second = users_repo.ensure_user("carol")
        assert first == second
        assert users_repo.user_exists(first)
        assert users_repo.get_user_id("nobody") is None


@pytest.mark.usefixtures("client")
def test_activity_name_unique_per_user():
    with app.app_context():
        alice = users_repo.ensure_user("alice")
        bob = users_repo.ensure_user("bob")
        activities_repo.insert_activity(alice, {"name": "Chess"}, "2026-10-14T12:00:00")
        activities_repo.insert_activity(bob, {"name": "Chess"}, "2026-10-14T12:00:00")
        with pytest.raises(activities_repo.ConflictError):
            activities_repo.insert_activity(alice, {"name": "Chess"}, "2026-10-14T12:00:00")


@pytest.mark.usefixtures("client")
def test_version_segment_rolls_back_when_insert_fails(monkeypatch):
    with app.app_context():
        user_id = users_repo.ensure_user("dave")
        row = segments_repo.insert_segment(user_id, _shape(), "2026-10-12")

        def boom(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(segments_repo, "_insert", boom)
        with pytest.raises(OperationalError):
            segments_repo.version_segment(
                user_id, row["id"], {"start_minute": 480}, "2026-10-19", "2026-10-18"
            )

        survivor = segments_repo.get_segment(user_id, row["id"])
        assert survivor["effective_to"] is None
        assert survivor["start_minute"] == 540
        assert [seg["id"] for seg in segments_repo.list_current(user_id)] == [row["id"]]


@pytest.mark.usefixtures("client")
def test_pending_version_is_edited_in_place():
    with app.app_context():
        user_id = users_repo.ensure_user("erin")
        row = segments_repo.insert_segment(user_id, _shape(), "2026-10-19")
        closed, created = segments_repo.version_segment(
            user_id, row["id"], {"end_minute": 630}, "2026-10-19", "2026-10-18"
        )
        assert closed is None
        assert created["id"] == row["id"]
        assert created["end_minute"] == 630

        with pytest.raises(segments_repo.StateError):
            segments_repo.version_segment(
                user_id, row["id"], {}, "2026-10-12", "2026-10-11"
            )


@pytest.mark.usefixtures("client")
def test_single_open_log_per_user_enforced_by_index():
    with app.app_context():
        user_id = users_repo.ensure_user("frank")
        values = {
            "activity_id": None,
            "segment_id": None,
            "date": "2026-10-14",
            "started_at": "2026-10-14T12:00:00",
            "ended_at": None,
            "minutes": 0,
            "partial": False,
            "source": "ADHOC",
            "comment": None,
        }
        timelogs_repo.insert_log(user_id, values)
        with pytest.raises(timelogs_repo.ConflictError):
            timelogs_repo.insert_log(user_id, {**values, "started_at": "2026-10-14T12:05:00"})

        closed = timelogs_repo.close_open_log(user_id, "2026-10-14T12:30:00", 30)
        assert closed["minutes"] == 30
        assert timelogs_repo.get_open_log(user_id) is None
        with pytest.raises(timelogs_repo.NotFoundError):
            timelogs_repo.close_open_log(user_id, "2026-10-14T13:00:00", 30)


@pytest.mark.usefixtures("client")
def test_audit_events_are_persisted():
    with app.app_context():
        user_id = users_repo.ensure_user("gina")
        log_event(
            "segment.create",
            "Segment created",
            user_id=user_id,
            context={"segment_id": 4, "when": object()},
        )
        events = recent_events(user_id=user_id, limit=5)
        assert len(events) == 1
        assert events[0]["event_type"] == "segment.create"
        assert events[0]["context"]["segment_id"] == 4
        assert isinstance(events[0]["context"]["when"], str)

        log_event("segment.delete", "Segment deleted", user_id=user_id, level=" WARNING ")
        log_event("segment.delete", "Segment deleted", user_id=user_id, level="loud")
        assert [event["level"] for event in recent_events(user_id=user_id, limit=2)] == [
            "info",
            "warning",
        ]


def test_audit_table_missing_detection():
    missing = OperationalError("INSERT", {}, Exception("no such table: audit_events"))
    other = OperationalError("INSERT", {}, Exception("no such table: time_logs"))
    assert is_audit_table_missing_error(missing)
    assert not is_audit_table_missing_error(other)


def _integrity_error(message):
    return IntegrityError("INSERT", {}, Exception(message))


@pytest.mark.usefixtures("client")
def test_identical_open_start_is_an_overlap_conflict(monkeypatch):
    with app.app_context():
        user_id = users_repo.ensure_user("erin")
        segments_repo.insert_segment(user_id, _shape(), "2026-10-12")

        # let the unique index catch the clash instead of the pre-check
        monkeypatch.setattr(segments_repo, "_ensure_no_overlap", lambda *args, **kwargs: None)
        with pytest.raises(segments_repo.ConflictError):
            segments_repo.insert_segment(user_id, _shape(end=570), "2026-10-12")


@pytest.mark.usefixtures("client")
def test_other_integrity_errors_are_not_reported_as_overlap(monkeypatch, frozen_now):
    with app.app_context():
        user_id = users_repo.ensure_user("frank")

        def fk_violation(*args, **kwargs):
            raise _integrity_error(
                'insert or update on table "schedule_segments" violates foreign key '
                'constraint "schedule_segments_user_id_fkey"'
            )

        monkeypatch.setattr(segments_repo, "_insert", fk_violation)
        with pytest.raises(IntegrityError):
            segments_repo.insert_segment(user_id, _shape(), "2026-10-12")

        with pytest.raises(ApiError) as excinfo:
            segments_service.create_segment(
                user_id=user_id, payload={"weekday": 1, "start": "09:00", "end": "10:00"}
            )
        assert excinfo.value.status == 500
        assert excinfo.value.code == "database_error"


def test_unique_violation_matching():
    postgres = _integrity_error(
        'duplicate key value violates unique constraint "uq_time_logs_one_open_per_user"'
    )
    sqlite = _integrity_error("UNIQUE constraint failed: time_logs.user_id")
    check = _integrity_error('new row for relation "time_logs" violates check constraint "ck_time_logs_interval"')

    assert timelogs_repo._is_second_open_log(postgres)
    assert timelogs_repo._is_second_open_log(sqlite)
    assert not timelogs_repo._is_second_open_log(check)
    assert activities_repo._is_duplicate_name(
        _integrity_error("UNIQUE constraint failed: activities.user_id, activities.name")
    )
    assert not segments_repo._is_open_start_clash(sqlite)
