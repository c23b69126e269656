"""Management helpers for the timegrid backend.

Wraps Flask-Migrate so migrations run without the Flask CLI and adds a few
maintenance commands for legacy UTC timestamps, provisioning users,
inspecting the audit trail and seeding demo data.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click

# Ensure models are imported so Flask-Migrate sees them
import models  # noqa: F401
import sqlalchemy as sa
import structlog
from app import app
from audit import recent_events
from extensions import db
from flask_migrate import init as flask_migrate_init  # type: ignore[import]
from flask_migrate import migrate as flask_migrate_migrate  # type: ignore[import]
from flask_migrate import upgrade as flask_migrate_upgrade  # type: ignore[import]
from repositories import users_repo
from security import ConflictError
from services import activities_service, segments_service
from timeutils import (
    format_date,
    format_timestamp,
    parse_timestamp,
    weekday_name_long,
    weekday_name_short,
)

logger = structlog.get_logger("timegrid.manage")
MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

DEMO_ACTIVITIES = (
    {"name": "Deep work", "color": "#3b82f6", "weeklyTargetMinutes": 900},
    {"name": "Exercise", "color": "#22c55e", "weeklyTargetMinutes": 240},
    {"name": "Reading", "color": "#f59e0b", "weeklyTargetMinutes": 180},
)

# (activity name, weekdays, start, end)
DEMO_TEMPLATE = (
    ("Deep work", (1, 2, 3, 4, 5), "09:00", "12:00"),
    ("Exercise", (1, 3, 5), "07:00", "08:00"),
    ("Reading", (2, 4), "20:00", "21:00"),
    ("Reading", (6,), "10:00", "11:30"),
)


@click.group()
def cli():
    """Manage the timegrid database."""


@cli.command("init")
def init_command():
    """Initialise the migrations directory if it does not exist."""

    if MIGRATIONS_DIR.exists():
        click.echo("Migrations directory already exists – skipping initialization.")
        return

    with app.app_context():
        flask_migrate_init(directory=str(MIGRATIONS_DIR))
    click.echo(f"Initialized migrations folder at {MIGRATIONS_DIR}")


@cli.command("migrate")
@click.option("--message", "-m", default="auto", help="Migration message")
def migrate_command(message: str):
    """Generate a new migration based on current models."""

    if not MIGRATIONS_DIR.exists():
        raise click.ClickException("Migrations directory missing – run 'init' first.")

    with app.app_context():
        flask_migrate_migrate(directory=str(MIGRATIONS_DIR), message=message or "auto")
    click.echo("Migration script generated in migrations/versions.")


@cli.command("upgrade")
@click.option("--revision", default="head", help="Target revision (default: head)")
def upgrade_command(revision: str):
    """Apply migrations up to the selected revision."""

    if not MIGRATIONS_DIR.exists():
        raise click.ClickException("Migrations directory missing – run 'init' first.")

    with app.app_context():
        flask_migrate_upgrade(directory=str(MIGRATIONS_DIR), revision=revision)
    click.echo(f"Database upgraded to revision {revision}.")


def utc_wall_clock_to_local(value: Optional[str]) -> Optional[str]:
    """Reinterpret a wall-clock string stored as UTC in the server's local zone."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    local = parsed.replace(tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    return format_timestamp(local)


def plan_timestamp_fixes(rows) -> list[dict]:
    fixes = []
    for row in rows:
        started_at = utc_wall_clock_to_local(row["started_at"])
        ended_at = utc_wall_clock_to_local(row["ended_at"])
        if started_at == row["started_at"] and ended_at == row["ended_at"]:
            continue
        fixes.append(
            {
                "id": row["id"],
                "started_at": started_at,
                "ended_at": ended_at,
                "date": format_date(datetime.fromisoformat(started_at)),
                "before": {
                    "started_at": row["started_at"],
                    "ended_at": row["ended_at"],
                    "date": row["date"],
                },
            }
        )
    return fixes


@cli.command("fix-local-timestamps")
@click.option("--apply", "apply_changes", is_flag=True, default=False, help="Write the changes (default is a dry run).")
@click.option("--limit", type=int, default=None, help="Only inspect the first N logs.")
@click.option("--user-id", type=int, default=None, help="Restrict to one user.")
def fix_local_timestamps(apply_changes: bool, limit: Optional[int], user_id: Optional[int]) -> None:
    """Shift time logs recorded as UTC wall-clock into local wall-clock time."""

    with app.app_context():
        session = db.session
        sql = "SELECT id, date, started_at, ended_at FROM time_logs"
        params: dict = {}
        if user_id is not None:
            sql += " WHERE user_id = :user_id"
            params["user_id"] = user_id
        sql += " ORDER BY id ASC"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit

        rows = [dict(row) for row in session.execute(sa.text(sql), params).mappings()]
        fixes = plan_timestamp_fixes(rows)

        if apply_changes:
            try:
                for fix in fixes:
                    session.execute(
                        sa.text(
                            """
                            UPDATE time_logs
                            SET started_at = :started_at, ended_at = :ended_at, date = :date
                            WHERE id = :id
                            """
                        ),
                        {key: fix[key] for key in ("id", "started_at", "ended_at", "date")},
                    )
                session.commit()
            except sa.exc.SQLAlchemyError as exc:
                session.rollback()
                raise click.ClickException(f"Failed to update time logs: {exc}") from exc

        summary = {
            "inspected": len(rows),
            "changed": len(fixes),
            "applied": apply_changes,
            "sample": fixes[:5],
        }
        logger.info(
            "timelogs.fix_local_timestamps",
            user_id=user_id,
            inspected=summary["inspected"],
            changed=summary["changed"],
            applied=apply_changes,
        )
        click.echo(json.dumps(summary, indent=2))


@cli.command("ensure-user")
@click.option("--username", required=True, help="Username issued by the identity provider.")
def ensure_user_command(username: str) -> None:
    """Create the owner row for an externally authenticated user if missing."""

    with app.app_context():
        user_id = users_repo.ensure_user(username)
    logger.info("user.ensure", username=username, user_id=user_id)
    click.echo(f"User '{username}' has id {user_id}.")


@cli.command("audit-log")
@click.option("--user-id", type=int, required=True, help="User whose events to show.")
@click.option("--limit", type=int, default=20, show_default=True)
def audit_log_command(user_id: int, limit: int) -> None:
    """Print the newest audit events of a user as JSON lines."""

    with app.app_context():
        for event in recent_events(user_id, limit=limit):
            click.echo(json.dumps(event, default=str))


@cli.command("seed-demo")
@click.option("--user-id", type=int, required=True, help="User that owns the demo data.")
def seed_demo(user_id: int) -> None:
    """Create sample activities and a weekly template for a user."""

    with app.app_context():
        if not users_repo.user_exists(user_id):
            raise click.ClickException(f"User {user_id} not found.")

        activity_ids = {}
        created_activities = 0
        for payload in DEMO_ACTIVITIES:
            try:
                body, _ = activities_service.add_activity(user_id=user_id, payload=dict(payload))
                created_activities += 1
                activity_ids[payload["name"]] = body["activity"]["id"]
            except ConflictError:
                click.echo(f"Activity '{payload['name']}' already exists – reusing it.")
        for item in activities_service.list_activities(user_id=user_id):
            activity_ids.setdefault(item["name"], item["id"])

        created_segments = skipped_segments = 0
        per_day: dict = {}
        for name, weekdays, start, end in DEMO_TEMPLATE:
            for weekday in weekdays:
                payload = {
                    "weekday": weekday,
                    "start": start,
                    "end": end,
                    "activityId": activity_ids.get(name),
                }
                try:
                    segments_service.create_segment(user_id=user_id, payload=payload)
                    created_segments += 1
                    per_day[weekday] = per_day.get(weekday, 0) + 1
                except ConflictError:
                    skipped_segments += 1
                    click.echo(
                        f"Skipped {name} on {weekday_name_long(weekday)} {start}-{end}: "
                        "overlaps an existing segment."
                    )

        logger.info(
            "seed.demo",
            user_id=user_id,
            activities=created_activities,
            segments=created_segments,
            skipped=skipped_segments,
        )
        click.echo(
            f"Seeded user {user_id}: {created_activities} activities, "
            f"{created_segments} segments ({skipped_segments} skipped as overlapping)."
        )
        if per_day:
            click.echo(
                "Per day: "
                + ", ".join(
                    f"{weekday_name_short(day)} {count}" for day, count in sorted(per_day.items())
                )
            )


if __name__ == "__main__":
    cli()
