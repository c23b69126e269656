"""Repository package exposing all repository modules."""

from . import (
    activities_repo,
    dashboard_repo,
    health_repo,
    segments_repo,
    timelogs_repo,
    users_repo,
)

__all__ = [
    "users_repo",
    "activities_repo",
    "segments_repo",
    "timelogs_repo",
    "dashboard_repo",
    "health_repo",
]
