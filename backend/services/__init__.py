"""
Service layer package.

Each module encapsulates domain logic independent of Flask or HTTP concerns.
"""

__all__ = [
    "activities_service",
    "segments_service",
    "timelogs_service",
    "reconciliation",
    "usage_service",
    "dashboard_service",
    "common",
    "idempotency",
]
