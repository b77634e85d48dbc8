"""API routers for all endpoints."""

from riskcast.routers import dispatch, jobs, scores

__all__ = [
    "dispatch",
    "jobs",
    "scores",
]
