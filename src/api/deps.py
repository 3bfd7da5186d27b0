"""Shared FastAPI dependencies.

The conflict engine is built once in the app lifespan and stored on
``app.state``.
"""

from __future__ import annotations

from fastapi import Request

from src.conflicts.engine import ConflictEngine


def get_conflict_engine(request: Request) -> ConflictEngine:
    """Return the process-wide conflict engine."""
    return request.app.state.conflict_engine
