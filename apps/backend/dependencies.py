"""
Shared FastAPI dependencies.

Route handlers get their session from database.get_session and the
process-wide draft autosaver from app state; tests override both.
"""

from typing import Optional

from fastapi import Request

from services.draft_autosave import DraftAutosaver


def get_draft_autosaver(request: Request) -> Optional[DraftAutosaver]:
    """The autosaver started with the app, or None when it isn't running."""
    return getattr(request.app.state, "draft_autosaver", None)
