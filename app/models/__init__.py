"""
Bridgewell Matching — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User
from app.models.task import Task, TaskParticipant
from app.models.match import MatchAnalytics, MatchingPreferences, MatchResult

__all__ = [
    "User",
    "Task",
    "TaskParticipant",
    "MatchResult",
    "MatchingPreferences",
    "MatchAnalytics",
]
