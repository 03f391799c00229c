"""
Bridgewell Matching — Read-only access to user and task profiles.

Loads the candidate pools the match finder scores.  Rows from the
account and task services are converted into immutable profile views
(``app.services.profiles``) at this boundary; nothing is cached between
calls.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.task import Task, TaskParticipant
from app.models.user import User
from app.services.profiles import (
    TaskProfile,
    TaskStatus,
    UserHistory,
    UserProfile,
    normalise_terms,
    parse_availability,
    parse_datetime,
)

logger = structlog.get_logger("bridgewell.profile_reader")


def user_to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        role=(user.user_type or "").lower(),
        skills=normalise_terms(user.skills),
        interests=normalise_terms(user.interests),
        location=user.location,
        availability=parse_availability(user.availability),
        is_active=bool(user.is_active),
        created_at=parse_datetime(user.created_at),
        first_name=user.first_name or "",
        last_name=user.last_name or "",
    )


def task_to_profile(task: Task, creator_role: str | None) -> TaskProfile:
    return TaskProfile(
        id=task.id,
        creator_id=task.created_by,
        creator_role=(creator_role or "").lower(),
        category=task.category,
        tags=normalise_terms(task.tags),
        required_skills=normalise_terms(task.skills_required),
        location=task.location,
        is_virtual=bool(task.is_virtual),
        scheduled_at=parse_datetime(task.scheduled_date),
        status=task.status,
        created_at=parse_datetime(task.created_at),
        title=task.title or "",
        description=task.description or "",
    )


def _history_from_row(completed, average_rating, last_activity) -> UserHistory:
    return UserHistory(
        completed_tasks=int(completed or 0),
        average_rating=float(average_rating) if average_rating is not None else None,
        last_activity=parse_datetime(last_activity),
    )


def _history_subquery():
    """Per-participant aggregate: completions, mean rating, last completion."""
    return (
        select(
            TaskParticipant.participant_id.label("participant_id"),
            func.count(TaskParticipant.completed_at).label("completed_tasks"),
            func.avg(TaskParticipant.rating).label("average_rating"),
            func.max(TaskParticipant.completed_at).label("last_activity"),
        )
        .group_by(TaskParticipant.participant_id)
        .subquery("user_history")
    )


class ProfileReader:
    """SQL-backed profile reader bound to one session."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    async def get_task(self, task_id: uuid.UUID) -> TaskProfile | None:
        stmt = (
            select(Task, User.user_type)
            .join(User, Task.created_by == User.id)
            .where(Task.id == task_id)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return None
        task, creator_role = row
        return task_to_profile(task, creator_role)

    async def get_user(self, user_id: uuid.UUID) -> UserProfile | None:
        user = (
            await self.db.execute(select(User).where(User.id == user_id))
        ).scalar_one_or_none()
        if user is None:
            return None
        return user_to_profile(user)

    async def get_user_history(self, user_id: uuid.UUID) -> UserHistory:
        stmt = select(
            func.count(TaskParticipant.completed_at),
            func.avg(TaskParticipant.rating),
            func.max(TaskParticipant.completed_at),
        ).where(TaskParticipant.participant_id == user_id)
        row = (await self.db.execute(stmt)).first()
        if row is None:
            return UserHistory()
        return _history_from_row(*row)

    async def list_candidate_users(
        self,
        role: str,
        exclude_user_id: uuid.UUID | None = None,
    ) -> list[tuple[UserProfile, UserHistory]]:
        """Active users of ``role`` together with their participation history."""
        history = _history_subquery()
        stmt = (
            select(
                User,
                history.c.completed_tasks,
                history.c.average_rating,
                history.c.last_activity,
            )
            .outerjoin(history, history.c.participant_id == User.id)
            .where(User.user_type == role, User.is_active.is_(True))
        )
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)

        rows = (await self.db.execute(stmt)).all()
        logger.debug("candidate_users_loaded", role=role, count=len(rows))
        return [
            (user_to_profile(user), _history_from_row(completed, rating, last))
            for user, completed, rating, last in rows
        ]

    async def list_candidate_tasks(
        self,
        creator_role: str,
        exclude_creator_id: uuid.UUID,
        limit: int,
    ) -> list[TaskProfile]:
        """Newest published tasks created by ``creator_role`` users other
        than ``exclude_creator_id``."""
        stmt = (
            select(Task, User.user_type)
            .join(User, Task.created_by == User.id)
            .where(
                User.user_type == creator_role,
                Task.status == TaskStatus.PUBLISHED.value,
                Task.created_by != exclude_creator_id,
            )
            .order_by(Task.created_at.desc())
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).all()
        logger.debug("candidate_tasks_loaded", creator_role=creator_role, count=len(rows))
        return [task_to_profile(task, role) for task, role in rows]

    async def list_recent_published_task_ids(self, since: datetime) -> list[uuid.UUID]:
        stmt = (
            select(Task.id)
            .where(Task.status == TaskStatus.PUBLISHED.value, Task.created_at >= since)
            .order_by(Task.created_at.asc())
        )
        return list((await self.db.execute(stmt)).scalars().all())
