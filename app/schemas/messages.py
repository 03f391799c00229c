"""
Bridgewell Matching — Queue message shapes.

Messages travel as camelCase JSON (``taskId``, ``userId``, ``matchId``)
because the producers and downstream consumers are other services.
Every model accepts either the alias or the field name.
"""

from __future__ import annotations

from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QueueMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class MatchRequestMessage(QueueMessage):
    """Inbound request on ``matching-requests``."""

    type: Literal["task_matches", "user_matches"]
    task_id: Optional[UUID] = Field(default=None, alias="taskId")
    user_id: Optional[UUID] = Field(default=None, alias="userId")
    priority: Literal["normal", "high"] = "normal"
    attempts: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _target_present(self) -> "MatchRequestMessage":
        if self.type == "task_matches" and self.task_id is None:
            raise ValueError("task_matches request requires taskId")
        if self.type == "user_matches" and self.user_id is None:
            raise ValueError("user_matches request requires userId")
        return self


class MatchResultsMessage(QueueMessage):
    """Outbound ranked list on ``matching-results``."""

    type: Literal["task_matches", "user_matches"]
    task_id: Optional[UUID] = Field(default=None, alias="taskId")
    user_id: Optional[UUID] = Field(default=None, alias="userId")
    matches: list[dict[str, Any]] = Field(default_factory=list)


class MatchAcceptedNotification(QueueMessage):
    type: Literal["match_accepted"] = "match_accepted"
    match_id: UUID = Field(alias="matchId")
    user_id: UUID = Field(alias="userId")
    task_id: UUID = Field(alias="taskId")
    score: float


class NewMatchesNotification(QueueMessage):
    type: Literal["new_matches"] = "new_matches"
    task_id: UUID = Field(alias="taskId")
    matches: list[dict[str, Any]] = Field(default_factory=list)
