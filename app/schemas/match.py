from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional, Any, Literal

class TaskMatchesResponse(BaseModel):
    task_id: UUID
    matches: list[dict[str, Any]]
    count: int
    generated_at: datetime

class UserMatchesResponse(BaseModel):
    user_id: UUID
    matches: list[dict[str, Any]]
    count: int
    generated_at: datetime

class RecommendationsResponse(BaseModel):
    user_id: UUID
    type: Literal["tasks", "users"]
    recommendations: list[dict[str, Any]]
    count: int
    generated_at: datetime

class MatchActionRequest(BaseModel):
    action: str  # accept/reject/view, validated by ActionService

class MatchActionResponse(BaseModel):
    match_id: UUID
    action: str
    status: str
    notified: bool

class PreferencesUpdate(BaseModel):
    preferred_categories: Optional[list[str]] = None
    preferred_skills: Optional[list[str]] = None
    location_preference: Optional[dict[str, Any]] = None
    availability_preference: Optional[dict[str, Any]] = None

class PreferencesResponse(PreferencesUpdate):
    user_id: UUID
    updated_at: Optional[datetime] = None

class ActionStatistic(BaseModel):
    action: str
    count: int
    avg_score: Optional[float] = None

class AcceptedMatch(BaseModel):
    match_id: UUID
    task_id: UUID
    user_id: UUID
    score: float
    task_title: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

class AnalyticsResponse(BaseModel):
    period: Literal["1d", "7d", "30d"]
    statistics: list[ActionStatistic] = Field(default_factory=list)
    top_matches: list[AcceptedMatch] = Field(default_factory=list)
