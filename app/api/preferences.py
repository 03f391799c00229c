"""
Bridgewell Matching — Matching preferences of the calling user.

Preferences are stored for downstream consumers; the baseline score does
not read them.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_current_user_id, get_result_store
from app.schemas.match import PreferencesResponse, PreferencesUpdate
from app.services.result_store import ResultStore

logger = structlog.get_logger("bridgewell.api.preferences")

router = APIRouter()


def _to_response(user_id: uuid.UUID, prefs) -> PreferencesResponse:
    if prefs is None:
        return PreferencesResponse(user_id=user_id)
    return PreferencesResponse(
        user_id=prefs.user_id,
        preferred_categories=prefs.preferred_categories,
        preferred_skills=prefs.preferred_skills,
        location_preference=prefs.location_preference,
        availability_preference=prefs.availability_preference,
        updated_at=prefs.updated_at,
    )


@router.put("", response_model=PreferencesResponse, summary="Create or replace preferences")
async def put_preferences(
    body: PreferencesUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: ResultStore = Depends(get_result_store),
) -> PreferencesResponse:
    prefs = await store.upsert_preferences(
        user_id,
        preferred_categories=body.preferred_categories,
        preferred_skills=body.preferred_skills,
        location_preference=body.location_preference,
        availability_preference=body.availability_preference,
    )
    await store.commit()
    return _to_response(user_id, prefs)


@router.get("", response_model=PreferencesResponse, summary="Read preferences")
async def get_preferences(
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: ResultStore = Depends(get_result_store),
) -> PreferencesResponse:
    """A user without stored preferences gets an empty record."""
    return _to_response(user_id, await store.get_preferences(user_id))
