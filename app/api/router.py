"""
Bridgewell Matching — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import analytics, matching, preferences, recommendations

router = APIRouter()

router.include_router(matching.router, prefix="/matches", tags=["Matching"])
router.include_router(recommendations.router, prefix="/recommendations", tags=["Recommendations"])
router.include_router(preferences.router, prefix="/preferences", tags=["Preferences"])
router.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])
