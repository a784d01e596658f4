"""
Safety score routes.
"""

import asyncio

from fastapi import APIRouter, HTTPException, Query, Request, status

from safegrid.models.safety import SafetyScoreResult

router = APIRouter(prefix="/safety", tags=["Safety"])


@router.get("/score", response_model=SafetyScoreResult)
async def safety_score(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
):
    """
    Score a location 0-100 (higher is safer).

    Never fails on scoring errors: an unscoreable location comes back as a
    neutral 80 with error=true.
    """
    scorer = getattr(request.app.state, "scorer", None)
    if scorer is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Safety scorer not initialized")

    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, scorer.score_at, lat, lng)
