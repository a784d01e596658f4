"""
Fallback retrieval - hand off an alert that no live channel accepted.
"""

from fastapi import APIRouter, HTTPException, Request, status

router = APIRouter(prefix="/fallback", tags=["Fallback"])


@router.get("/{alert_id}")
async def retrieve_fallback(alert_id: str, request: Request):
    """
    Return the pending alert and remove it from the cache (at-most-once).
    404 when nothing is pending for this id.
    """
    store = getattr(request.app.state, "fallback", None)
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Fallback store not initialized")

    payload = await store.get(alert_id)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No pending alert {alert_id}")
    return {"alertId": alert_id, "payload": payload}
