"""
Risk grid routes - read the persisted risk cells and trigger a full pass.
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request, status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/risk", tags=["Risk Grid"])


def _aggregator(request: Request):
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Risk aggregator not initialized")
    return aggregator


@router.get("/cells")
async def risk_cells(request: Request):
    """All persisted risk cells, in the client snapshot shape."""
    aggregator = _aggregator(request)
    try:
        loop = asyncio.get_event_loop()
        cells = await loop.run_in_executor(None, aggregator.list_cells)
    except Exception as e:
        logger.error(f"Failed to list risk cells: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to list risk cells: {str(e)}")

    return {"count": len(cells), "cells": [cell.snapshot() for cell in cells]}


@router.post("/recompute")
async def recompute(request: Request):
    """Run the periodic risk update now. Per-cell failures are reported, not raised."""
    aggregator = _aggregator(request)
    loop = asyncio.get_event_loop()
    summary = await loop.run_in_executor(None, aggregator.recompute_active_cells)
    return summary._asdict()
