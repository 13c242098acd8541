# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Run API Routes

Read access to the command run history.
"""

import asyncio
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from cmdflow.commands.models import RunStatus
from cmdflow.commands.tracker import CommandRunTracker
from cmdflow.core.dependencies import get_tracker

router = APIRouter(prefix="/runs", tags=["runs"])


@router.get("")
async def list_runs(
    limit: int = 20,
    status: Optional[RunStatus] = None,
    q: Optional[str] = None,
    tracker: CommandRunTracker = Depends(get_tracker)
) -> List[Dict[str, Any]]:
    """Recent runs, newest first; filter by status or search text"""
    if q:
        runs = tracker.search(q)[:limit]
    elif status is not None:
        runs = tracker.get_by_status(status)[-limit:]
    else:
        runs = tracker.get_history(limit)
    return [r.model_dump(mode="json") for r in runs]


@router.get("/stats")
async def run_stats(tracker: CommandRunTracker = Depends(get_tracker)) -> Dict[str, int]:
    return tracker.get_stats()


@router.get("/chains/{chain_id}")
async def get_chain(
    chain_id: str,
    tracker: CommandRunTracker = Depends(get_tracker)
) -> List[Dict[str, Any]]:
    """All stages of a pipe chain in order"""
    runs = tracker.get_chain(chain_id)
    if not runs:
        raise HTTPException(status_code=404, detail=f"Chain not found: {chain_id}")
    return [r.model_dump(mode="json") for r in runs]


@router.get("/{run_id}")
async def get_run(
    run_id: str,
    tracker: CommandRunTracker = Depends(get_tracker)
) -> Dict[str, Any]:
    run = tracker.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run.model_dump(mode="json")


@router.get("/{run_id}/await")
async def await_run(
    run_id: str,
    timeout: float = 30.0,
    tracker: CommandRunTracker = Depends(get_tracker)
) -> Dict[str, Any]:
    """Block until the run settles (or timeout elapses)"""
    try:
        run = await tracker.await_run(run_id, timeout=timeout)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail=f"Run {run_id} did not settle within {timeout}s")
    return run.model_dump(mode="json")
