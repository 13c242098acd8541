# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Event API Routes

Catalog of the events workflow event triggers can listen on.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException

from cmdflow.core.dependencies import get_event_bus
from cmdflow.event_bus import KNOWN_EVENTS, EventBus, known_event

router = APIRouter(prefix="/events", tags=["events"])


@router.get("")
async def list_events(
    category: Optional[str] = None,
    event_bus: EventBus = Depends(get_event_bus)
) -> List[Dict[str, Any]]:
    """Known events with their payload shape and current subscriber count"""
    specs = [s for s in KNOWN_EVENTS if category is None or s.category.lower() == category.lower()]
    return [{**s.to_dict(), "listeners": event_bus.listener_count(s.name)} for s in specs]


@router.get("/{event_name}")
async def get_event(event_name: str, event_bus: EventBus = Depends(get_event_bus)) -> Dict[str, Any]:
    spec = known_event(event_name)
    if spec is None:
        raise HTTPException(status_code=404, detail=f"Unknown event: {event_name}")
    return {**spec.to_dict(), "listeners": event_bus.listener_count(spec.name)}
