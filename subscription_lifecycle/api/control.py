"""Control API for local testing of time-dependent behaviour.

Implements:
- GET /control/time - Current virtual time
- POST /control/time/advance - Fast-forward time, then sweep expiries
- POST /control/time/reset - Reset virtual time to the real clock
"""

from fastapi import APIRouter, Depends, HTTPException

from subscription_lifecycle.api.dependencies import clock_dependency, engine_dependency
from subscription_lifecycle.logging_config import get_logger
from subscription_lifecycle.models.api_request import (
    AdvanceTimeRequest,
    AdvanceTimeResponse,
    CurrentTimeResponse,
)
from subscription_lifecycle.services.lifecycle_engine import LifecycleEngine
from subscription_lifecycle.services.time_controller import TimeController

logger = get_logger(__name__)
router = APIRouter(tags=["Control API"], prefix="/control")


@router.get("/time", response_model=CurrentTimeResponse, summary="Get virtual time")
async def get_time(clock: TimeController = Depends(clock_dependency)) -> CurrentTimeResponse:
    return CurrentTimeResponse(
        current_time=clock.get_current_time(),
        offset_seconds=clock.offset.total_seconds(),
    )


@router.post("/time/advance", response_model=AdvanceTimeResponse, summary="Advance virtual time")
async def advance_time(
    request: AdvanceTimeRequest,
    clock: TimeController = Depends(clock_dependency),
    engine: LifecycleEngine = Depends(engine_dependency),
) -> AdvanceTimeResponse:
    """Fast-forward virtual time and expire whatever lapsed.

    Raises:
        400: No time unit given
    """
    days = request.days or 0
    hours = request.hours or 0
    minutes = request.minutes or 0

    if days == 0 and hours == 0 and minutes == 0:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid request",
                "message": "At least one of days, hours or minutes must be positive",
            },
        )

    result = clock.advance_time(days=days, hours=hours, minutes=minutes)
    expired_count = engine.sweep_expired(result["current_time"])

    logger.info(
        "advance_time_success",
        current_time=result["current_time"].isoformat(),
        expired_count=expired_count,
    )
    return AdvanceTimeResponse(
        previous_time=result["previous_time"],
        current_time=result["current_time"],
        expired_count=expired_count,
        message=f"Time advanced by {days}d {hours}h {minutes}m",
    )


@router.post("/time/reset", response_model=CurrentTimeResponse, summary="Reset virtual time")
async def reset_time(clock: TimeController = Depends(clock_dependency)) -> CurrentTimeResponse:
    result = clock.reset_time()
    return CurrentTimeResponse(current_time=result["current_time"], offset_seconds=0.0)
