"""
Booking Lifecycle Endpoints.

Called by the calendar/back office when an appointment has taken place.
"""

import logging
from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from booking_bot.core.scheduling.completion import get_completion_trigger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


class CompletionResponse(BaseModel):
    """Result of marking a booking completed."""

    booking_id: str
    next_session_prompted: bool = Field(
        ...,
        description="Whether the customer was invited to book the next session",
    )
    message: Optional[str] = None


@router.post(
    "/{booking_id}/completed",
    response_model=CompletionResponse,
    status_code=status.HTTP_200_OK,
    summary="Mark a booking completed",
    description="Marks the session completed and prompts the next sequential session when due.",
)
async def booking_completed(booking_id: str) -> CompletionResponse:
    """Mark a booking completed."""
    message = await get_completion_trigger().on_booking_completed(booking_id)
    return CompletionResponse(
        booking_id=booking_id,
        next_session_prompted=message is not None,
        message=message,
    )
