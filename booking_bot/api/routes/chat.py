"""
Chat API Endpoint.

Feeds inbound customer messages to the booking engine and exposes the
per-conversation context for inspection and reset.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from booking_bot.core.booking.context import BookingIntent
from booking_bot.core.booking.router import get_booking_router
from booking_bot.core.booking.store import get_context_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatRequest(BaseModel):
    """Inbound chat message."""

    conversation_id: str = Field(
        ...,
        min_length=1,
        description="Conversation identifier; one booking context per conversation",
        examples=["conv-550e8400"],
    )
    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Customer's message",
        examples=["I need to cancel my appointment"],
    )
    contact_id: str = Field(
        ...,
        description="Contact the conversation belongs to",
        examples=["6f1c2a9e-5d7b-4c1e-9a7e-0b8e2f4d3c21"],
    )
    phone_number: str = Field(
        default="",
        description="Contact phone number in E.164 format",
        examples=["+41791234567"],
    )
    detected_intent: Optional[BookingIntent] = Field(
        default=None,
        description="Upstream intent classification; ignored while a context exists",
    )


class ChatResponse(BaseModel):
    """Reply to a chat message."""

    reply: str = Field(..., description="Message to send back to the customer")
    conversation_id: str
    intent: Optional[str] = Field(
        default=None,
        description="Intent owning the conversation",
    )
    step: Optional[str] = Field(
        default=None,
        description="Flow step reached this turn",
    )


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


@router.post(
    "",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a chat message",
    description="Process one customer message through the booking engine.",
    responses={
        200: {"description": "Successful response"},
        422: {"model": ErrorResponse, "description": "Invalid request"},
    },
)
async def chat(request: ChatRequest) -> ChatResponse:
    """
    Process a chat message.

    The booking engine never raises for a turn: failures come back as an
    apology and the conversation context is cleared.
    """
    result = await get_booking_router().process_turn(
        conversation_id=request.conversation_id,
        message=request.message,
        detected_intent=request.detected_intent,
        contact_id=request.contact_id,
        phone_number=request.phone_number,
    )

    return ChatResponse(
        reply=result.reply,
        conversation_id=result.conversation_id,
        intent=result.intent.value if result.intent else None,
        step=result.step,
    )


@router.get(
    "/context/{conversation_id}",
    response_model=dict,
    summary="Get conversation context",
    description="Retrieve the active booking context of a conversation.",
    responses={
        200: {"description": "Context data"},
        404: {"model": ErrorResponse, "description": "No active context"},
    },
)
async def get_context(conversation_id: str) -> dict:
    """Get the booking context of a conversation."""
    context = await get_context_store().get(conversation_id)

    if context is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active booking context",
        )

    return context.to_dict()


@router.delete(
    "/context/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset a conversation",
    description="Drop the booking context so the next message starts fresh.",
)
async def reset_context(conversation_id: str) -> None:
    """Clear the booking context of a conversation."""
    deleted = await get_context_store().delete(conversation_id)
    if deleted:
        logger.info(f"Booking context reset: {conversation_id}")
