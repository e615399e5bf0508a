"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for creating and updating received messages
- Response models for API responses
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from smsinbox.models import MessageStatus


# =============================================================================
# Pydantic Request Models
# =============================================================================

class ReceivedCreate(BaseModel):
    """
    Body of POST /users/{user_id}/received.

    status defaults to unread and is_command to false, as for a freshly
    received SMS.
    """
    received_at: datetime = Field(..., description="Reception time (ISO-8601)")
    text: str = Field(..., description="Message body")
    origin: str = Field(..., min_length=1, description="Sender number")
    destination: str = Field(..., min_length=1, description="Receiver number")
    status: MessageStatus = Field(default=MessageStatus.UNREAD, description="unread or read")
    is_command: bool = Field(default=False, description="Whether the SMS was detected as a command")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "received_at": "2024-01-01T10:00:00Z",
                    "text": "Hello",
                    "origin": "+33600000000",
                    "destination": "+33700000000",
                }
            ]
        }
    }


class ReceivedUpdate(BaseModel):
    """Body of PUT /users/{user_id}/received/{message_id}: every field is rewritten."""
    received_at: datetime
    text: str
    origin: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    status: MessageStatus
    is_command: bool


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ReceivedResponse(BaseModel):
    """A single received message."""
    id: int
    owner_user_id: int
    received_at: datetime
    text: str
    origin: str
    destination: str
    status: MessageStatus
    is_command: bool

    model_config = {"from_attributes": True}

    @field_serializer("received_at")
    def serialize_received_at(self, value: datetime) -> str:
        """Stored values are naive UTC; emit them with an explicit Z offset."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ReceivedListResponse(BaseModel):
    data: list[ReceivedResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0, description="Number of messages in data")


class CountResponse(BaseModel):
    count: int = Field(..., ge=0)


class CountByDayResponse(BaseModel):
    """Sparse per-day counts, keyed by YYYY-MM-DD."""
    counts: dict[str, int] = Field(default_factory=dict)


class DiscussionsResponse(BaseModel):
    data: list[str] = Field(default_factory=list, description="Distinct origin numbers")


class StatusResponse(BaseModel):
    status: str = Field(default="ok", description="Operation status")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
