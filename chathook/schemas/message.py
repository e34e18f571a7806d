"""
Pydantic schemas for request/response validation.
"""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from chathook.models.message import ContentType


class FailureResponse(BaseModel):
    kind: str
    detail: str


class IngestResponse(BaseModel):
    """Response schema for POST /webhook."""
    success: bool = True
    inserted: int = 0
    updated: int = 0
    duplicates: int = 0
    errors: int = 0
    matched: int = 0
    status_updates: int = 0
    contacts: int = 0
    failures: List[FailureResponse] = Field(default_factory=list)


class MessageResponse(BaseModel):
    """Schema for a single message in responses."""
    id: str
    conversation_key: str
    display_name: Optional[str] = None
    contact_number: Optional[str] = None
    primary_id: Optional[str] = None
    secondary_id: Optional[str] = None
    direction: str
    counterpart: str
    content: str
    content_type: str
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None
    timestamp: datetime
    status: str
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    is_deleted: bool = False
    is_starred: bool = False
    is_forwarded: bool = False
    reply_preview: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True,
    }


class MessagesListResponse(BaseModel):
    """Response schema for GET /conversations/{key}/messages."""
    data: List[MessageResponse]
    conversation_key: str
    page: int
    limit: int


class SendMessageRequest(BaseModel):
    """Request schema for POST /messages."""

    conversation_key: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, max_length=4096)
    content_type: ContentType = Field(default=ContentType.TEXT)
    display_name: Optional[str] = Field(default=None, max_length=255)
    contact_number: Optional[str] = Field(default=None, max_length=64)

    model_config = {
        "json_schema_extra": {
            "example": {
                "conversation_key": "919876543210",
                "content": "Hello",
                "content_type": "text",
            }
        }
    }

    @field_validator("conversation_key", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        """Reject whitespace-only values."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class SendMessageResponse(BaseModel):
    success: bool = True
    message: MessageResponse


class ConversationSummaryResponse(BaseModel):
    """Schema for one conversation in GET /conversations."""
    conversation_key: str
    display_name: Optional[str] = None
    contact_number: Optional[str] = None
    last_message_content: str
    last_message_content_type: str
    last_timestamp: datetime
    last_status: str
    last_direction: str
    unread_count: int
    total_messages: int

    model_config = {
        "from_attributes": True,
    }


class ConversationInfoResponse(BaseModel):
    conversation_key: str
    display_name: Optional[str] = None
    contact_number: Optional[str] = None
    message_count: int

    model_config = {
        "from_attributes": True,
    }


class MarkReadResponse(BaseModel):
    success: bool = True
    updated: int


class HealthResponse(BaseModel):
    """Response schema for health endpoints."""
    status: str
    checks: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response schema."""
    detail: str
