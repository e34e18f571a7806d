"""
Conversation endpoints: inbox list, message history, read receipts.
"""
from typing import Annotated, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from chathook.api.dependencies import get_broadcaster, get_conversation_service
from chathook.core.config import Settings, get_settings
from chathook.core.logging import get_logger
from chathook.schemas.message import (
    ConversationInfoResponse,
    ConversationSummaryResponse,
    ErrorResponse,
    MarkReadResponse,
    MessageResponse,
    MessagesListResponse,
)
from chathook.services.broadcast import ConnectionManager
from chathook.services.conversations import ConversationService

logger = get_logger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get(
    "",
    response_model=List[ConversationSummaryResponse],
    summary="List conversations",
    description="One summary per conversation, most recently active first."
)
async def list_conversations(
    service: Annotated[ConversationService, Depends(get_conversation_service)],
) -> List[ConversationSummaryResponse]:
    summaries = service.list_conversations()
    logger.debug("Listed conversations", extra={"extra_data": {"count": len(summaries)}})
    return [ConversationSummaryResponse.model_validate(summary) for summary in summaries]


@router.get(
    "/{conversation_key}/messages",
    response_model=MessagesListResponse,
    summary="List conversation messages",
    description="A page of messages, oldest first. Does not mark anything read."
)
async def list_messages(
    conversation_key: str,
    service: Annotated[ConversationService, Depends(get_conversation_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    page: Annotated[int, Query(ge=1, description="Page number, counted from the newest messages")] = 1,
    limit: Annotated[Optional[int], Query(ge=1, description="Messages per page")] = None,
    before: Annotated[Optional[str], Query(description="Only messages older than this message id")] = None,
    include_deleted: Annotated[bool, Query(description="Include soft-deleted messages")] = False,
) -> MessagesListResponse:
    """
    - **page**: page number (default 1 = newest messages)
    - **limit**: page size (defaults to the configured page size, capped at the max)
    - **before**: exclusive anchor message id
    """
    page_size = min(limit or settings.default_page_size, settings.max_page_size)
    messages = service.list_messages(
        conversation_key,
        page=page,
        page_size=page_size,
        before_id=before,
        include_deleted=include_deleted,
    )
    return MessagesListResponse(
        data=[MessageResponse.model_validate(message) for message in messages],
        conversation_key=conversation_key,
        page=page,
        limit=page_size,
    )


@router.get(
    "/{conversation_key}/info",
    response_model=ConversationInfoResponse,
    responses={404: {"model": ErrorResponse, "description": "Conversation not found"}},
    summary="Conversation info",
)
async def conversation_info(
    conversation_key: str,
    service: Annotated[ConversationService, Depends(get_conversation_service)],
) -> ConversationInfoResponse:
    info = service.get_conversation_info(conversation_key)
    if info is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationInfoResponse.model_validate(info)


@router.post(
    "/{conversation_key}/read",
    response_model=MarkReadResponse,
    summary="Mark conversation read",
    description="Moves every unread incoming message of the conversation to read."
)
async def mark_read(
    conversation_key: str,
    background_tasks: BackgroundTasks,
    service: Annotated[ConversationService, Depends(get_conversation_service)],
    broadcaster: Annotated[ConnectionManager, Depends(get_broadcaster)],
) -> MarkReadResponse:
    outcome = service.mark_conversation_read(conversation_key)
    if outcome.events:
        background_tasks.add_task(broadcaster.publish_all, list(outcome.events))
    return MarkReadResponse(updated=outcome.updated)
