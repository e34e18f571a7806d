"""
Message endpoints for the local user: send, delete, star.
"""
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from chathook.api.dependencies import get_broadcaster, get_repository
from chathook.core.config import Settings, get_settings
from chathook.core.errors import InvalidContent, MessageNotFound
from chathook.core.logging import get_logger
from chathook.models.message import Message
from chathook.schemas.message import (
    ErrorResponse,
    MessageResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from chathook.services.broadcast import ConnectionManager
from chathook.services.delivery import simulate_delivery
from chathook.services.events import MessageDeleted
from chathook.services.ingest import IngestionService
from chathook.services.repository import MessageRepository

logger = get_logger(__name__)

router = APIRouter(prefix="/messages", tags=["Messages"])


def _get_message_or_404(repository: MessageRepository, message_id: str) -> Message:
    try:
        return repository.get_or_raise(message_id)
    except MessageNotFound:
        raise HTTPException(status_code=404, detail="Message not found")


@router.post(
    "",
    response_model=SendMessageResponse,
    responses={422: {"model": ErrorResponse, "description": "Validation error"}},
    summary="Send a message",
    description="Store a message from the local user and simulate its delivery."
)
async def send_message(
    payload: SendMessageRequest,
    background_tasks: BackgroundTasks,
    repository: Annotated[MessageRepository, Depends(get_repository)],
    broadcaster: Annotated[ConnectionManager, Depends(get_broadcaster)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SendMessageResponse:
    service = IngestionService(repository, settings=settings, source="local")
    try:
        message, events = service.send_local_message(
            payload.conversation_key,
            payload.content,
            content_type=payload.content_type.value,
            display_name=payload.display_name,
            contact_number=payload.contact_number,
        )
    except InvalidContent as e:
        raise HTTPException(status_code=422, detail=e.detail)

    background_tasks.add_task(broadcaster.publish_all, events)
    if settings.simulate_delivery:
        background_tasks.add_task(
            simulate_delivery, message.id, settings.delivery_delay_seconds, broadcaster
        )

    return SendMessageResponse(message=MessageResponse.model_validate(message))


@router.delete(
    "/{message_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse, "description": "Message not found"}},
    summary="Delete a message",
    description="Soft delete: the message disappears from conversations but stays stored."
)
async def delete_message(
    message_id: str,
    background_tasks: BackgroundTasks,
    repository: Annotated[MessageRepository, Depends(get_repository)],
    broadcaster: Annotated[ConnectionManager, Depends(get_broadcaster)],
) -> MessageResponse:
    message = repository.set_deleted(_get_message_or_404(repository, message_id))
    logger.info("Message deleted", extra={"extra_data": {"message_id": message_id}})
    background_tasks.add_task(
        broadcaster.publish_all,
        [MessageDeleted(conversation_key=message.conversation_key, message_id=message.id)],
    )
    return MessageResponse.model_validate(message)


@router.post(
    "/{message_id}/star",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse, "description": "Message not found"}},
    summary="Toggle star",
)
async def toggle_star(
    message_id: str,
    repository: Annotated[MessageRepository, Depends(get_repository)],
) -> MessageResponse:
    message = repository.toggle_starred(_get_message_or_404(repository, message_id))
    return MessageResponse.model_validate(message)
