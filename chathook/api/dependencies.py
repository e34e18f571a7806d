"""
Shared FastAPI dependencies.
"""
from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from chathook.core.config import Settings, get_settings
from chathook.core.database import get_db
from chathook.services.broadcast import ConnectionManager, get_connection_manager
from chathook.services.conversations import ConversationService
from chathook.services.ingest import IngestionService
from chathook.services.repository import MessageRepository


def get_repository(db: Annotated[Session, Depends(get_db)]) -> MessageRepository:
    return MessageRepository(db)


def get_ingestion_service(
    repository: Annotated[MessageRepository, Depends(get_repository)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> IngestionService:
    return IngestionService(repository, settings=settings, source="webhook")


def get_conversation_service(
    repository: Annotated[MessageRepository, Depends(get_repository)],
) -> ConversationService:
    return ConversationService(repository)


def get_broadcaster() -> ConnectionManager:
    return get_connection_manager()
