"""
Simulated delivery progression for locally sent messages.
"""
import asyncio
from typing import List

from fastapi.concurrency import run_in_threadpool

from chathook.core.database import get_db_context
from chathook.core.logging import get_logger
from chathook.models.message import MessageStatus
from chathook.services.broadcast import ConnectionManager
from chathook.services.events import StatusChanged
from chathook.services.repository import MessageRepository
from chathook.services.status import StatusReconciler

logger = get_logger(__name__)


def mark_delivered(message_id: str) -> List[StatusChanged]:
    """Blocking store work; runs in the threadpool."""
    with get_db_context() as db:
        outcome = StatusReconciler(MessageRepository(db)).apply_status(
            message_id, MessageStatus.DELIVERED
        )
    return outcome.events


async def simulate_delivery(message_id: str, delay_seconds: float, manager: ConnectionManager) -> None:
    """After ``delay_seconds``, mark the message delivered and tell its viewers."""
    if delay_seconds:
        await asyncio.sleep(delay_seconds)

    try:
        events = await run_in_threadpool(mark_delivered, message_id)
    except Exception:
        logger.exception("Simulated delivery failed", extra={"extra_data": {"message_id": message_id}})
        return

    await manager.publish_all(events)
