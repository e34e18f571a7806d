"""
Webhook endpoint for ingesting chat payloads.
"""
import json
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from chathook.api.dependencies import get_broadcaster, get_ingestion_service
from chathook.api.metrics import record_ingest
from chathook.core.errors import UnrecognizedPayload
from chathook.core.logging import get_logger
from chathook.schemas.message import ErrorResponse, IngestResponse
from chathook.services.broadcast import ConnectionManager
from chathook.services.ingest import IngestionService

logger = get_logger(__name__)

router = APIRouter(tags=["Webhook"])


@router.post(
    "/webhook",
    response_model=IngestResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed or unrecognized payload"},
        404: {"model": ErrorResponse, "description": "Status update matched no messages"},
    },
    summary="Ingest chat payload",
    description="Accept message, status or contact payloads in any of the supported shapes."
)
async def ingest_payload(
    request: Request,
    background_tasks: BackgroundTasks,
    service: Annotated[IngestionService, Depends(get_ingestion_service)],
    broadcaster: Annotated[ConnectionManager, Depends(get_broadcaster)],
) -> IngestResponse:
    """
    Ingest one webhook payload.

    - New messages are normalized, deduplicated and stored
    - Status updates move matching messages forward (never backwards)
    - Contact payloads are acknowledged
    - Batches report per-entry counts; a bad entry does not fail its siblings
    """
    body = await request.body()
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON in webhook request: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON")

    try:
        result = service.ingest(payload)
    except UnrecognizedPayload as e:
        logger.warning("Unrecognized webhook payload", extra={"extra_data": {"detail": e.detail}})
        record_ingest(errors=1)
        raise HTTPException(status_code=400, detail="Unrecognized payload format")

    record_ingest(
        inserted=result.inserted,
        updated=result.updated,
        duplicates=result.duplicates,
        errors=result.errors,
    )

    if result.events:
        background_tasks.add_task(broadcaster.publish_all, list(result.events))

    if result.unmatched_status_only:
        raise HTTPException(status_code=404, detail="No messages matched the status update")

    return IngestResponse(**result.to_dict())
