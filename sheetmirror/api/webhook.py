"""Webhook endpoint for edits pushed by a Google Apps Script trigger."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from sheetmirror.api.deps import get_engine
from sheetmirror.services.sync_service import PushOutcome, SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


class WebhookPayload(BaseModel):
    """Edit observed on a source tab.

    ``sheetId``, ``timestamp`` and ``changeType`` are logged but play no part
    in deciding what is written.
    """

    model_config = ConfigDict(populate_by_name=True)

    sheet_name: str = Field(alias="sheetName", min_length=1)
    range: str = Field(min_length=1)
    values: list[list[Any]]
    sheet_id: str | None = Field(default=None, alias="sheetId")
    timestamp: str | None = None
    change_type: str | None = Field(default=None, alias="changeType")


class WebhookResponse(BaseModel):
    success: bool
    outcome: PushOutcome
    message: str
    timestamp: datetime


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    body: WebhookPayload,
    engine: Annotated[SyncEngine, Depends(get_engine)],
) -> WebhookResponse:
    """Apply a single range edit to the mapped destination tab."""
    logger.info(
        "Webhook received: sheet=%s tab=%s range=%s change=%s at %s",
        body.sheet_id,
        body.sheet_name,
        body.range,
        body.change_type,
        body.timestamp,
    )
    outcome = await engine.apply_push(body.sheet_name, body.range, body.values)
    return WebhookResponse(
        success=True,
        outcome=outcome,
        message="Webhook processed successfully",
        timestamp=datetime.now(UTC),
    )
