from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, status
from pydantic import ValidationError

from acumatica_gateway.schemas.acumatica import PushNotification, WebhookRecord
from acumatica_gateway.services.webhook import EventFilter, build_webhook_events


router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger("acumatica_gateway.api.webhooks")


@router.post(
    "/acumatica",
    response_model=list[WebhookRecord],
    response_model_exclude_unset=True,
    summary="Receive Acumatica push notification",
    description=(
        "Point an Acumatica Push Notification (SM302000) at this URL. The payload is classified into a "
        "business event from its query name; an empty list is returned when `event` excludes it."
    ),
)
async def receive_push_notification(
    payload: dict[str, Any] = Body(...),
    event: EventFilter = Query(default="all"),
    include_deleted: bool = Query(default=False),
) -> list[dict[str, Any]]:
    try:
        notification = PushNotification.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc

    logger.info(
        "webhook_received",
        extra={
            "query": notification.query,
            "notification_id": notification.id,
            "inserted_count": len(notification.inserted or []),
            "deleted_count": len(notification.deleted or []),
        },
    )
    return build_webhook_events(payload, event, include_deleted=include_deleted)
