from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence, get_args


WebhookEvent = Literal[
    "customer.created",
    "customer.updated",
    "salesOrder.created",
    "salesOrder.updated",
    "salesOrder.shipped",
    "invoice.created",
    "invoice.released",
    "payment.received",
    "shipment.confirmed",
    "item.updated",
    "vendor.created",
    "purchaseOrder.created",
    "bill.created",
]
EventFilter = Literal[
    "all",
    "customer.created",
    "customer.updated",
    "salesOrder.created",
    "salesOrder.updated",
    "salesOrder.shipped",
    "invoice.created",
    "invoice.released",
    "payment.received",
    "shipment.confirmed",
    "item.updated",
    "vendor.created",
    "purchaseOrder.created",
    "bill.created",
]

UNKNOWN_EVENT = "unknown"
SUPPORTED_EVENTS: tuple[str, ...] = get_args(WebhookEvent)

logger = logging.getLogger("acumatica_gateway.services.webhook")


def classify_event(query: str, inserted: Sequence[Any]) -> str:
    """Infer the business event from a push notification's query name.

    Categories are checked in a fixed order and the first substring match wins.
    """
    name = (query or "").lower()
    has_inserted = len(inserted) > 0

    if "customer" in name:
        return "customer.created" if has_inserted else "customer.updated"
    if "salesorder" in name:
        if "ship" in name:
            return "salesOrder.shipped"
        return "salesOrder.created" if has_inserted else "salesOrder.updated"
    if "invoice" in name:
        return "invoice.released" if "release" in name else "invoice.created"
    if "payment" in name:
        return "payment.received"
    if "shipment" in name:
        return "shipment.confirmed"
    if "item" in name or "stock" in name:
        return "item.updated"
    if "vendor" in name:
        return "vendor.created"
    if "purchaseorder" in name:
        return "purchaseOrder.created"
    if "bill" in name:
        return "bill.created"
    return UNKNOWN_EVENT


def build_webhook_events(
    payload: Mapping[str, Any],
    event_filter: str = "all",
    *,
    include_deleted: bool = False,
) -> list[dict[str, Any]]:
    query = payload.get("Query") or ""
    inserted = payload.get("Inserted") or []
    deleted = payload.get("Deleted") or []
    notification_id = payload.get("Id") or ""
    timestamp = payload.get("TimeStamp") or datetime.now(timezone.utc).isoformat()
    company_id = payload.get("CompanyId") or ""

    detected = classify_event(query, inserted)
    if event_filter != "all" and event_filter != detected:
        logger.info(
            "webhook_event_filtered",
            extra={"detected_event": detected, "event_filter": event_filter, "query": query},
        )
        return []

    envelope = {
        "event": detected,
        "query": query,
        "companyId": company_id,
        "notificationId": notification_id,
        "timestamp": timestamp,
    }
    records: list[dict[str, Any]] = [
        {**envelope, "action": "inserted", "data": record} for record in inserted
    ]
    if include_deleted:
        records.extend({**envelope, "action": "deleted", "data": record} for record in deleted)

    if not records:
        records.append({**envelope, "action": "notification", "raw": dict(payload)})

    logger.info(
        "webhook_events_built",
        extra={"detected_event": detected, "record_count": len(records), "query": query},
    )
    return records
