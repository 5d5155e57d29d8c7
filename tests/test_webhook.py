from __future__ import annotations

import pytest

from acumatica_gateway.services.webhook import (
    SUPPORTED_EVENTS,
    UNKNOWN_EVENT,
    build_webhook_events,
    classify_event,
)


@pytest.mark.parametrize(
    ("query", "inserted", "expected"),
    [
        ("CustomerChanges", [{"CustomerID": "C1"}], "customer.created"),
        ("CustomerChanges", [], "customer.updated"),
        ("SalesOrderShipConfirm", [], "salesOrder.shipped"),
        ("SalesOrderEntry", [{"OrderNbr": "SO1"}], "salesOrder.created"),
        ("SalesOrderEntry", [], "salesOrder.updated"),
        ("InvoiceRelease", [], "invoice.released"),
        ("ARInvoice", [], "invoice.created"),
        ("PaymentsToday", [], "payment.received"),
        ("ShipmentConfirmed", [], "shipment.confirmed"),
        ("StockItemChanges", [], "item.updated"),
        ("InventoryItem", [], "item.updated"),
        ("VendorNew", [], "vendor.created"),
        ("PurchaseOrderOpen", [], "purchaseOrder.created"),
        ("BillEntry", [], "bill.created"),
        ("JournalTransactions", [], UNKNOWN_EVENT),
        ("", [], UNKNOWN_EVENT),
    ],
)
def test_classify_event(query, inserted, expected):
    assert classify_event(query, inserted) == expected


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        # earlier categories win when a name matches several
        ("CustomerInvoices", "customer.updated"),
        ("SalesOrderInvoice", "salesOrder.updated"),
        ("InvoicePayments", "invoice.created"),
        ("PaymentShipment", "payment.received"),
        ("VendorBills", "vendor.created"),
        ("SALESORDERSHIPMENTS", "salesOrder.shipped"),
    ],
)
def test_classification_priority(query, expected):
    assert classify_event(query, []) == expected


def test_supported_events_cover_every_category():
    assert len(SUPPORTED_EVENTS) == 13
    assert UNKNOWN_EVENT not in SUPPORTED_EVENTS


def test_inserted_rows_become_records():
    payload = {
        "Query": "SalesOrderShipConfirm",
        "Inserted": [{"OrderNbr": "SO001"}],
        "Deleted": [],
        "Id": "n-1",
        "TimeStamp": "2026-10-19T09:00:00Z",
        "CompanyId": "Company",
    }

    records = build_webhook_events(payload)

    assert records == [
        {
            "event": "salesOrder.shipped",
            "query": "SalesOrderShipConfirm",
            "companyId": "Company",
            "notificationId": "n-1",
            "timestamp": "2026-10-19T09:00:00Z",
            "action": "inserted",
            "data": {"OrderNbr": "SO001"},
        }
    ]


def test_filter_mismatch_yields_no_records():
    payload = {"Query": "SalesOrderShipConfirm", "Inserted": [{"OrderNbr": "SO001"}], "Deleted": []}

    assert build_webhook_events(payload, "customer.created") == []


def test_matching_filter_yields_records():
    payload = {"Query": "CustomerChanges", "Inserted": [{"CustomerID": "C1"}], "Deleted": []}

    records = build_webhook_events(payload, "customer.created")

    assert [record["event"] for record in records] == ["customer.created"]


def test_deleted_rows_require_opt_in():
    payload = {
        "Query": "CustomerChanges",
        "Inserted": [{"CustomerID": "C1"}],
        "Deleted": [{"CustomerID": "C0"}, {"CustomerID": "C9"}],
    }

    assert [r["action"] for r in build_webhook_events(payload)] == ["inserted"]

    records = build_webhook_events(payload, include_deleted=True)
    assert [(r["action"], r["data"]) for r in records] == [
        ("inserted", {"CustomerID": "C1"}),
        ("deleted", {"CustomerID": "C0"}),
        ("deleted", {"CustomerID": "C9"}),
    ]


def test_empty_notification_passes_payload_through():
    payload = {"Query": "VendorUpdate", "Inserted": [], "Deleted": []}

    records = build_webhook_events(payload)

    assert len(records) == 1
    assert records[0]["action"] == "notification"
    assert records[0]["event"] == "vendor.created"
    assert records[0]["raw"] == payload
    assert "data" not in records[0]


def test_deleted_only_notification_without_opt_in_falls_back():
    payload = {"Query": "CustomerChanges", "Inserted": [], "Deleted": [{"CustomerID": "C0"}]}

    records = build_webhook_events(payload)

    assert [r["action"] for r in records] == ["notification"]
    assert records[0]["event"] == "customer.updated"


def test_missing_fields_get_defaults():
    records = build_webhook_events({})

    assert records[0]["event"] == UNKNOWN_EVENT
    assert records[0]["query"] == ""
    assert records[0]["notificationId"] == ""
    assert records[0]["companyId"] == ""
    assert records[0]["timestamp"]
