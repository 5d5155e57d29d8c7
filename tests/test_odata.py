"""Tests for OData query helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone

from acumatica_gateway.services.odata import (
    build_expand_fields,
    build_odata_filter,
    build_query,
    build_select_fields,
    format_acumatica_date,
    parse_date,
)


class TestBuildODataFilter:
    def test_quotes_strings_and_leaves_numbers_bare(self):
        assert build_odata_filter({"Status": "Active", "Balance": 0}) == "Status eq 'Active' and Balance eq 0"

    def test_booleans_are_lowercase_literals(self):
        assert build_odata_filter({"Hold": False, "Approved": True}) == "Hold eq false and Approved eq true"

    def test_skips_empty_values(self):
        assert build_odata_filter({"Status": "", "CustomerID": None, "OrderNbr": "SO001"}) == "OrderNbr eq 'SO001'"

    def test_escapes_single_quotes(self):
        assert build_odata_filter({"CustomerName": "O'Brien"}) == "CustomerName eq 'O''Brien'"

    def test_empty_filters(self):
        assert build_odata_filter({}) == ""


def test_select_and_expand_fields():
    assert build_select_fields(["OrderNbr", "Status"]) == "OrderNbr,Status"
    assert build_expand_fields(["Details", "ShipToContact"]) == "Details,ShipToContact"


def test_build_query_skips_missing_parts():
    assert build_query(filter="Status eq 'Open'", expand="Details") == {
        "$filter": "Status eq 'Open'",
        "$expand": "Details",
    }
    assert build_query() == {}


def test_format_acumatica_date():
    assert format_acumatica_date(date(2026, 3, 1)) == "2026-03-01"
    assert format_acumatica_date(datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc)) == "2026-03-01"
    assert format_acumatica_date("2026-03-01T10:00:00Z") == "2026-03-01"


def test_parse_date():
    assert parse_date("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_date("yesterday") is None
    assert parse_date("") is None
