from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional


def _escape(value: str) -> str:
    return value.replace("'", "''")


def build_odata_filter(filters: Mapping[str, Any]) -> str:
    parts: list[str] = []
    for key, value in filters.items():
        if value is None or value == "":
            continue
        # bool before int: True is an int in Python
        if isinstance(value, bool):
            parts.append(f"{key} eq {'true' if value else 'false'}")
        elif isinstance(value, (int, float)):
            parts.append(f"{key} eq {value}")
        elif isinstance(value, str):
            parts.append(f"{key} eq '{_escape(value)}'")
    return " and ".join(parts)


def build_select_fields(fields: Iterable[str]) -> str:
    return ",".join(fields)


def build_expand_fields(expands: Iterable[str]) -> str:
    return ",".join(expands)


def format_acumatica_date(value: date | datetime | str) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()


def parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def build_query(
    *,
    filter: Optional[str] = None,
    expand: Optional[str] = None,
    select: Optional[str] = None,
    orderby: Optional[str] = None,
) -> dict[str, Any]:
    query: dict[str, Any] = {}
    if filter:
        query["$filter"] = filter
    if expand:
        query["$expand"] = expand
    if select:
        query["$select"] = select
    if orderby:
        query["$orderby"] = orderby
    return query
