"""Conversion between plain JSON data and Acumatica's ``{"value": ...}`` field wrappers.

Outgoing request bodies are built with :func:`wrap` and responses are flattened
with :func:`unwrap`. The two are not exact inverses for records that carry a
nested field literally named ``value``.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Iterable


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def wrap_value(value: Any) -> dict[str, Any]:
    return {"value": value}


def wrap(data: Any) -> Any:
    if data is None:
        return None
    if isinstance(data, Mapping):
        body: dict[str, Any] = {}
        for key, value in data.items():
            if _is_empty(value):
                continue
            if isinstance(value, (Mapping, list, tuple)):
                body[key] = wrap(value)
            else:
                body[key] = wrap_value(value)
        return body
    if isinstance(data, (list, tuple)):
        return [
            wrap(item) if isinstance(item, (Mapping, list, tuple)) else wrap_value(item)
            for item in data
        ]
    return wrap_value(data)


def unwrap(data: Any) -> Any:
    if data is None:
        return None
    if isinstance(data, Mapping):
        if "value" in data:
            return data["value"]
        return {key: unwrap(value) for key, value in data.items()}
    if isinstance(data, list):
        return [unwrap(item) for item in data]
    return data


def extract_value(field: Any) -> Any:
    if isinstance(field, Mapping) and "value" in field:
        return field["value"]
    return field


def clean_empty_values(data: Mapping[str, Any]) -> dict[str, Any]:
    """Drop ``None`` and empty-string entries, keeping ``0`` and ``False``.

    Nested mappings are cleaned recursively and dropped when nothing survives.
    """
    cleaned: dict[str, Any] = {}
    for key, value in data.items():
        if _is_empty(value):
            continue
        if isinstance(value, Mapping):
            nested = clean_empty_values(value)
            if nested:
                cleaned[key] = nested
        else:
            cleaned[key] = value
    return cleaned


def validate_required_fields(data: Mapping[str, Any], required_fields: Iterable[str]) -> None:
    for field in required_fields:
        if _is_empty(data.get(field)):
            raise ValueError(f"Missing required field: {field}")


def parse_line_items(line_items: Any) -> list[dict[str, Any]]:
    if not line_items:
        return []
    if isinstance(line_items, str):
        try:
            parsed = json.loads(line_items)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return list(line_items)
