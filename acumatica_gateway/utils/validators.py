from __future__ import annotations

import re
import uuid
from typing import Optional

from fastapi import HTTPException, status


_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


def parse_uuid(value: str, field_name: str = "identifier") -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {field_name} format",
        ) from exc


def validate_entity_name(value: str) -> str:
    if not _IDENTIFIER.match(value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid entity name",
        )
    return value


def validate_action_name(value: str) -> str:
    if not _IDENTIFIER.match(value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid action name",
        )
    return value


def normalize_limit(value: Optional[int], *, maximum: int = 100_000) -> Optional[int]:
    if value is None:
        return None
    if value < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="limit must be >= 1",
        )
    if value > maximum:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"limit cannot exceed {maximum}",
        )
    return value
