from __future__ import annotations

import hmac
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken


@lru_cache(maxsize=4)
def _get_cipher(key: str) -> Fernet:
    return Fernet(key.encode("utf-8"))


def encrypt_secret(key: str, value: str) -> str:
    cipher = _get_cipher(key)
    return cipher.encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(key: str, value: str) -> str:
    cipher = _get_cipher(key)
    try:
        decrypted = cipher.decrypt(value.encode("utf-8"))
    except InvalidToken as exc:
        raise ValueError("Invalid encrypted secret payload") from exc
    return decrypted.decode("utf-8")


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "[redacted]"
    trimmed = value.strip()
    if len(trimmed) <= visible:
        return "*" * len(trimmed)
    return f"{trimmed[:visible]}***"


def api_key_matches(expected: str, provided: Optional[str]) -> bool:
    if provided is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
