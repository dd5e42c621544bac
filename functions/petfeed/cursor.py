"""
Opaque pagination tokens for keyset pagination over ``(created_at, id)``.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

# Real tokens are well under this; anything longer is not ours.
MAX_TOKEN_LENGTH = 512


@dataclass(frozen=True)
class Cursor:
    created_at: int
    id: str


def encode_cursor(created_at: int, post_id: str) -> str:
    payload = json.dumps(
        {"createdAt": created_at, "id": post_id}, separators=(",", ":")
    ).encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")


def _parse_timestamp(value: Any) -> Optional[int]:
    # bool is an int subclass but never a timestamp.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(round(parsed.timestamp() * 1000))
    return None


def decode_cursor(token: Optional[str]) -> Optional[Cursor]:
    """
    Decode a token produced by :func:`encode_cursor`.

    Returns ``None`` for anything that is not a well-formed token; callers
    treat that as "start from the beginning".
    """
    if not token:
        return None
    raw = str(token).strip()
    if len(raw) > MAX_TOKEN_LENGTH:
        return None
    try:
        padded = raw + "=" * (-len(raw) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    post_id = data.get("id")
    if not isinstance(post_id, str) or not post_id:
        return None
    created_at = _parse_timestamp(data.get("createdAt"))
    if created_at is None:
        return None
    return Cursor(created_at=created_at, id=post_id)
