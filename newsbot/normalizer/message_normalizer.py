"""Turns a raw Telegram message into a feed item.

Pure function: no I/O, no store access, so the webhook and the polling
path can share it directly.
"""

from __future__ import annotations

import time
from typing import Any, Mapping, Optional

from newsbot.storage.models import DEFAULT_EMOJI, DEFAULT_SOURCE, NewsItem
from newsbot.utils.tz_utils import epoch_to_iso, iso_z, utc_now

DEFAULT_TITLE = "New Item"


def message_text(message: Any) -> str:
    """Stripped text of a message, or ``""`` when there is nothing usable."""
    if not isinstance(message, Mapping):
        return ""
    text = message.get("text")
    if not isinstance(text, str):
        return ""
    return text.strip()


def make_item_id(message_id: Any, now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"telegram_{message_id}_{now_ms}"


def normalize(message: Any, now_ms: Optional[int] = None) -> Optional[NewsItem]:
    """Map ``message`` to a :class:`NewsItem`, or ``None`` if it has no text."""
    text = message_text(message)
    if not text:
        return None

    lines = text.split("\n")
    title = lines[0].strip() or DEFAULT_TITLE
    body = "\n".join(lines[1:]) or text

    timestamp = epoch_to_iso(message.get("date")) or iso_z(utc_now())

    return NewsItem(
        id=make_item_id(message.get("message_id"), now_ms),
        title=title,
        body=body,
        timestamp=timestamp,
        source=DEFAULT_SOURCE,
        emoji=DEFAULT_EMOJI,
        raw_message=dict(message),
    )
