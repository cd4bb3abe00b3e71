from typing import Any, Dict, Optional
from pydantic import BaseModel

DEFAULT_SOURCE = "Telegram Bot"
DEFAULT_EMOJI = "📱"


class NewsItem(BaseModel):
    id: str  # primary key, also the upsert key
    title: str
    body: str
    timestamp: Optional[str] = None  # ISO-8601, from the provider's `date`
    source: str = DEFAULT_SOURCE
    emoji: str = DEFAULT_EMOJI
    raw_message: Optional[Dict[str, Any]] = None


class NewsUpdate(BaseModel):
    """Admin edit; fields left out (or empty) keep their stored value."""

    title: Optional[str] = None
    body: Optional[str] = None
    emoji: Optional[str] = None

    def changes(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v}
