from .telegram import TelegramFeed

from .base import BaseFeed

__all__ = ["TelegramFeed", "BaseFeed"]
