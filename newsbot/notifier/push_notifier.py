# push_notifier.py
"""
Notifier: fan-out of new feed items to mobile devices through the Expo push gateway.

- The Notifier class wraps configuration and the token provider (get_tokens).
- One message per registered token, sent as a single JSON batch.
- Best-effort, at-most-logged: gateway failures are logged and swallowed so
  they can never fail the ingestion request that produced the item.

Example:
    from newsbot.notifier.push_notifier import Notifier

    notifier = Notifier.from_settings(settings, registry.tokens)
    notifier.notify(item)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from newsbot.storage.models import NewsItem

logger = logging.getLogger(__name__)

GetTokensFn = Callable[[], Iterable[str]]

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
DEFAULT_PUSH_TITLE = "📰 New Item!"


class Notifier:
    """Builds and sends push messages for newly stored items."""

    TIMEOUT = 10

    def __init__(
        self,
        get_tokens: GetTokensFn,
        push_url: str = EXPO_PUSH_URL,
        title: str = DEFAULT_PUSH_TITLE,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Parameters
        ----------
        get_tokens : callable
            Returns the current push tokens; read on every notification so
            devices registered in between are included.
        push_url : str
            Expo push endpoint (overridable for a self-hosted relay or tests).
        title : str
            Notification caption; the item title goes in the body.
        session : requests.Session, optional
            HTTP session to send with; a private one is created if omitted.
        """
        self._get_tokens = get_tokens
        self.push_url = push_url
        self.title = title
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Any, get_tokens: GetTokensFn) -> "Notifier":
        return cls(
            get_tokens=get_tokens,
            push_url=settings.push_gateway_url,
            title=settings.push_title,
        )

    def build_messages(self, item: NewsItem, tokens: Iterable[str]) -> List[Dict[str, Any]]:
        return [
            {
                "to": token,
                "sound": "default",
                "title": self.title,
                "body": item.title,
                "data": {
                    "newsId": item.id,
                    "title": item.title,
                    "body": item.body,
                },
                "badge": 1,
                "priority": "high",
            }
            for token in tokens
        ]

    def notify(self, item: NewsItem) -> Dict[str, Any]:
        """Send ``item`` to every registered device. Never raises."""
        tokens = list(self._get_tokens())
        if not tokens:
            logger.info("No push tokens registered, skipping notification for %s", item.id)
            return {"status": "no_devices", "count": 0}

        messages = self.build_messages(item, tokens)
        logger.info("Sending %d push notification(s) for %s", len(messages), item.id)
        try:
            resp = self.session.post(
                self.push_url,
                json=messages,
                headers={"Accept": "application/json"},
                timeout=self.TIMEOUT,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("Push notification batch failed for %s: %s", item.id, e)
            return {"status": "error", "count": 0, "error": str(e)}

        failed = self._count_ticket_errors(resp)
        if failed:
            logger.warning("Push gateway rejected %d of %d message(s) for %s", failed, len(messages), item.id)
        else:
            logger.info("Push notifications sent for %s", item.id)
        return {"status": "sent", "count": len(messages) - failed, "failed": failed}

    @staticmethod
    def _count_ticket_errors(resp: requests.Response) -> int:
        """Number of per-message error tickets in an Expo response."""
        try:
            tickets = resp.json().get("data")
        except (ValueError, AttributeError):
            return 0
        if not isinstance(tickets, list):
            return 0
        errors = [t for t in tickets if isinstance(t, dict) and t.get("status") == "error"]
        for t in errors:
            logger.debug("Push ticket error: %s", t.get("message"))
        return len(errors)
