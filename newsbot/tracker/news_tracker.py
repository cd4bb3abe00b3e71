import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional

from newsbot.errors import Internal
from newsbot.feeds.base import BaseFeed
from newsbot.normalizer.message_normalizer import normalize
from newsbot.notifier.push_notifier import Notifier
from newsbot.storage.models import NewsItem
from newsbot.storage.repository import FeedStore

logger = logging.getLogger(__name__)

# update kinds that carry a postable message (private/group chats and channels)
_MESSAGE_KEYS = ("message", "channel_post")


@dataclass
class PollResult:
    updates_processed: int
    last_update_id: int
    items: List[NewsItem] = field(default_factory=list)


class PollInterrupted(Internal):
    """A store write failed mid-batch; ``result`` holds what was stored before it."""

    def __init__(self, message: str, result: PollResult):
        super().__init__(message)
        self.result = result


def extract_message(update: Any) -> Optional[Dict]:
    if not isinstance(update, dict):
        return None
    for key in _MESSAGE_KEYS:
        message = update.get(key)
        if isinstance(message, dict):
            return message
    return None


class NewsTracker:
    """Both ingestion paths (webhook push and getUpdates polling) end here.

    Messages are normalized and written to the store; new items are handed
    to the notifier separately through :meth:`announce`, so a push failure
    can never undo or fail an ingestion.
    """

    def __init__(self, store: FeedStore, feed: BaseFeed, notifier: Notifier):
        self.store = store
        self.feed = feed
        self.notifier = notifier
        # polling cursor: process-wide, reset to 0 on restart
        self.last_update_id = 0
        self._poll_lock = Lock()  # one getUpdates round at a time

    def ingest(self, message: Any) -> Optional[NewsItem]:
        """Normalize and store one message; ``None`` when there is nothing to ingest."""
        item = normalize(message)
        if item is None:
            return None
        self.store.upsert(item)
        logger.info(
            "New item %s stored: %r (feed size %d)", item.id, item.title, self.store.count()
        )
        return item

    def ingest_update(self, update: Any) -> Optional[NewsItem]:
        return self.ingest(extract_message(update))

    def poll(self) -> PollResult:
        """Fetch updates after the cursor, ingest them in order and advance the cursor."""
        with self._poll_lock:
            updates = self.feed.fetch(offset=self.last_update_id + 1)
            items: List[NewsItem] = []
            for update in updates:
                try:
                    item = self.ingest_update(update)
                except Exception as e:
                    # cursor stays before this update so the next poll retries it
                    logger.exception(
                        "Ingest failed for update %s, cursor kept at %d",
                        update.get("update_id"), self.last_update_id,
                    )
                    raise PollInterrupted(
                        f"Ingestion failed: {e}",
                        PollResult(len(updates), self.last_update_id, items),
                    ) from e
                if item is not None:
                    items.append(item)
                update_id = update.get("update_id")
                if isinstance(update_id, int) and update_id > self.last_update_id:
                    self.last_update_id = update_id

            if updates:
                logger.info(
                    "Poll processed %d update(s), %d new item(s), cursor at %d",
                    len(updates), len(items), self.last_update_id,
                )
            return PollResult(len(updates), self.last_update_id, items)

    def announce(self, items: Iterable[NewsItem]) -> None:
        for item in items:
            self.notifier.notify(item)

    def poll_and_announce(self) -> None:
        """Scheduled job body: errors are logged, the scheduler keeps going."""
        try:
            result = self.poll()
        except PollInterrupted as e:
            self.announce(e.result.items)
            return
        except Exception:
            logger.exception("Scheduled poll failed")
            return
        self.announce(result.items)
