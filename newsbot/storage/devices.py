import logging
from threading import Lock
from typing import Any, Dict, List

from newsbot.errors import InvalidInput

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Set of Expo push tokens. Registration is idempotent; there is no removal."""

    def __init__(self) -> None:
        # dict keeps registration order for a stable fan-out order
        self._tokens: Dict[str, None] = {}
        self._lock = Lock()

    def register(self, token: Any) -> bool:
        """Add ``token``; returns ``True`` if it was not known yet."""
        if not isinstance(token, str) or not token.strip():
            raise InvalidInput("pushToken is required")
        token = token.strip()
        with self._lock:
            if token in self._tokens:
                logger.info("Push token already registered")
                return False
            self._tokens[token] = None
            total = len(self._tokens)
        logger.info("New push token registered, total devices: %d", total)
        return True

    def tokens(self) -> List[str]:
        with self._lock:
            return list(self._tokens)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
