import logging
import requests
from typing import Any, Dict, List, Optional
from .base import BaseFeed
from newsbot.errors import InvalidInput, UpstreamUnavailable

logger = logging.getLogger(__name__)

# ---------- shared HTTP session (connection pool, no retries: a failed poll waits for the next one) ----------
_SESSION = requests.Session()
_SESSION.headers.update({"User-Agent": "newsbot/1.0"})


class TelegramFeed(BaseFeed):
    """Bot API client for the two calls the service needs: getUpdates and getWebhookInfo."""

    DEFAULT_API_BASE = "https://api.telegram.org"
    TIMEOUT = 15

    def __init__(self, bot_token: Optional[str], api_base: str = DEFAULT_API_BASE,
                 session: Optional[requests.Session] = None):
        self.bot_token: Optional[str] = bot_token
        self.api_base: str = api_base.rstrip("/")
        self.session = session or _SESSION

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self.bot_token:
            raise InvalidInput("TELEGRAM_BOT_TOKEN not configured")

        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        try:
            response = self.session.get(url, params=params, timeout=self.TIMEOUT)
            data = response.json()
        except requests.RequestException as e:
            # never log `url`: it carries the bot token
            logger.error("Telegram %s failed: %s", method, type(e).__name__)
            raise UpstreamUnavailable(f"Telegram {method} failed: {type(e).__name__}") from e
        except ValueError as e:
            logger.error("Telegram %s returned non-JSON (HTTP %s)", method, response.status_code)
            raise UpstreamUnavailable(f"Telegram {method} returned an invalid response") from e

        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            logger.error("Telegram %s not ok (HTTP %s): %s", method, response.status_code, description)
            raise UpstreamUnavailable(f"Telegram {method} error: {description or 'unknown error'}")
        return data.get("result")

    def fetch(self, offset: int = 0) -> List[Dict]:
        result = self._call("getUpdates", {"offset": offset})
        if not isinstance(result, list):
            raise UpstreamUnavailable("Telegram getUpdates returned an unexpected result")
        return [u for u in result if isinstance(u, dict)]

    def webhook_info(self) -> Dict:
        result = self._call("getWebhookInfo")
        return result if isinstance(result, dict) else {}
