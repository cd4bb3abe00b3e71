# newsbot/tests/conftest.py
from typing import Dict, List, Optional

import pytest
import requests

from newsbot.config import Settings
from newsbot.feeds.base import BaseFeed

ADMIN_PASSWORD = "correct-horse"


class FakeFeed(BaseFeed):
    """Stands in for TelegramFeed: serves queued getUpdates batches."""

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.batches: List[List[Dict]] = []
        self.offsets: List[int] = []
        self.error: Optional[Exception] = None

    def fetch(self, offset: int = 0) -> List[Dict]:
        self.offsets.append(offset)
        if self.error is not None:
            raise self.error
        return self.batches.pop(0) if self.batches else []

    def webhook_info(self) -> Dict:
        return {"url": "", "pending_update_count": 0}


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {"data": []}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakePushSession:
    """Records push batches instead of calling the gateway."""

    def __init__(self):
        self.calls: List[Dict] = []
        self.error: Optional[Exception] = None
        self.response = FakeResponse()

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        telegram_bot_token="123456:TEST",
        admin_password=ADMIN_PASSWORD,
        admin_secret="test-secret",
        db_path=tmp_path / "news.db",
        poll_interval_seconds=0,
    )


@pytest.fixture()
def fake_feed():
    return FakeFeed()


@pytest.fixture()
def push_session():
    return FakePushSession()


@pytest.fixture()
def app(settings, fake_feed, push_session):
    from newsbot.api.main import create_app

    app = create_app(settings, feed=fake_feed)
    # outbound pushes go to the recorder
    app.state.notifier.session = push_session
    return app


@pytest.fixture()
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def admin_token(client):
    r = client.post("/admin/login", json={"password": ADMIN_PASSWORD})
    assert r.status_code == 200
    return r.json()["token"]
