import logging
import sqlite3

import pytest
import requests

from newsbot.errors import UpstreamUnavailable
from newsbot.notifier.push_notifier import Notifier
from newsbot.storage.models import NewsItem
from newsbot.storage.repository import FeedStore
from newsbot.tracker.news_tracker import NewsTracker, PollInterrupted, extract_message

from conftest import FakeFeed, FakePushSession, FakeResponse


def _news(i=1):
    return NewsItem(id=f"telegram_{i}_1", title=f"Title {i}", body=f"Body {i}")


def _update(update_id, text=None, key="message", message_id=None):
    msg = {"message_id": message_id or update_id, "date": 1700000000}
    if text is not None:
        msg["text"] = text
    return {"update_id": update_id, key: msg}


# ---------- notifier ----------

def test_notify_sends_one_batch_with_a_message_per_token():
    session = FakePushSession()
    notifier = Notifier(lambda: ["tok-A", "tok-B"], push_url="http://push.test", session=session)

    result = notifier.notify(_news())

    assert result == {"status": "sent", "count": 2, "failed": 0}
    assert len(session.calls) == 1
    batch = session.calls[0]["json"]
    assert [m["to"] for m in batch] == ["tok-A", "tok-B"]
    assert batch[0]["title"] == "📰 New Item!"
    assert batch[0]["body"] == "Title 1"
    assert batch[0]["data"] == {"newsId": "telegram_1_1", "title": "Title 1", "body": "Body 1"}


def test_notify_without_devices_is_a_logged_noop(caplog):
    session = FakePushSession()
    notifier = Notifier(lambda: [], session=session)
    with caplog.at_level(logging.INFO):
        assert notifier.notify(_news())["status"] == "no_devices"
    assert session.calls == []
    assert "No push tokens registered" in caplog.text


@pytest.mark.parametrize(
    "error, response",
    [
        (requests.ConnectionError("down"), None),
        (None, FakeResponse(status_code=503)),
    ],
)
def test_gateway_failures_are_swallowed(error, response, caplog):
    session = FakePushSession()
    session.error = error
    if response is not None:
        session.response = response
    notifier = Notifier(lambda: ["tok-A"], session=session)

    with caplog.at_level(logging.ERROR):
        result = notifier.notify(_news())

    assert result["status"] == "error"
    assert "Push notification batch failed" in caplog.text


def test_ticket_errors_are_counted():
    session = FakePushSession()
    session.response = FakeResponse(payload={"data": [
        {"status": "ok", "id": "x"},
        {"status": "error", "message": "DeviceNotRegistered"},
    ]})
    notifier = Notifier(lambda: ["tok-A", "tok-B"], session=session)
    assert notifier.notify(_news()) == {"status": "sent", "count": 1, "failed": 1}


# ---------- tracker ----------

@pytest.fixture()
def tracker(tmp_path):
    store = FeedStore(tmp_path / "feed.db")
    feed = FakeFeed()
    session = FakePushSession()
    t = NewsTracker(store, feed, Notifier(lambda: ["tok-A"], session=session))
    yield t
    store.close()


def test_extract_message_accepts_channel_posts():
    assert extract_message(_update(1, "a", key="channel_post"))["text"] == "a"
    assert extract_message({"update_id": 1, "edited_message": {"text": "a"}}) is None
    assert extract_message(None) is None


def test_ingest_skips_messages_without_text(tracker):
    assert tracker.ingest({"message_id": 1, "date": 1}) is None
    assert tracker.store.count() == 0


def test_poll_processes_in_order_and_advances_cursor(tracker):
    tracker.feed.batches.append([
        _update(10, "First\nA"),
        _update(11),  # sticker / photo: no text
        _update(12, "Second\nB"),
    ])

    result = tracker.poll()

    assert tracker.feed.offsets == [1]
    assert result.updates_processed == 3
    assert result.last_update_id == 12
    assert [i.title for i in result.items] == ["First", "Second"]
    assert [n.title for n in tracker.store.list()] == ["Second", "First"]

    tracker.poll()
    assert tracker.feed.offsets == [1, 13]


def test_empty_poll_keeps_cursor(tracker):
    tracker.last_update_id = 7
    result = tracker.poll()
    assert result.updates_processed == 0
    assert result.last_update_id == 7
    assert result.items == []


def test_poll_failure_leaves_store_untouched(tracker):
    tracker.store.upsert(_news())
    tracker.feed.error = UpstreamUnavailable("boom")
    with pytest.raises(UpstreamUnavailable):
        tracker.poll()
    assert [n.id for n in tracker.store.list()] == ["telegram_1_1"]
    assert tracker.last_update_id == 0


def test_scheduled_poll_swallows_errors(tracker, caplog):
    tracker.feed.error = UpstreamUnavailable("boom")
    with caplog.at_level(logging.ERROR):
        tracker.poll_and_announce()
    assert "Scheduled poll failed" in caplog.text


def test_scheduled_poll_announces_new_items(tracker):
    tracker.feed.batches.append([_update(1, "Breaking\nNews")])
    tracker.poll_and_announce()
    calls = tracker.notifier.session.calls
    assert len(calls) == 1
    assert calls[0]["json"][0]["body"] == "Breaking"


def _fail_on_upsert_call(store, monkeypatch, failing_call=2):
    real_upsert = store.upsert
    calls = {"n": 0}

    def flaky_upsert(item):
        calls["n"] += 1
        if calls["n"] == failing_call:
            raise sqlite3.OperationalError("database is locked")
        return real_upsert(item)

    monkeypatch.setattr(store, "upsert", flaky_upsert)


def test_poll_store_failure_keeps_stored_items_and_cursor(tracker, monkeypatch):
    tracker.feed.batches.append([_update(1, "First"), _update(2, "Second")])
    _fail_on_upsert_call(tracker.store, monkeypatch)

    with pytest.raises(PollInterrupted) as excinfo:
        tracker.poll()

    assert [i.title for i in excinfo.value.result.items] == ["First"]
    assert tracker.last_update_id == 1
    assert [n.title for n in tracker.store.list()] == ["First"]

    # the failed update is fetched again on the next round
    tracker.poll()
    assert tracker.feed.offsets == [1, 2]


def test_scheduled_poll_announces_items_stored_before_a_failure(tracker, monkeypatch):
    tracker.feed.batches.append([_update(1, "First"), _update(2, "Second")])
    _fail_on_upsert_call(tracker.store, monkeypatch)

    tracker.poll_and_announce()

    calls = tracker.notifier.session.calls
    assert len(calls) == 1
    assert calls[0]["json"][0]["body"] == "First"
