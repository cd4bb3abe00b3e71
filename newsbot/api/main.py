import json
import logging
import random
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from newsbot import __version__
from newsbot.auth.admin_gate import AdminGate
from newsbot.config import Settings
from newsbot.errors import Internal, InvalidInput, NewsBotError
from newsbot.feeds.telegram import TelegramFeed
from newsbot.notifier.push_notifier import Notifier
from newsbot.storage.devices import DeviceRegistry
from newsbot.storage.models import NewsUpdate
from newsbot.storage.repository import FeedStore
from newsbot.tracker.news_tracker import NewsTracker, PollInterrupted, extract_message
from newsbot.utils.tz_utils import now_iso

logger = logging.getLogger(__name__)

ADMIN_HEADER = "x-admin-token"
DEFAULT_TEST_TEXT = "Test Item\nThis is a test message."


class LoginRequest(BaseModel):
    password: Any = None  # any type; non-strings are a wrong password, not bad input


class PushTokenRequest(BaseModel):
    pushToken: Optional[str] = None


class SyntheticMessageRequest(BaseModel):
    text: Optional[str] = None


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message, **extra}, status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    scheduler: Optional[Any] = None,
    feed: Optional[TelegramFeed] = None,
) -> FastAPI:
    """Wire store, registry, gate, tracker and notifier into a FastAPI app.

    ``feed`` and ``scheduler`` can be injected (tests); by default they are
    built from ``settings``.
    """
    settings = settings or Settings.from_env()

    store = FeedStore(settings.db_path, capacity=settings.feed_capacity)
    registry = DeviceRegistry()
    gate = AdminGate(
        password=settings.admin_password,
        secret=settings.admin_secret,
        ttl=timedelta(hours=settings.admin_session_hours),
    )
    feed = feed or TelegramFeed(settings.telegram_bot_token, api_base=settings.telegram_api_base)
    notifier = Notifier.from_settings(settings, registry.tokens)
    tracker = NewsTracker(store, feed, notifier)

    if scheduler is None and settings.poll_interval_seconds > 0:
        # no job pile-up: late runs are merged and never overlap
        scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            }
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "newsbot %s starting (telegram %s, %d item(s) in feed)",
            __version__,
            "configured" if feed.configured else "not configured",
            store.count(),
        )
        if scheduler is not None and settings.poll_interval_seconds > 0:
            scheduler.add_job(
                tracker.poll_and_announce,
                "interval",
                seconds=settings.poll_interval_seconds,
                id="telegram_poll",
            )
            scheduler.start()
        yield
        if scheduler is not None and settings.poll_interval_seconds > 0:
            scheduler.shutdown(wait=False)
        store.close()

    app = FastAPI(title="newsbot", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.gate = gate
    app.state.tracker = tracker
    app.state.notifier = notifier

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    # ---------- error mapping: every failure answers {ok: false, error} ----------
    @app.exception_handler(NewsBotError)
    async def handle_newsbot_error(request: Request, exc: NewsBotError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        return _error(400, f"Invalid request{': ' + where if where else ''}")

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error(404, "Endpoint not found", path=request.url.path)
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, str(exc) or exc.__class__.__name__)

    def require_admin(x_admin_token: Optional[str] = Header(None, alias=ADMIN_HEADER)) -> str:
        gate.verify(x_admin_token)
        return x_admin_token

    # ---------- service ----------
    @app.get("/")
    def root():
        return {
            "ok": True,
            "message": "newsbot backend API",
            "endpoints": {
                "health": "/health",
                "admin_login": "POST /admin/login",
                "telegram_webhook": "/api/telegram-webhook",
                "telegram_webhook_status": "/api/telegram-webhook-status",
                "news": "/api/news",
            },
        }

    @app.get("/health")
    def health():
        return {
            "ok": True,
            "message": "Server is running",
            "timestamp": now_iso(),
            "version": __version__,
        }

    # ---------- admin ----------
    @app.post("/admin/login")
    def admin_login(body: Optional[LoginRequest] = None):
        session = gate.login(body.password if body else None)
        return {
            "ok": True,
            "message": "Login successful",
            "token": session.token,
            "expiresIn": session.expires_in,
        }

    @app.post("/admin/logout")
    def admin_logout(token: str = Depends(require_admin)):
        gate.logout(token)
        return {"ok": True, "message": "Logout successful"}

    # ---------- ingestion ----------
    @app.post("/api/telegram-webhook")
    async def telegram_webhook(request: Request, background: BackgroundTasks):
        # Telegram retries anything that is not a 2xx, so junk is acknowledged too
        try:
            payload = json.loads(await request.body() or b"null")
        except ValueError:
            logger.warning("Webhook payload is not JSON, ignoring")
            return {"ok": True}

        message = extract_message(payload)
        try:
            item = await run_in_threadpool(tracker.ingest, message)
        except NewsBotError:
            raise
        except Exception as e:
            logger.exception("Telegram webhook error")
            raise Internal(str(e)) from e

        if item is None:
            return {"ok": True}
        background.add_task(tracker.announce, [item])
        return {"ok": True, "message": "News received and processed", "id": item.id}

    @app.get("/api/telegram-webhook")
    def telegram_webhook_probe():
        return {
            "ok": True,
            "message": "Telegram webhook is active and listening",
            "timestamp": now_iso(),
        }

    @app.get("/api/telegram-webhook-status")
    def telegram_webhook_status():
        if not feed.configured:
            raise InvalidInput("TELEGRAM_BOT_TOKEN not configured")
        info = feed.webhook_info()
        return {
            "ok": True,
            "webhook_info": info,
            "polling_status": f"Last update ID: {tracker.last_update_id}",
        }

    @app.get("/api/telegram-poll")
    def telegram_poll(background: BackgroundTasks):
        if not feed.configured:
            raise InvalidInput("TELEGRAM_BOT_TOKEN not configured")
        try:
            result = tracker.poll()
        except PollInterrupted as e:
            # items stored before the failure are still pushed
            tracker.announce(e.result.items)
            raise
        except NewsBotError:
            raise
        except Exception as e:
            logger.exception("Polling error")
            raise Internal(str(e)) from e

        if result.items:
            background.add_task(tracker.announce, result.items)

        resp = {
            "ok": True,
            "updates_processed": result.updates_processed,
            "last_update_id": result.last_update_id,
        }
        if not result.updates_processed:
            resp["message"] = "No new messages"
        return resp

    @app.post("/api/telegram-test")
    def telegram_test(background: BackgroundTasks, body: Optional[SyntheticMessageRequest] = None):
        test_message = {
            "message_id": random.randint(0, 9999),
            "text": (body.text if body else None) or DEFAULT_TEST_TEXT,
            "date": int(time.time()),
        }
        try:
            item = tracker.ingest(test_message)
        except NewsBotError:
            raise
        except Exception as e:
            logger.exception("Test message failed")
            raise Internal(str(e)) from e

        if item is not None:
            background.add_task(tracker.announce, [item])
        return {
            "ok": True,
            "message": "Test message processed",
            "data": test_message,
            "news": item.model_dump() if item else None,
        }

    # ---------- devices ----------
    @app.post("/api/register-push-token")
    def register_push_token(body: Optional[PushTokenRequest] = None):
        registry.register(body.pushToken if body else None)
        return {
            "ok": True,
            "message": "Push token registered successfully",
            "totalDevices": len(registry),
        }

    # ---------- feed ----------
    @app.get("/api/news")
    def list_news():
        items = store.list()
        return {"ok": True, "count": len(items), "news": [n.model_dump() for n in items]}

    @app.put("/api/news/{news_id}")
    def update_news(news_id: str, changes: Optional[NewsUpdate] = None,
                    _admin: str = Depends(require_admin)):
        item = store.update(news_id, changes or NewsUpdate())
        logger.info("News updated: %s", news_id)
        return {"ok": True, "message": "News updated successfully", "id": news_id, "news": item.model_dump()}

    @app.delete("/api/news/{news_id}")
    def delete_news(news_id: str, _admin: str = Depends(require_admin)):
        store.delete(news_id)
        logger.info("News deleted: %s", news_id)
        return {"ok": True, "message": "News deleted successfully", "id": news_id}

    return app


if __name__ == "__main__":
    from newsbot.cli import main

    main()
