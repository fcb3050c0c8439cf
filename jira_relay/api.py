"""
HTTP surface for jira-relay.

- POST /webhook?secret=... — Jira webhook receiver
- POST /api/v1/subscriptions/channel — create a channel subscription
- PUT /api/v1/subscriptions/channel — replace a channel subscription
- GET /api/v1/subscriptions/channel/{channel_id} — list a channel's subscriptions
- DELETE /api/v1/subscriptions/channel/{subscription_id} — remove a subscription
- GET /health, GET /metrics — liveness and Prometheus metrics

Subscription routes require a caller identity header and membership of the
channel being managed.
"""

from __future__ import annotations

import hmac
from contextlib import asynccontextmanager

import pydantic
import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .chat import ChatClient, ChatError
from .config import RelayConfig
from .dispatch import WebhookDispatcher
from .errors import (
    ConcurrentModificationError,
    DecodeError,
    NotFoundError,
    RelayError,
    StoreReadError,
    StoreWriteError,
    ValidationError,
)
from .matcher import EventMatcher
from .metrics import MetricsCollector
from .models import Subscription
from .service import SubscriptionService
from .store import KVStore, create_store
from .webhook import JiraWebhook

log = structlog.get_logger()

ID_LENGTH = 26

_ERROR_STATUS: list[tuple[type[RelayError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConcurrentModificationError, 409),
    (DecodeError, 500),
    (StoreReadError, 503),
    (StoreWriteError, 503),
]


def _status_for(exc: RelayError) -> int:
    for cls, status in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


# --- Dependencies ---


def get_service(request: Request) -> SubscriptionService:
    return request.app.state.service


def get_chat(request: Request) -> ChatClient:
    return request.app.state.chat


def require_user(request: Request) -> str:
    header = request.app.state.config.server.user_id_header
    user_id = request.headers.get(header, "")
    if not user_id:
        raise HTTPException(status_code=401, detail="not authorized")
    return user_id


async def _require_member(chat: ChatClient, channel_id: str, user_id: str) -> None:
    if not await chat.is_channel_member(channel_id, user_id):
        raise HTTPException(status_code=403, detail="Not a member of the channel specified")


# --- Subscription routes ---

router = APIRouter()


@router.post("/channel")
async def create_channel_subscription(
    subscription: Subscription,
    user_id: str = Depends(require_user),
    service: SubscriptionService = Depends(get_service),
    chat: ChatClient = Depends(get_chat),
):
    if len(subscription.channel_id) != ID_LENGTH or subscription.id:
        raise HTTPException(status_code=400, detail="Channel subscription invalid")
    await _require_member(chat, subscription.channel_id, user_id)

    sub_id = await service.add_subscription(subscription)
    return {"status": "OK", "id": sub_id}


@router.put("/channel")
async def edit_channel_subscription(
    subscription: Subscription,
    user_id: str = Depends(require_user),
    service: SubscriptionService = Depends(get_service),
    chat: ChatClient = Depends(get_chat),
):
    if len(subscription.channel_id) != ID_LENGTH or len(subscription.id) != ID_LENGTH:
        raise HTTPException(status_code=400, detail="Channel subscription invalid")
    await _require_member(chat, subscription.channel_id, user_id)

    # Moving a subscription also requires membership of the channel it leaves.
    existing = await service.get_subscription(subscription.id)
    if existing.channel_id != subscription.channel_id:
        await _require_member(chat, existing.channel_id, user_id)

    await service.edit_subscription(subscription)
    return {"status": "OK"}


@router.get("/channel/{channel_id}")
async def get_channel_subscriptions(
    channel_id: str,
    user_id: str = Depends(require_user),
    service: SubscriptionService = Depends(get_service),
    chat: ChatClient = Depends(get_chat),
) -> list[Subscription]:
    if len(channel_id) != ID_LENGTH:
        raise HTTPException(status_code=400, detail="bad channel id")
    await _require_member(chat, channel_id, user_id)
    return await service.list_subscriptions(channel_id)


@router.delete("/channel/{subscription_id}")
async def delete_channel_subscription(
    subscription_id: str,
    user_id: str = Depends(require_user),
    service: SubscriptionService = Depends(get_service),
    chat: ChatClient = Depends(get_chat),
):
    if len(subscription_id) != ID_LENGTH:
        raise HTTPException(status_code=400, detail="bad subscription id")
    subscription = await service.get_subscription(subscription_id)
    await _require_member(chat, subscription.channel_id, user_id)

    await service.remove_subscription(subscription_id)
    return {"status": "OK"}


# --- Application ---


def create_app(
    config: RelayConfig | None = None,
    *,
    store: KVStore | None = None,
    chat: ChatClient | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The store and chat client are opened and closed by the app lifespan;
    callers that pass their own instances and skip the lifespan (ASGI test
    transports) must open them first.
    """
    config = config or RelayConfig()
    metrics = MetricsCollector()
    store = store or create_store(config.store)
    chat = chat or ChatClient(
        config.chat.url,
        token=config.chat.token,
        verify_tls=config.chat.verify_tls,
        request_timeout=config.chat.request_timeout_seconds,
        metrics=metrics,
    )
    service = SubscriptionService(
        store,
        key=config.store.key,
        matcher=EventMatcher(wildcard_events=config.matching.wildcard_events),
        compare_and_set=config.store.compare_and_set,
        max_attempts=config.store.max_attempts,
        metrics=metrics,
    )
    dispatcher = WebhookDispatcher(service, chat, config.chat.bot_username, metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.open()
        await chat.open()
        log.info("relay.started", store=config.store.backend, key=config.store.key)
        try:
            yield
        finally:
            await chat.close()
            await store.close()
            log.info("relay.stopped")

    app = FastAPI(title="Jira Relay", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.metrics = metrics
    app.state.service = service
    app.state.chat = chat
    app.state.dispatcher = dispatcher

    app.include_router(router, prefix="/api/v1/subscriptions", tags=["Subscriptions"])

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        status = _status_for(exc)
        log_fn = log.error if status >= 500 else log.info
        log_fn("api.relay_error", path=request.url.path, stage=exc.stage, error=str(exc))
        metrics.inc("errors_total", stage=exc.stage, status=status)
        return JSONResponse(
            status_code=status, content={"detail": str(exc), "stage": exc.stage}
        )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        log.error("api.chat_error", path=request.url.path, error=str(exc))
        metrics.inc("errors_total", stage="chat", status=502)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.get("/health", tags=["System"])
    async def health_check():
        chat_ok = await chat.check_health()
        return {
            "status": "ok" if chat_ok else "degraded",
            "chat_reachable": chat_ok,
        }

    @app.get("/metrics", tags=["System"])
    async def metrics_endpoint():
        if not config.metrics.enabled:
            raise HTTPException(status_code=404, detail="metrics disabled")
        return PlainTextResponse(metrics.to_prometheus())

    @app.post("/webhook", tags=["Webhook"])
    async def subscribe_webhook(request: Request, secret: str = Query("")):
        expected = config.webhook.secret
        if not expected or not config.chat.bot_username:
            raise HTTPException(
                status_code=403,
                detail="relay not configured correctly; must provide secret and bot username",
            )
        if not hmac.compare_digest(secret.encode(), expected.encode()):
            raise HTTPException(status_code=403, detail="secret did not match")

        try:
            webhook = JiraWebhook.model_validate_json(await request.body())
        except pydantic.ValidationError as exc:
            raise HTTPException(status_code=400, detail="unable to parse webhook") from exc

        result = await dispatcher.dispatch(webhook)
        if not result.ok:
            metrics.inc("errors_total", stage="deliver", status=502)
            return JSONResponse(
                status_code=502,
                content={"status": "partial", "delivered": result.delivered, "failed": result.failed},
            )
        return {"status": "OK", "channels": result.channels}

    return app
