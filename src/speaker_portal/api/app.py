"""
FastAPI Application Module

HTTP and WebSocket surface of the speaker portal's realtime core: direct and
group messaging with derived unread counts, stored notifications with live
push, and the authenticated live channel at ``/ws``.

Key Features:
- Async request handling with FastAPI
- Per-client rate limiting
- Structured logging and Prometheus metrics
- CORS and OpenTelemetry support
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import generate_latest
from pydantic import BaseModel, Field
from structlog import get_logger

from ..config import Settings, get_settings
from ..domain.errors import NotAuthorized, PortalError, StorageError
from ..domain.models import MessageKind, NotificationPage, User
from ..logging_config import configure_logging
from ..metrics import CUSTOM_REGISTRY, ERRORS, REQUESTS
from ..portal import Portal
from ..realtime.channel import WebSocketChannel
from ..realtime.events import build_error_event
from ..realtime.gateway import AUTH_FAILURE_CODE
from ..repositories.base import EventStore, Store
from ..services.auth import authenticate
from ..services.mailer import Mailer
from .rate_limiter import RateLimiter, RateLimitExceeded, rate_limit_middleware

logger = get_logger()
security = HTTPBearer(auto_error=False)
router = APIRouter()


class SendMessageRequest(BaseModel):
    """Exactly one of conversation_id / receiver_id is expected."""
    conversation_id: Optional[UUID] = None
    receiver_id: Optional[UUID] = None
    content: str = Field(..., min_length=1)
    kind: MessageKind = MessageKind.TEXT


class CreateGroupRequest(BaseModel):
    title: Optional[str] = None
    participant_ids: List[UUID] = Field(..., min_length=1)


def get_portal(request: Request) -> Portal:
    """Returns the realtime core owned by this app"""
    return request.app.state.portal


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    portal: Portal = Depends(get_portal),
) -> User:
    token = credentials.credentials if credentials else ""
    try:
        return await authenticate(token, portal.settings, portal.store)
    except NotAuthorized as e:
        raise HTTPException(status_code=401, detail=e.message)


@router.get("/health")
async def health(portal: Portal = Depends(get_portal)):
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "live_channels": len(portal.registry),
    }


@router.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")


@router.get("/messages/conversations")
async def list_conversations(
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    """Conversation list with last message and unread count, most recent first"""
    try:
        return {"conversations": await portal.conversations.list_conversations(user.id)}
    except PortalError:
        raise
    except Exception as e:
        logger.error("list_conversations_error", user_id=str(user.id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to list conversations")


@router.get("/messages/conversations/{conversation_id}/messages")
async def get_messages(
    conversation_id: UUID,
    page: int = 1,
    limit: int = 50,
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    """Gets a page of history and marks the caller's unread messages as read"""
    try:
        messages = await portal.conversations.get_messages(
            user.id, conversation_id, page=page, limit=limit
        )
        return {"messages": messages, "pagination": {"page": page, "limit": limit}}
    except PortalError:
        raise
    except Exception as e:
        logger.error("get_messages_error", conversation_id=str(conversation_id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to get messages")


@router.post("/messages/send", status_code=201)
async def send_message(
    body: SendMessageRequest,
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    try:
        message = await portal.conversations.send_message(
            user.id,
            body.content,
            conversation_id=body.conversation_id,
            receiver_id=body.receiver_id,
            kind=body.kind,
        )
        return {"message": "Message sent successfully", "data": message}
    except PortalError:
        raise
    except Exception as e:
        logger.error("send_message_error", user_id=str(user.id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to send message")


@router.post("/messages/conversations", status_code=201)
async def create_group_conversation(
    body: CreateGroupRequest,
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    conversation = await portal.conversations.create_group(
        user.id, body.participant_ids, title=body.title
    )
    return {"message": "Group conversation created successfully", "conversation": conversation}


@router.get("/notifications", response_model=NotificationPage)
async def list_notifications(
    page: int = 1,
    limit: int = 20,
    unread: bool = False,
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
) -> NotificationPage:
    return await portal.notifications.list_notifications(
        user.id, unread_only=unread, page=page, limit=limit
    )


@router.put("/notifications/read-all")
async def mark_all_notifications_read(
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    count = await portal.notifications.mark_all_read(user.id)
    return {"message": "All notifications marked as read", "count": count}


@router.put("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: UUID,
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    notification = await portal.notifications.mark_read(user.id, notification_id)
    return {"message": "Notification marked as read", "notification": notification}


@router.delete("/notifications/{notification_id}")
async def delete_notification(
    notification_id: UUID,
    user: User = Depends(get_current_user),
    portal: Portal = Depends(get_portal),
):
    await portal.notifications.delete(user.id, notification_id)
    return {"message": "Notification deleted successfully"}


@router.websocket("/ws")
async def live_channel(websocket: WebSocket):
    """Live channel; the credential travels as the ``token`` query parameter"""
    portal: Portal = websocket.app.state.portal
    try:
        user = await portal.gateway.authenticate(websocket.query_params.get("token", ""))
    except NotAuthorized as e:
        logger.info("live_channel_rejected", reason=e.message)
        await websocket.close(code=AUTH_FAILURE_CODE, reason=e.message)
        return

    await websocket.accept()
    channel = WebSocketChannel(websocket, user.id, user.name)
    portal.gateway.connect(channel)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("text") is not None:
                await portal.gateway.handle_text(channel, message["text"])
            else:
                await channel.send(
                    build_error_event("invalid_frame", "Frames must be JSON text")
                )
    except WebSocketDisconnect:
        pass
    finally:
        portal.gateway.disconnect(channel)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    events: Optional[EventStore] = None,
    mailer: Optional[Mailer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)

    portal = Portal(settings, store=store, events=events, mailer=mailer)
    rate_limiter = RateLimiter(
        rate_limit=settings.rate_limit, time_window=settings.rate_limit_window
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handles app startup/shutdown and resource management"""
        await portal.start()
        await rate_limiter.start()
        logger.info("application_startup_complete")

        yield

        await portal.stop()
        await rate_limiter.stop()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="Speaker Portal Realtime API",
        description="Messaging and notification delivery for the speaker portal",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.portal = portal
    app.state.rate_limiter = rate_limiter

    # Enable cross-origin requests from the portal frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set up request tracing
    FastAPIInstrumentor.instrument_app(app)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Tracks requests and enforces rate limits"""
        REQUESTS.inc()
        logger.info("request_started", method=request.method, path=request.url.path)
        try:
            await rate_limit_middleware(request, rate_limiter)
        except RateLimitExceeded as e:
            return JSONResponse(
                status_code=429,
                content={"error": str(e)},
                headers={"Retry-After": str(e.retry_after)},
            )
        try:
            response = await call_next(request)
            if response.status_code >= 500:
                ERRORS.inc()
            return response
        except Exception as e:
            ERRORS.inc()
            logger.error("request_failed", path=request.url.path, error=str(e))
            raise

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        headers = {"Retry-After": "1"} if isinstance(exc, StorageError) else None
        logger.info(
            "request_rejected",
            path=request.url.path,
            error=exc.message,
            status_code=exc.status_code,
        )
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.message}, headers=headers
        )

    app.include_router(router)
    return app


app = create_app()
