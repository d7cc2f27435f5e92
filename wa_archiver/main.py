import logging
from contextlib import asynccontextmanager
from typing import Annotated, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from wa_archiver.archive import create_s3_client
from wa_archiver.bridge import BridgeClient, MessagingClient
from wa_archiver.config import settings
from wa_archiver.events import EventDispatcher, HistorySyncOutcome, MessageOutcome
from wa_archiver.logging_utils import RequestLoggingMiddleware, log_event_data, setup_logging
from wa_archiver.metrics import get_metrics, get_metrics_content_type, record_event_outcome
from wa_archiver.schemas import (
    ErrorResponse,
    EventRequest,
    EventResponse,
    HealthResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from wa_archiver.sender import send_message
from wa_archiver.storage import SessionLocal, check_db_health, init_db
from wa_archiver.utils import verify_hmac_signature


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, open the bridge and S3 clients
    - Shutdown: close the bridge client
    """
    init_db()
    client = BridgeClient(settings.BRIDGE_URL, timeout=settings.BRIDGE_TIMEOUT_SECONDS)
    s3 = create_s3_client(settings)
    app.state.messaging_client = client
    app.state.s3_client = s3
    app.state.dispatcher = EventDispatcher(
        session_factory=SessionLocal,
        client=client,
        s3=s3,
        bucket=settings.AWS_S3_BUCKET_NAME,
        wait_for_object=settings.S3_WAIT_FOR_OBJECT,
        wait_timeout=settings.S3_WAIT_TIMEOUT_SECONDS,
    )
    if not settings.AWS_S3_BUCKET_NAME:
        logger.warning("AWS_S3_BUCKET_NAME not set, messages will not be archived")
    yield
    client.close()


app = FastAPI(
    title="WhatsApp Archiver",
    description="Ingests messaging events, stores chats and messages, archives content to S3",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Dependencies
# =============================================================================

def get_dispatcher(request: Request) -> EventDispatcher:
    return request.app.state.dispatcher


def get_messaging_client(request: Request) -> MessagingClient:
    return request.app.state.messaging_client


def get_s3_client(request: Request):
    return request.app.state.s3_client


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. WEBHOOK_SECRET is set (non-empty)
    2. DB is reachable and both tables exist

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="WEBHOOK_SECRET not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Event Route
# =============================================================================

def _event_response(outcome: Union[MessageOutcome, HistorySyncOutcome]) -> EventResponse:
    if isinstance(outcome, MessageOutcome):
        return EventResponse(
            event_type="message",
            result=outcome.result,
            message_id=outcome.message_id,
            archive_path=outcome.archive_path,
        )
    return EventResponse(event_type="history_sync", result=outcome.result, stored=outcome.stored)


@app.post(
    "/events",
    response_model=EventResponse,
    response_model_exclude_none=True,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
    }
)
async def events(
    request: Request,
    x_signature: Annotated[str | None, Header(alias="X-Signature")] = None,
    dispatcher: EventDispatcher = Depends(get_dispatcher),
) -> EventResponse:
    """
    Ingest one event pushed by the messaging bridge.

    - Validates HMAC-SHA256 signature using X-Signature header
    - Routes live messages and history-sync batches through the pipeline
    - Step failures are logged and counted, never turned into 5xx responses

    Headers:
        - Content-Type: application/json
        - X-Signature: hex HMAC-SHA256 of raw body using WEBHOOK_SECRET
    """
    raw_body = await request.body()
    logger.debug(f"Event body size: {len(raw_body)} bytes")

    if (
        not x_signature
        or not settings.WEBHOOK_SECRET
        or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET)
    ):
        logger.error("Missing or invalid X-Signature")
        record_event_outcome("invalid", "invalid_signature")
        log_event_data(request, result="invalid_signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid signature"
        )

    try:
        event = EventRequest.model_validate_json(raw_body).root
    except ValidationError as e:
        logger.error(f"Invalid event: {e}")
        record_event_outcome("invalid", "validation_error")
        log_event_data(request, result="validation_error")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e)
        )

    outcome = await run_in_threadpool(dispatcher.dispatch, event)
    response = _event_response(outcome)

    log_event_data(
        request,
        event_type=response.event_type,
        message_id=response.message_id,
        chat_jid=outcome.chat_jid if isinstance(outcome, MessageOutcome) else None,
        result=response.result,
    )
    return response


# =============================================================================
# Send Route
# =============================================================================

@app.post(
    "/api/send",
    response_model=SendMessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing recipient or content"},
        500: {"model": SendMessageResponse, "description": "Send failed"},
    }
)
async def api_send(
    body: SendMessageRequest,
    response: Response,
    client: MessagingClient = Depends(get_messaging_client),
    s3=Depends(get_s3_client),
) -> SendMessageResponse:
    """
    Send a text message, or media stored at bucket_name/object_key with the
    message as caption.
    """
    if not body.recipient:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Recipient is required")
    if not body.message and not (body.bucket_name and body.object_key):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message or media path is required"
        )

    success, message = await run_in_threadpool(
        send_message,
        client,
        s3,
        body.recipient,
        body.message,
        body.bucket_name,
        body.object_key,
    )
    logger.info(f"Send to {body.recipient}: success={success}, message={message}")

    if not success:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return SendMessageResponse(success=success, message=message)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
