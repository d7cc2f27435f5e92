import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from wa_archiver.metrics import record_http_request


request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# message_id / chat_jid of the event being processed; never mutated in place
event_ctx: ContextVar[dict] = ContextVar("event_ctx", default={})


@contextmanager
def event_context(**fields: Optional[str]) -> Iterator[None]:
    """
    Tag every log record emitted inside the block with the given fields.

    Nested blocks add to the outer fields. Empty values are left out.

        with event_context(message_id="3EB0", chat_jid="123@s.whatsapp.net"):
            logger.warning("upload failed")  # carries message_id and chat_jid
    """
    bound = dict(event_ctx.get())
    bound.update({key: value for key, value in fields.items() if value})
    token = event_ctx.set(bound)
    try:
        yield
    finally:
        event_ctx.reset(token)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding ISO-8601 ts, level, request_id and event ids."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            now = datetime.now(timezone.utc)
            log_record['ts'] = now.strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id

        for key, value in event_ctx.get().items():
            log_record.setdefault(key, value)


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())

    # Remove existing handlers
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)

    logger.addHandler(json_handler)

    # Route Uvicorn loggers through the JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Request lines come from RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").disabled = True

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys:
    - ts, level, request_id
    - method, path, status, latency_ms

    For /events requests, also includes:
    - event_type: message or history_sync
    - message_id, chat_jid: for live messages
    - result: ok, degraded, ignored, invalid_signature, validation_error
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        start_time = time.time()

        try:
            response = await call_next(request)

            response.headers["X-Request-ID"] = request_id

            latency_seconds = time.time() - start_time
            latency_ms = round(latency_seconds * 1000, 2)

            # /metrics is not instrumented
            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    latency_seconds=latency_seconds
                )

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": latency_ms,
            }

            if hasattr(request.state, "event_log_data"):
                log_data.update(request.state.event_log_data)

            logger = logging.getLogger("wa_archiver.requests")

            if response.status_code >= 500:
                logger.error("Request completed", extra=log_data)
            elif response.status_code >= 400:
                logger.warning("Request completed", extra=log_data)
            else:
                logger.info("Request completed", extra=log_data)

            return response
        finally:
            request_id_ctx.reset(token)


def log_event_data(
    request: Request,
    event_type: Optional[str] = None,
    message_id: Optional[str] = None,
    chat_jid: Optional[str] = None,
    result: Optional[str] = None,
):
    """
    Attach event-specific logging data to the request state.
    This data will be included in the request log by the middleware.
    """
    event_data = {}

    if event_type is not None:
        event_data["event_type"] = event_type
    if message_id is not None:
        event_data["message_id"] = message_id
    if chat_jid is not None:
        event_data["chat_jid"] = chat_jid
    if result is not None:
        event_data["result"] = result

    request.state.event_log_data = event_data
