import logging
import sys
import time
import uuid

import structlog
from fastapi import Request

_configured = False

_MASKED_KEYS = ("phone", "to", "destination", "owner_phone")


def masking_processor(logger, method_name, event_dict):
    """Masks phone numbers in log events down to their last four digits."""
    for key in _MASKED_KEYS:
        if key in event_dict and event_dict[key]:
            val = str(event_dict[key])
            event_dict[key] = f"***{val[-4:]}" if len(val) > 4 else "***"
    return event_dict


def configure_logging() -> None:
    global _configured
    if _configured:
        return

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            masking_processor,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True

    structlog.get_logger("vetcare").info("logging_initialized", app="vetcare")


logger = structlog.get_logger("vetcare.http")


async def request_logging_middleware(request: Request, call_next):
    request_id = (request.headers.get("x-request-id") or "").strip() or str(uuid.uuid4())
    clinic_id = (request.headers.get("x-clinic-id") or "").strip() or None

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        clinic_id=clinic_id,
        path=request.url.path,
        method=request.method,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        logger.error("http_request_failed", error=str(exc), duration_ms=duration_ms)
        raise
    duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
    logger.info("http_request", status=response.status_code, duration_ms=duration_ms)
    response.headers["X-Request-ID"] = request_id
    return response
