from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .api import router
from .config import settings
from .db import SessionLocal, init_db
from .jobs import build_scheduler, get_channel
from .observability import configure_logging, request_logging_middleware

configure_logging()
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Resolve the messaging channel once so a missing configuration is logged at startup.
    get_channel()
    scheduler = None
    if bool(settings.SCHEDULER_ENABLED):
        scheduler = build_scheduler()
        scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(
    title="VetCare",
    description="Veterinary clinic reminders backend",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.session_local = SessionLocal


@app.middleware("http")
async def request_observability_middleware(request: Request, call_next):
    return await request_logging_middleware(request, call_next)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if bool(settings.SECURITY_HEADERS_ENABLED):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
    return response


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/health/ready")
def ready(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    checks = {
        "db": "ok",
        "redis": "skipped",
        "scheduler": "running" if scheduler is not None and scheduler.is_running else "disabled",
    }
    db_ok = True
    redis_ok = True

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception:
        checks["db"] = "error"
        db_ok = False

    redis_url = (settings.REDIS_URL or "").strip()
    if redis_url:
        try:
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            redis_ok = False

    if db_ok and redis_ok:
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


app.include_router(router)
