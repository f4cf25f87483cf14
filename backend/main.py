# main.py — Todoria API
# Features:
# - Request correlation IDs
# - Security headers
# - Health check with DB verification
# - Avatar uploads served from AVATAR_DIR
# - All routers registered

import json
import os
import uuid
import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from database import engine, init_db, close_db, get_db_session
from telemetry import setup_telemetry

# Logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("todoria")

VERSION = "1.0.0"


def _check_startup_config():
    """Warn about missing or weak settings; returns True when everything is set."""
    warnings = []

    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if not jwt_key or len(jwt_key) < 32:
        warnings.append("⚠️  JWT_SECRET_KEY is not set or shorter than 32 characters — tokens will not survive a restart")

    if not os.getenv("STRIPE_SECRET_KEY"):
        warnings.append("⚠️  STRIPE_SECRET_KEY not set — checkout and billing portal are disabled")
    elif not os.getenv("STRIPE_WEBHOOK_SECRET"):
        warnings.append("⚠️  STRIPE_WEBHOOK_SECRET not set — Stripe webhooks will be rejected")
    elif not os.getenv("STRIPE_PRO_PRICE_ID"):
        warnings.append("⚠️  STRIPE_PRO_PRICE_ID not set — checkout cannot create Pro subscriptions")

    if os.getenv("SMTP_HOST"):
        logger.info(f"📧 SMTP delivery via {os.getenv('SMTP_HOST')}")
    else:
        warnings.append("⚠️  SMTP_HOST not set — queued emails will stay pending")

    for w in warnings:
        logger.warning(w)

    return len(warnings) == 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 Starting Todoria v{VERSION}...")
    await init_db()
    logger.info("✅ Database initialized")
    _check_startup_config()
    # No-op unless OTEL_EXPORTER_OTLP_ENDPOINT is set
    setup_telemetry(app, engine)
    yield
    logger.info("🛑 Shutting down Todoria...")
    await close_db()


app = FastAPI(
    title="Todoria",
    description="Collaborative task boards with workspaces, reminders and per-seat billing",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ============================================================
# CORS
# ============================================================

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "Content-Disposition"],
)


# ============================================================
# MIDDLEWARE: Correlation IDs + Timing
# ============================================================

@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    correlation_id = request.headers.get("X-Correlation-ID", request_id)
    request.state.request_id = request_id
    request.state.correlation_id = correlation_id

    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{duration:.4f}s"

    logger.info(
        f"{request.method} {request.url.path} → {response.status_code} "
        f"({duration:.3f}s) [rid={request_id[:8]}]"
    )
    return response


# ============================================================
# MIDDLEWARE: Security Headers
# ============================================================

@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    response.headers["Content-Security-Policy"] = (
        "default-src 'self'; img-src 'self' data: https:; "
        "style-src 'self' 'unsafe-inline'; connect-src 'self' https:;"
    )
    return response


# ============================================================
# EXCEPTION HANDLERS
# ============================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # pydantic puts raw inputs (and exception objects in ctx) into errors()
    errors = []
    for err in exc.errors():
        clean_err = {
            "type": str(err.get("type", "unknown")),
            "loc": list(err.get("loc", [])),
            "msg": str(err.get("msg", "")),
        }
        if "input" in err:
            try:
                json.dumps(err["input"])
                clean_err["input"] = err["input"]
            except (TypeError, ValueError):
                clean_err["input"] = str(err["input"])
        errors.append(clean_err)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors,
            "request_id": getattr(request.state, "request_id", None),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "request_id": getattr(request.state, "request_id", None),
        },
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, workspaces, categories, tasks, activity,
    me, billing, admin, reminders,
)

app.include_router(auth.router)
app.include_router(workspaces.router)
app.include_router(categories.router)
app.include_router(tasks.router)
app.include_router(activity.router)
app.include_router(me.router)
app.include_router(billing.router)
app.include_router(admin.router)
app.include_router(reminders.router)

# Avatars are written by routers/me.py and served back as static files
me.AVATAR_DIR.mkdir(parents=True, exist_ok=True)
app.mount(me.AVATAR_URL_PREFIX, StaticFiles(directory=str(me.AVATAR_DIR)), name="avatars")


# ============================================================
# HEALTH & ROOT
# ============================================================

@app.get("/health")
async def health_check():
    """Health check with database connectivity verification"""
    db_status = "unknown"
    try:
        async for db in get_db_session():
            await db.execute(text("SELECT 1"))
            db_status = "connected"
            break
    except Exception as e:
        db_status = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "database": db_status,
        "services": {
            "api": "operational",
            "billing": "configured" if os.getenv("STRIPE_SECRET_KEY") else "disabled",
            "email": "configured" if os.getenv("SMTP_HOST") else "disabled",
        },
    }


@app.get("/")
async def root():
    return {
        "name": "Todoria",
        "version": VERSION,
        "description": "Collaborative task boards",
        "docs": "/docs",
        "health": "/health",
        "status": "operational",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT") != "production",
        workers=int(os.getenv("WORKERS", 1)),
    )
