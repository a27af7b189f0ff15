#=================================================================
# botqueue/main_app.py
# FastAPI application entry-point for the bot job pipeline.
# Run:  uvicorn botqueue.main_app:app
#=================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

import botqueue.logging_filters  # noqa: F401  (installs the secret redaction filter)
from botqueue.routes import router as jobs_router
from botqueue.jobs.context import build_services
from botqueue.db import init_db
from botqueue.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="Bot Job Pipeline",
    description="Schedules bot work as durable jobs and executes them in bounded batches.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(jobs_router)   # /api/cron/*, /api/internal/*

# --- Root endpoint (liveness, no auth) ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Bot Job Pipeline"}

# --- Error bodies are {"error": ...} for trigger callers ---
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": f"Internal error: {exc.__class__.__name__}"},
    )

# ---- Lifecycle ----
@app.on_event("startup")
async def _startup():
    await init_db()
    # per-process throttle, telemetry ring buffer and event bus
    app.state.services = build_services()
    logger.info("[WORKER] services ready (concurrency=%d, per_minute=%d)",
                settings.GENERATION_CONCURRENCY, settings.GENERATION_PER_MINUTE)
