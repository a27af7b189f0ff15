# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_list(name: str, default: str) -> list[str]:
    return [p.strip() for p in os.getenv(name, default).split(",") if p.strip()]


class Settings:
    # ── Database ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/botqueue.db")
    DB_ECHO: bool = _get_bool("DB_ECHO", False)

    # ── Trigger auth ─────────────────────────────────────────────────────────
    # Shared bearer secret for cron/internal endpoints. Empty = reject everything.
    CRON_SECRET: str = os.getenv("CRON_SECRET", "")

    # ── Worker ───────────────────────────────────────────────────────────────
    WORKER_BATCH_SIZE: int = _get_int("WORKER_BATCH_SIZE", 10)
    # Host platform kills the trigger at 300s; leave room to record outcomes.
    WORKER_MAX_SECONDS: float = _get_float("WORKER_MAX_SECONDS", 280.0)

    # Throttle for handlers that call generation providers
    GENERATION_CONCURRENCY: int = _get_int("GENERATION_CONCURRENCY", 5)
    GENERATION_PER_MINUTE: int = _get_int("GENERATION_PER_MINUTE", 10)

    # ── Retry policy ─────────────────────────────────────────────────────────
    JOB_MAX_ATTEMPTS: int = _get_int("JOB_MAX_ATTEMPTS", 3)
    JOB_BACKOFF_BASE_SECONDS: int = _get_int("JOB_BACKOFF_BASE_SECONDS", 30)
    JOB_BACKOFF_MAX_SECONDS: int = _get_int("JOB_BACKOFF_MAX_SECONDS", 3600)
    STUCK_JOB_MINUTES: int = _get_int("STUCK_JOB_MINUTES", 60)

    # ── Scheduling ───────────────────────────────────────────────────────────
    AI_TIERS: list[str] = _get_list("AI_TIERS", "SPARK,PULSE,GRID,ADMIN")
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

    # ── Content buffer ───────────────────────────────────────────────────────
    BUFFER_TTL_HOURS: int = _get_int("BUFFER_TTL_HOURS", 24)
    BUFFER_MAX_PER_BOT: int = _get_int("BUFFER_MAX_PER_BOT", 3)
    BUFFER_MAX_BOTS_PER_RUN: int = _get_int("BUFFER_MAX_BOTS_PER_RUN", 20)

    # ── Telemetry ────────────────────────────────────────────────────────────
    TELEMETRY_CAPACITY: int = _get_int("TELEMETRY_CAPACITY", 200)

    # ── Content generation service (external) ───────────────────────────────
    CONTENT_SERVICE_URL: str = _rstrip_slash(os.getenv("CONTENT_SERVICE_URL", ""))
    CONTENT_SERVICE_TOKEN: str = os.getenv("CONTENT_SERVICE_TOKEN", "")
    CONTENT_SERVICE_TIMEOUT: float = _get_float("CONTENT_SERVICE_TIMEOUT", 120.0)

    # ── Notifications (fire-and-forget) ─────────────────────────────────────
    EVENT_WEBHOOK_URL: str = os.getenv("EVENT_WEBHOOK_URL", "")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
