"""FastAPI application exposing the dashboard specification compiler."""

import logging
import os
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

app = FastAPI(title="Dashboard Compiler API", version=API_VERSION)

# ---------------------------------------------------------------------------
# Include modular routers
# ---------------------------------------------------------------------------
from dashboard_compiler.action.routers.specs import router as specs_router  # noqa: E402

app.include_router(specs_router)

# CORS: lock down in production via CORS_ORIGINS env var (comma-separated).
# Falls back to "*" for local dev if not set.
_cors_origins = os.environ.get("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Rate limiting (lightweight, in-memory, resets on serverless cold start)
# ---------------------------------------------------------------------------
_rate_limit_store: dict = {}  # {ip_key: [timestamp, ...]}


def check_rate_limit(client_ip: str, endpoint: str, max_requests: int, window_seconds: int) -> bool:
    """Return True if the request is within rate limits, False if exceeded.

    Uses a sliding window counter per IP + endpoint combination.
    """
    now = time.time()
    key = f"{client_ip}:{endpoint}"
    timestamps = _rate_limit_store.get(key, [])
    # Remove timestamps outside the window
    timestamps = [t for t in timestamps if now - t < window_seconds]
    if len(timestamps) >= max_requests:
        _rate_limit_store[key] = timestamps
        return False
    timestamps.append(now)
    _rate_limit_store[key] = timestamps
    return True


@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "version": API_VERSION,
        "planner": "enabled" if settings.planner_enabled and settings.gemini_api_key else "disabled",
    }
