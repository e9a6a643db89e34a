"""HTTP middleware for the Citadel API.

Starlette wraps the app in reverse registration order. The stack below is
therefore added innermost first, and CORS ends up outermost so browsers
can read 429 and 500 bodies too.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from citadel.config import Settings
from citadel.middleware.error_handler import setup_error_handlers
from citadel.middleware.logging import setup_logging
from citadel.middleware.rate_limit import RateLimitMiddleware
from citadel.middleware.request_id import RequestIdMiddleware

# Probes and the scheduler never count against a client's budget
UNTHROTTLED_PREFIXES = ("/health", "/ready", "/api/v1/cron/")

_CLIENT_HEADERS = ["Authorization", "Content-Type", "X-Request-Id", "X-Cron-Secret"]
_EXPOSED_HEADERS = ["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"]


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    setup_logging(settings)
    setup_error_handlers(app)

    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        exempt_prefixes=UNTHROTTLED_PREFIXES,
    )
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=_CLIENT_HEADERS,
        expose_headers=_EXPOSED_HEADERS,
    )
