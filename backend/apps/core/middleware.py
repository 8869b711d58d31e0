"""
Core middleware.
"""

import time
from collections.abc import Callable
from uuid import uuid4

from django.http import HttpRequest, HttpResponse

from apps.core.logging import bind_contextvars, clear_contextvars, get_logger

logger = get_logger(__name__)

TRACE_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware:
    """
    Binds a per-request trace_id to the structlog context.

    Reuses the caller's X-Request-ID when present so a provisioning run can be
    followed from the frontend through Stripe and Stytch calls.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        trace_id = request.headers.get(TRACE_ID_HEADER) or str(uuid4())
        clear_contextvars()
        bind_contextvars(
            trace_id=trace_id,
            **{"http.method": request.method, "http.url_details.path": request.path},
        )
        started = time.monotonic()
        try:
            response = self.get_response(request)
            response[TRACE_ID_HEADER] = trace_id
            logger.debug(
                "request_finished",
                **{"http.status_code": response.status_code},
                duration_ms=(time.monotonic() - started) * 1000,
            )
            return response
        finally:
            clear_contextvars()
