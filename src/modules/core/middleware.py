import uuid
from contextvars import ContextVar
from typing import Callable

import structlog
from django.http import HttpRequest, HttpResponse

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

logger = structlog.get_logger(__name__)


class CorrelationIdMiddleware:
    """Bind a correlation id to every log line of a request.

    The id comes from the ``X-Request-ID`` header or is generated (UUID4),
    and is echoed back in the ``X-Request-ID`` response header so gateway
    callbacks and admin actions can be traced end to end.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        cid = request.META.get("HTTP_X_REQUEST_ID") or str(uuid.uuid4())
        correlation_id_var.set(cid)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)

        logger.info("request.started", method=request.method, path=request.path)

        response = self.get_response(request)

        logger.info(
            "request.finished",
            method=request.method,
            path=request.path,
            status_code=response.status_code,
        )

        response["X-Request-ID"] = cid
        return response
