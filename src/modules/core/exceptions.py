"""DRF exception handler producing a single error envelope.

Every error raised through DRF (authentication, throttling, serializer
validation, 404) is rendered as::

    {"type": "validation_error",
     "errors": [{"code": "invalid", "detail": "...", "attr": "quantity_kg"}]}
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from rest_framework import exceptions
from rest_framework.views import exception_handler

logger = structlog.get_logger(__name__)


def standard_exception_handler(exc: Exception, context: Dict[str, Any]):
    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, exceptions.ValidationError):
        error_type = "validation_error"
        errors = _flatten(exc.detail)
    else:
        error_type = "server_error" if response.status_code >= 500 else "client_error"
        detail = getattr(exc, "detail", str(exc))
        errors = _flatten(detail)

    logger.info(
        "api.error_response",
        status_code=response.status_code,
        error_type=error_type,
        codes=[error["code"] for error in errors],
    )
    response.data = {"type": error_type, "errors": errors}
    return response


def _flatten(detail: Any, attr: Optional[str] = None) -> List[Dict[str, Any]]:
    if isinstance(detail, dict):
        errors: List[Dict[str, Any]] = []
        for key, value in detail.items():
            name = key if attr is None else f"{attr}.{key}"
            if key == "non_field_errors":
                name = attr
            errors.extend(_flatten(value, name))
        return errors
    if isinstance(detail, list):
        errors = []
        for index, value in enumerate(detail):
            if isinstance(value, (dict, list)):
                errors.extend(_flatten(value, f"{attr}.{index}" if attr else str(index)))
            else:
                errors.extend(_flatten(value, attr))
        return errors
    code = getattr(detail, "code", None) or "error"
    return [{"code": code, "detail": str(detail), "attr": attr}]
