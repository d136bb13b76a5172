import time
from typing import Any, Dict

import structlog
from django.core.cache import cache
from django.db import connections
from django.http import HttpRequest, JsonResponse
from django.utils import timezone

logger = structlog.get_logger(__name__)


def _timed(check) -> Dict[str, Any]:
    start = time.monotonic()
    check()
    return {
        "status": "up",
        "response_time_ms": round((time.monotonic() - start) * 1000, 2),
    }


def _check_database() -> None:
    conn = connections["default"]
    conn.ensure_connection()
    with conn.cursor() as cursor:
        cursor.execute("SELECT 1")
        cursor.fetchone()


def _check_cache() -> None:
    # The allocation guard lives in this cache, so a dead cache means
    # no receive or allocation can run.
    cache.set("_health_check", "ok", 10)
    if cache.get("_health_check") != "ok":
        raise ConnectionError("Cache read failed")


def health_check(request: HttpRequest) -> JsonResponse:
    services: Dict[str, Dict[str, Any]] = {}
    overall_healthy = True

    for name, check in (("database", _check_database), ("cache", _check_cache)):
        try:
            services[name] = _timed(check)
        except Exception:
            services[name] = {"status": "down"}
            overall_healthy = False
            logger.exception("health_check.service_down", service=name)

    state = "healthy" if overall_healthy else "unhealthy"
    logger.info("health_check.completed", status=state)

    return JsonResponse(
        {
            "status": state,
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=200 if overall_healthy else 503,
    )
